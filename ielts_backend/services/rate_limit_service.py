# FILE: ielts_backend/services/rate_limit_service.py
"""Fixed-window rate limiter stored in the database.

Counters are shared by every server process, so limits hold across replicas.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ielts_backend.core.database import unit_of_work
from ielts_backend.models.rate_limit import RateLimitCounter
from ielts_backend.services.errors import RateLimited

logger = logging.getLogger(__name__)

# action -> (max requests, window seconds)
RATE_LIMITS = {
    "login": (10, 60),
    "register": (5, 60),
    "checkout": (10, 60),
}


async def hit(
    identifier: str,
    action: str,
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> int:
    """Count one request; raise RateLimited once the window is full.

    Returns the number of requests seen in the current window.
    """
    default_limit, default_window = RATE_LIMITS.get(action, (60, 60))
    limit = limit or default_limit
    window_seconds = window_seconds or default_window
    now = now or datetime.utcnow()
    key = f"{action}:{identifier}"

    try:
        count = await _increment(key, now, window_seconds, session_factory)
    except IntegrityError:
        # another request created the counter first; count against it
        count = await _increment(key, now, window_seconds, session_factory)

    if count > limit:
        logger.warning("rate limit hit: key=%s count=%d limit=%d", key, count, limit)
        raise RateLimited(retry_after=window_seconds)
    return count


async def _increment(key: str, now: datetime, window_seconds: int, session_factory) -> int:
    async with unit_of_work(session_factory) as db:
        # live window: single-statement increment
        result = await db.execute(
            update(RateLimitCounter)
            .where(RateLimitCounter.key == key, RateLimitCounter.expires_at > now)
            .values(count=RateLimitCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            counter = await db.get(RateLimitCounter, key, populate_existing=True)
            return counter.count

        # expired or missing: start a new window
        await db.execute(delete(RateLimitCounter).where(RateLimitCounter.key == key))
        db.add(RateLimitCounter(
            key=key,
            count=1,
            window_start=now,
            expires_at=now + timedelta(seconds=window_seconds),
        ))
        await db.flush()
        return 1


async def purge_expired(session_factory: Optional[async_sessionmaker] = None, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    async with unit_of_work(session_factory) as db:
        result = await db.execute(delete(RateLimitCounter).where(RateLimitCounter.expires_at <= now))
        return result.rowcount or 0
