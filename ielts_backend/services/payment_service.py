# FILE: ielts_backend/services/payment_service.py
"""Credit packs, Stripe webhook reconciliation and admin refunds.

Both reconcile and refund are idempotent on the Stripe payment intent id:
the (external_payment_ref, kind) unique constraint on the ledger settles
races that the existence pre-check cannot see.
"""

import asyncio
import enum
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ielts_backend.core.database import unit_of_work
from ielts_backend.models.credit_ledger import LedgerKind
from ielts_backend.models.user import User
from ielts_backend.schemas.credits import CreditPack
from ielts_backend.services import audit_service, ledger_service
from ielts_backend.services.errors import (
    AlreadyRefunded,
    Forbidden,
    InvalidState,
    NotFound,
)
from ielts_backend.services.stripe_service import StripeGateway, stripe_logger

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
REFUNDED_SUFFIX = " - REFUNDED"


# ─────────────────────────────────────────────
# CREDIT PACKS
# ─────────────────────────────────────────────

CREDIT_PACKS: List[CreditPack] = [
    CreditPack(
        id="pack_a",
        name="Pack A - Starter",
        description="2 exam credits",
        credits=2,
        price_cents=999,
        price_display="$9.99",
    ),
    CreditPack(
        id="pack_b",
        name="Pack B - Standard",
        description="5 exam credits",
        credits=5,
        price_cents=1999,
        price_display="$19.99",
    ),
    CreditPack(
        id="pack_c",
        name="Pack C - Premium",
        description="15 exam credits",
        credits=15,
        price_cents=4499,
        price_display="$44.99",
    ),
]


def get_pack(pack_id: Optional[str]) -> Optional[CreditPack]:
    return next((p for p in CREDIT_PACKS if p.id == pack_id), None)


async def create_checkout(user_id: str, pack_id: str, gateway: Optional[StripeGateway] = None) -> Dict[str, Any]:
    pack = get_pack(pack_id)
    if not pack:
        raise NotFound("Invalid package")
    gateway = gateway or StripeGateway()
    session_id, url = await asyncio.to_thread(gateway.create_checkout_session, user_id, pack)
    return {"session_id": session_id, "checkout_url": url}


# ─────────────────────────────────────────────
# RECONCILIATION
# ─────────────────────────────────────────────

class ReconcileOutcome(str, enum.Enum):
    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"
    IGNORED = "IGNORED"


def _field(obj: Any, *path: str) -> Any:
    # stripe.Event is not a dict on current SDKs; key access works on both
    for key in path:
        try:
            obj = obj[key]
        except (KeyError, TypeError, IndexError):
            return None
    return obj


def _checkout_fields(event: Any) -> Dict[str, Optional[str]]:
    session = _field(event, "data", "object")
    return {
        "session_id": _field(session, "id"),
        "payment_ref": _field(session, "payment_intent"),
        "user_id": _field(session, "metadata", "userId"),
        "pack_id": _field(session, "metadata", "packId"),
    }


async def reconcile(event: Any, session_factory: Optional[async_sessionmaker] = None) -> ReconcileOutcome:
    """Apply a verified Stripe event to the ledger, at most once per payment intent.

    Malformed or unknown events are logged and dropped rather than raised:
    Stripe would otherwise keep redelivering something that can never apply.
    """
    if _field(event, "type") != CHECKOUT_COMPLETED:
        return ReconcileOutcome.IGNORED

    fields = _checkout_fields(event)
    ref, user_id, pack_id = fields["payment_ref"], fields["user_id"], fields["pack_id"]
    if not ref or not user_id or not pack_id:
        stripe_logger.error("Dropping checkout event %s: missing metadata %s", _field(event, "id"), fields)
        return ReconcileOutcome.IGNORED

    pack = get_pack(pack_id)
    if not pack:
        stripe_logger.error("Dropping checkout event %s: unknown pack %s", _field(event, "id"), pack_id)
        return ReconcileOutcome.IGNORED

    try:
        async with unit_of_work(session_factory) as db:
            if await ledger_service.find_by_external_ref(db, ref, LedgerKind.PURCHASE):
                stripe_logger.info("Duplicate delivery for %s ignored", ref)
                return ReconcileOutcome.DUPLICATE

            if not await db.get(User, user_id):
                stripe_logger.error("Dropping checkout event %s: unknown user %s", _field(event, "id"), user_id)
                return ReconcileOutcome.IGNORED

            await ledger_service.append(
                db,
                user_id,
                pack.credits,
                LedgerKind.PURCHASE,
                reason=f"Purchased {pack.name}",
                external_payment_ref=ref,
            )
    except IntegrityError:
        # concurrent delivery won the insert
        stripe_logger.info("Duplicate delivery for %s lost the race; ignored", ref)
        return ReconcileOutcome.DUPLICATE

    stripe_logger.info("Credited %d to user=%s for %s (%s)", pack.credits, user_id, ref, pack.id)
    return ReconcileOutcome.APPLIED


# ─────────────────────────────────────────────
# REFUNDS
# ─────────────────────────────────────────────

async def refund(
    admin_id: str,
    transaction_id: str,
    gateway: Optional[StripeGateway] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> Dict[str, Any]:
    """Reverse one purchase at Stripe, then take its credits back.

    The external reversal happens first and outside the transaction; if it
    fails nothing local changes. The balance may go negative when the
    purchased credits were already spent.
    """
    gateway = gateway or StripeGateway()

    async with unit_of_work(session_factory) as db:
        admin = await db.get(User, admin_id)
        if not admin or not admin.is_admin:
            raise Forbidden("Admin access required")

        entry = await ledger_service.get_entry(db, transaction_id)
        if not entry:
            raise NotFound("Transaction not found")
        if entry.kind != LedgerKind.PURCHASE.value or not entry.external_payment_ref:
            raise InvalidState("Only Stripe purchases can be refunded")

        ref = entry.external_payment_ref
        target_user_id = entry.user_id
        amount = entry.amount

        if await ledger_service.find_by_external_ref(db, ref, LedgerKind.REFUND):
            raise AlreadyRefunded()

    refund_id = await asyncio.to_thread(gateway.reverse_charge, ref)

    try:
        async with unit_of_work(session_factory) as db:
            await ledger_service.append(
                db,
                target_user_id,
                -amount,
                LedgerKind.REFUND,
                reason=f"Refund {refund_id} for transaction {transaction_id}",
                external_payment_ref=ref,
            )
            original = await ledger_service.get_entry(db, transaction_id)
            await ledger_service.annotate(db, original, REFUNDED_SUFFIX)
            await audit_service.record(
                db,
                admin_id,
                audit_service.CREDIT_REFUND,
                target_user_id,
                {
                    "transaction_id": transaction_id,
                    "payment_ref": ref,
                    "credits": amount,
                    "refund_id": refund_id,
                },
            )
    except IntegrityError as exc:
        raise AlreadyRefunded() from exc

    logger.info("refund %s: admin=%s user=%s credits=-%d", refund_id, admin_id, target_user_id, amount)
    return {
        "refund_id": refund_id,
        "transaction_id": transaction_id,
        "credits_refunded": amount,
        "user_id": target_user_id,
    }
