# FILE: ielts_backend/services/openai_safeguards.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

# Only normalizes SDK errors; the actual calls live in grading_service.py.

@dataclass
class NormalizedAIError(Exception):
    code: str                 # e.g. "RATE_LIMIT", "POLICY", "AUTH", "TIMEOUT", "SERVER", "BAD_REQUEST", "UNKNOWN"
    message: str              # short operator-facing text
    retryable: bool
    raw: Optional[str] = None # raw error for logs

    def to_log_detail(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


def _safe_str(x: Any) -> str:
    try:
        return str(x)
    except Exception:
        return "<unprintable>"


def _looks_like_policy(msg: str) -> bool:
    m = msg.lower()
    return (
            "policy" in m
            or "safety" in m
            or "violat" in m
            or "content" in m and "not allowed" in m
            or "moderation" in m
    )


def _looks_like_rate_limit(msg: str) -> bool:
    m = msg.lower()
    return "rate limit" in m or "too many requests" in m or "429" in m or "quota" in m


def _looks_like_timeout(msg: str) -> bool:
    m = msg.lower()
    return "timeout" in m or "timed out" in m


def _looks_like_auth(msg: str) -> bool:
    m = msg.lower()
    return (
            "invalid api key" in m
            or "api key" in m and "invalid" in m
            or "not configured" in m
            or "unauthorized" in m
            or "401" in m
            or "403" in m
    )


def normalize_openai_exception(err: Exception) -> NormalizedAIError:
    """Map whatever SDK/HTTP exception to a stable code for logs and metrics."""
    msg = _safe_str(err)
    raw = msg[:4000]

    if _looks_like_policy(msg):
        return NormalizedAIError(
            code="POLICY",
            message="AI refused to grade this submission (safety/policy).",
            retryable=False,
            raw=raw,
        )

    if _looks_like_auth(msg):
        return NormalizedAIError(
            code="AUTH",
            message="AI authentication failed (API key/permission).",
            retryable=False,
            raw=raw,
        )

    if _looks_like_rate_limit(msg):
        return NormalizedAIError(
            code="RATE_LIMIT",
            message="AI is rate-limited or quota exceeded.",
            retryable=True,
            raw=raw,
        )

    if _looks_like_timeout(msg):
        return NormalizedAIError(
            code="TIMEOUT",
            message="AI request timed out.",
            retryable=True,
            raw=raw,
        )

    if any(x in msg.lower() for x in ["500", "502", "503", "504", "server error", "bad gateway", "service unavailable"]):
        return NormalizedAIError(
            code="SERVER",
            message="AI service is temporarily unavailable.",
            retryable=True,
            raw=raw,
        )

    return NormalizedAIError(
        code="UNKNOWN",
        message="AI request failed unexpectedly.",
        retryable=True,
        raw=raw,
    )
