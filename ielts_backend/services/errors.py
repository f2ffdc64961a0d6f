# FILE: ielts_backend/services/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base for errors the API turns into a stable JSON response."""

    code = "ERROR"
    status_code = 500
    retryable = False
    default_message = "Request failed."

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_http_detail(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class InsufficientFunds(ServiceError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402
    default_message = "Insufficient credits. Please purchase more credits to take an exam."


class ContentUnavailable(ServiceError):
    code = "CONTENT_UNAVAILABLE"
    status_code = 503
    retryable = True
    default_message = "No published content is available for this exam. No credit was used; please try again later."


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class Forbidden(ServiceError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden."


class AlreadySubmitted(ServiceError):
    code = "ALREADY_SUBMITTED"
    status_code = 409
    default_message = "Exam already submitted."


class AlreadyRefunded(ServiceError):
    code = "ALREADY_REFUNDED"
    status_code = 409
    default_message = "Transaction has already been refunded."


class InvalidState(ServiceError):
    code = "INVALID_STATE"
    status_code = 400
    default_message = "Operation not allowed in the current state."


class ExternalServiceError(ServiceError):
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502
    retryable = True
    default_message = "Payment provider request failed. Nothing was changed; please retry."


class RateLimited(ServiceError):
    code = "RATE_LIMITED"
    status_code = 429
    retryable = True
    default_message = "Too many requests. Try again in a moment."


class GradingUnavailable(ServiceError):
    # Never reaches the user: submissions fall back to heuristic scores.
    code = "GRADING_UNAVAILABLE"
    status_code = 503
    retryable = True
    default_message = "AI grading service is temporarily unavailable."
