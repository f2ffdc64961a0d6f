# FILE: ielts_backend/services/stripe_service.py
"""Stripe checkout, refunds and webhook verification.

Every SDK failure is logged to logs/stripe.log and re-raised as
ExternalServiceError so callers never change local state on a failed call.
"""

from typing import Optional, Tuple

import stripe

from ielts_backend.core.config import (
    FRONTEND_URL,
    STRIPE_CURRENCY,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
)
from ielts_backend.core.logger import get_file_logger
from ielts_backend.schemas.credits import CreditPack
from ielts_backend.services.errors import ExternalServiceError, InvalidState

stripe_logger = get_file_logger("stripe_ielts", "stripe.log")

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY


class StripeGateway:
    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or STRIPE_WEBHOOK_SECRET

    def _require_key(self) -> None:
        if not self.api_key:
            raise ExternalServiceError("Stripe is not configured")

    def create_checkout_session(self, user_id: str, pack: CreditPack) -> Tuple[str, Optional[str]]:
        """Start a hosted checkout for one credit pack; returns (session id, url)."""
        self._require_key()
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": STRIPE_CURRENCY,
                            "product_data": {
                                "name": pack.name,
                                "description": pack.description,
                            },
                            "unit_amount": pack.price_cents,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{FRONTEND_URL}/credits?success=1&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{FRONTEND_URL}/credits?canceled=1",
                metadata={
                    "userId": user_id,
                    "packId": pack.id,
                },
            )
        except Exception as exc:
            stripe_logger.error("Stripe session creation failed user=%s pack=%s", user_id, pack.id, exc_info=exc)
            raise ExternalServiceError("Stripe session creation failed; see logs/stripe.log") from exc

        stripe_logger.info("checkout session %s created user=%s pack=%s", session.id, user_id, pack.id)
        return session.id, session.url

    def reverse_charge(self, payment_ref: str) -> str:
        """Refund a payment intent in full; returns the Stripe refund id.

        The idempotency key is derived from the payment ref, so a retried
        call after a timeout never refunds twice on Stripe's side.
        """
        self._require_key()
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=payment_ref,
                idempotency_key=f"refund-{payment_ref}",
            )
        except Exception as exc:
            stripe_logger.error("Stripe refund failed ref=%s", payment_ref, exc_info=exc)
            raise ExternalServiceError("Refund failed at the payment provider; nothing was changed") from exc

        stripe_logger.info("refund %s issued for ref=%s", refund.id, payment_ref)
        return refund.id

    def construct_event(self, payload: bytes, signature: Optional[str]):
        if not self.webhook_secret:
            raise InvalidState("Stripe webhook not configured")
        try:
            return stripe.Webhook.construct_event(
                payload=payload, sig_header=signature, secret=self.webhook_secret
            )
        except Exception as exc:
            stripe_logger.warning("Rejected webhook: %s", exc)
            raise InvalidState(f"Invalid webhook: {exc}") from exc
