import json
import logging
from dataclasses import dataclass, field
from typing import Optional

import stripe
from flask import current_app

from app.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    status: str
    amount: int
    metadata: dict = field(default_factory=dict)


class PaymentGateway:
    """Thin wrapper over Stripe PaymentIntents, refunds and webhook signatures.

    Every call passes the API key explicitly so the module-level ``stripe``
    state is never touched.
    """

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None,
                 currency: str = "usd"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def init_app(self, app):
        self.secret_key = app.config.get("STRIPE_SECRET_KEY")
        self.webhook_secret = app.config.get("STRIPE_WEBHOOK_SECRET")
        self.currency = app.config.get("PAYMENT_CURRENCY", "usd")
        if not self.secret_key:
            logger.warning("Stripe secret key missing; payment calls will fail")
        app.extensions["payment_gateway"] = self

    @staticmethod
    def _wrap(intent) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount=intent.amount,
            metadata=dict(getattr(intent, "metadata", None) or {}),
        )

    def create_intent(self, amount: int, *, metadata=None, description: str = "") -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.currency,
                description=description,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Failed to create payment intent: %s", e)
            raise UpstreamError("Payment provider unavailable") from e
        return self._wrap(intent)

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error("Failed to retrieve payment intent %s: %s", intent_id, e)
            raise UpstreamError("Payment provider unavailable") from e
        return self._wrap(intent)

    def refund(self, intent_id: str, amount: Optional[int] = None) -> str:
        """Refund a captured intent, in full when ``amount`` is None. Returns the refund id."""
        params = {"payment_intent": intent_id, "api_key": self.secret_key}
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.error("Refund failed for %s: %s", intent_id, e)
            raise UpstreamError(str(e.user_message or e)) from e
        return refund.id

    def construct_event(self, payload, signature: Optional[str]) -> dict:
        """Verify a webhook signature and return the event as a plain dict."""
        if not signature:
            raise ValidationError("Missing webhook signature")
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret)
            return json.loads(payload)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Rejected webhook: %s", e)
            raise ValidationError("Invalid webhook signature") from e


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
