import logging
from flask import Blueprint, request
from extensions import limiter
from app.version import API_PREFIX
from app.utils import ok
from app.services.orders import handle_payment_event
from app.services.payments import get_gateway
from app.telemetry import booking_span

webhooks_bp = Blueprint("webhooks", __name__, url_prefix=f"{API_PREFIX}/webhooks")
logger = logging.getLogger(__name__)


@webhooks_bp.route("/payments", methods=["POST"])
@limiter.exempt
def payment_webhook():
    gateway = get_gateway()
    event = gateway.construct_event(request.get_data(), request.headers.get("Stripe-Signature"))
    with booking_span("payments.webhook", event_type=event["type"]) as span:
        outcome = handle_payment_event(event, gateway)
        span.set_attribute("ooloo.outcome", outcome)
    logger.info("Payment event %s: %s", event["type"], outcome)
    return ok({"received": True, "outcome": outcome})
