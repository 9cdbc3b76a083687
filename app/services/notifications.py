import logging
from typing import Optional

from flask import current_app
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.errors import UpstreamError
from app.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


class SmsSender:
    def __init__(self):
        self.client = None
        self.from_number = None

    def init_app(self, app):
        sid = app.config.get("TWILIO_ACCOUNT_SID")
        token = app.config.get("TWILIO_AUTH_TOKEN")
        self.from_number = app.config.get("TWILIO_PHONE_NUMBER")
        if all([sid, token, self.from_number]):
            self.client = Client(sid, token)
        else:
            logging.warning("Twilio credentials missing; SMS will be logged only")
        app.extensions["sms_sender"] = self

    def send(self, to: str, body: str) -> Optional[str]:
        """Send one SMS and return the provider message id."""
        try:
            phone = normalize_phone(to)
        except ValueError:
            logger.warning("Skipping SMS, no usable phone number")
            return None
        if self.client is None:
            logger.info("[SMS disabled] message to %s: %s", phone, body)
            return None
        try:
            message = self.client.messages.create(to=phone, from_=self.from_number, body=body)
        except TwilioRestException as e:
            logger.error("SMS to %s failed: %s", phone, e.msg)
            raise UpstreamError(f"SMS failed: {e.msg}") from e
        return message.sid


def get_sms_sender() -> SmsSender:
    return current_app.extensions["sms_sender"]


def _when(d) -> str:
    return f"{d:%a %b} {d.day}"


def order_confirmed(order) -> str:
    return (
        f"ooloo: booking #{order.id} is confirmed. We'll deliver your luggage on "
        f"{_when(order.delivery_date)} ({order.delivery_window or 'window TBD'})."
    )


def out_for_delivery(order) -> str:
    return f"ooloo: your luggage for booking #{order.id} is on its way."


def delivered(order) -> str:
    if order.is_ship_back:
        return (
            f"ooloo: booking #{order.id} delivered. Use the prepaid label to ship the bags back "
            f"by {_when(order.return_date)}."
        )
    return f"ooloo: booking #{order.id} delivered. Pickup is scheduled for {_when(order.return_date)}."


def order_cancelled(order) -> str:
    return f"ooloo: booking #{order.id} has been cancelled. Any payment will be refunded to your card."


def delivery_reminder(order) -> str:
    return (
        f"ooloo: reminder, your luggage for booking #{order.id} arrives tomorrow "
        f"({order.delivery_window or 'window TBD'})."
    )


def return_reminder(order) -> str:
    return (
        f"ooloo: reminder, we pick up the luggage for booking #{order.id} tomorrow "
        f"({order.return_window or 'window TBD'}). Please have the bags empty and ready."
    )


def recovery_offer(order, code: str) -> str:
    return (
        f"ooloo: still planning your trip? Finish your booking with code {code} "
        f"for 10% off. Valid for 7 days."
    )
