from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import os

# Global limiter instance used across the app
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=os.getenv("RATELIMIT_STORAGE_URL", "memory://"),
    strategy="fixed-window",
    default_limits=["300 per hour"],
    headers_enabled=True,
)


def booking_limit():
    """Per-IP limit for requests that create or change bookings."""
    return current_app.config["BOOKING_LIMIT_PER_IP"]


def lookup_limit():
    """Per-IP limit for read-only availability and pricing lookups."""
    return current_app.config["LOOKUP_LIMIT_PER_IP"]
