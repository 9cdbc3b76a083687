import logging
from flask import Blueprint, jsonify
from werkzeug.exceptions import HTTPException
from app.utils.responses import error

errors_bp = Blueprint("errors_bp", __name__)
logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for failures that are reported to the caller as-is."""

    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def payload(self):
        return None


class ValidationError(BookingError):
    status = 400


class NotFoundError(BookingError):
    status = 404


class ConflictError(BookingError):
    status = 409


class InsufficientInventoryError(ConflictError):
    """Someone else holds the units this request needs."""

    def __init__(self, product: str, needed: int, available: int):
        super().__init__(
            f"Not enough {product} available: needed {needed}, available {available}"
        )
        self.product = product
        self.needed = needed
        self.available = available

    @property
    def payload(self):
        return {
            "error": "insufficient_inventory",
            "product": self.product,
            "needed": self.needed,
            "available": self.available,
        }


class UpstreamError(BookingError):
    """Payment or notification provider failure."""

    status = 502


@errors_bp.app_errorhandler(BookingError)
def handle_booking_error(e):
    if e.status >= 500:
        logger.error("Upstream failure: %s", e.message)
    resp, status = error(e.message, status=e.status)
    if e.payload is not None:
        body = resp.get_json()
        body["data"] = e.payload
        return jsonify(body), status
    return resp, status


@errors_bp.app_errorhandler(HTTPException)
def handle_http_exception(e):
    msg = e.description or getattr(e, "name", "HTTP Error")
    return error(msg, status=e.code, code=e.code)


@errors_bp.app_errorhandler(Exception)
def handle_unexpected_exception(e):
    logging.exception("Unhandled exception")
    return error(
        "An unexpected error occurred. Please try again later.",
        status=500,
        code=500,
    )
