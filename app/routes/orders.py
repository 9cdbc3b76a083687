from flask import Blueprint, request
from flask_limiter.util import get_remote_address
from extensions import limiter, booking_limit
from app.version import API_PREFIX
from app.utils import ok
from app.utils.validation import validate_schema
from app.schemas.booking import (
    CancelOrderRequest,
    UpdateAddressRequest,
    ExtensionQuoteRequest,
    ExtensionRequest,
)
from app.services.orders import (
    cancel_order,
    update_address,
    get_customer_order,
    quote_extension,
    apply_extension,
)
from app.services.payments import get_gateway

orders_bp = Blueprint("orders", __name__, url_prefix=f"{API_PREFIX}/orders")


@orders_bp.route("/cancel", methods=["POST"])
@limiter.limit(booking_limit, key_func=get_remote_address)
@validate_schema(CancelOrderRequest)
def cancel():
    req = request.validated_data
    result = cancel_order(req.order_id, req.email, get_gateway())
    return ok(result.to_dict(), message="Order cancelled")


@orders_bp.route("/update-address", methods=["POST"])
@limiter.limit(booking_limit, key_func=get_remote_address)
@validate_schema(UpdateAddressRequest)
def change_address():
    req = request.validated_data
    changes = req.model_dump(include={"delivery_address", "delivery_window", "return_address", "return_window"})
    order = update_address(req.order_id, req.email, changes)
    return ok(order.to_dict(), message="Order updated")


@orders_bp.route("/extend-dates", methods=["GET"])
@validate_schema(ExtensionQuoteRequest, source="args")
def extension_quote():
    req = request.validated_data
    order = get_customer_order(req.order_id, req.email)
    return ok(quote_extension(order, req.new_return_date).to_dict())


@orders_bp.route("/extend-dates", methods=["POST"])
@limiter.limit(booking_limit, key_func=get_remote_address)
@validate_schema(ExtensionRequest)
def extend_dates():
    req = request.validated_data
    result = apply_extension(
        req.order_id, req.email, req.new_return_date, get_gateway(), payment_intent_id=req.payment_intent_id
    )
    status = 202 if result.status == "requires_payment" else 200
    return ok(result.to_dict(), message=result.status, status=status)
