from datetime import date
from flask import Blueprint, request
from flask_limiter.util import get_remote_address
from extensions import limiter, booking_limit, lookup_limit
from app.version import API_PREFIX
from app.utils import ok, error
from app.utils.validation import validate_schema
from app.schemas.booking import (
    AvailabilityRequest,
    QuoteRequest,
    CheckoutRequest,
    PromoValidateRequest,
    ReferralValidateRequest,
)
from app.services.availability import availability_for_city, count_available, check_range
from app.services.checkout import quote_cart, create_order
from app.services.payments import get_gateway
from app.services.promos import check_promo
from app.services.referrals import check_referral
from models import db, Product

booking_bp = Blueprint("booking", __name__, url_prefix=API_PREFIX)


# --- Availability ---

@booking_bp.route("/availability", methods=["POST"])
@limiter.limit(lookup_limit, key_func=get_remote_address)
@validate_schema(AvailabilityRequest)
def availability():
    req = request.validated_data
    check_range(req.delivery_date, req.return_date)
    if req.product_id is not None:
        product = db.session.get(Product, req.product_id)
        if product is None or not product.is_active:
            return error("Product not found", status=404)
        counts = {product.id: count_available(req.city_id, product, req.delivery_date, req.return_date)}
    else:
        counts = availability_for_city(req.city_id, req.delivery_date, req.return_date)
    return ok({
        "city_id": req.city_id,
        "delivery_date": req.delivery_date.isoformat(),
        "return_date": req.return_date.isoformat(),
        "availability": [{"product_id": pid, "available": n} for pid, n in counts.items()],
    })


# --- Pricing ---

@booking_bp.route("/checkout/quote", methods=["POST"])
@limiter.limit(lookup_limit, key_func=get_remote_address)
@validate_schema(QuoteRequest)
def quote():
    cart = quote_cart(request.validated_data.model_dump(), today=date.today())
    return ok(cart.breakdown.to_dict())


@booking_bp.route("/promo/validate", methods=["POST"])
@limiter.limit(lookup_limit, key_func=get_remote_address)
@validate_schema(PromoValidateRequest)
def validate_promo():
    req = request.validated_data
    decision = check_promo(req.code, req.rental_subtotal)
    return ok(decision.to_dict())


@booking_bp.route("/referral/validate", methods=["POST"])
@limiter.limit(lookup_limit, key_func=get_remote_address)
@validate_schema(ReferralValidateRequest)
def validate_referral():
    req = request.validated_data
    decision = check_referral(req.code, req.email, req.promo_code)
    return ok(decision.to_dict())


# --- Checkout ---

@booking_bp.route("/checkout", methods=["POST"])
@limiter.limit(
    booking_limit,
    key_func=get_remote_address,
    error_message="Too many bookings from this IP",
)
@validate_schema(CheckoutRequest)
def checkout():
    order, client_secret = create_order(request.validated_data.model_dump(), get_gateway(), today=date.today())
    return ok(
        {"order_id": order.id, "client_secret": client_secret, "total": order.total},
        message="Order created",
        status=201,
    )
