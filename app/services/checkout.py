import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from flask import current_app

from app.errors import ValidationError, NotFoundError, ConflictError
from app.metrics import CHECKOUTS
from app.services import pricing
from app.services.availability import check_range
from app.services.promos import check_promo, consume_promo, PromoDecision, USAGE_LIMIT_REACHED
from app.services.referrals import check_referral, find_customer, get_or_create_customer, adjust_credit, ReferralDecision
from app.services.reservations import commit_reservations
from app.telemetry import booking_span
from app.utils import transactional
from models import db, City, Product, Addon, Order, OrderItem, OrderAddon, OrderStatusLog
from models.order import PENDING, RETURN_SHIP

logger = logging.getLogger(__name__)


@dataclass
class CartQuote:
    breakdown: pricing.PriceBreakdown
    rentals: List[pricing.RentalLine]
    addons: List[pricing.AddonLine]
    promo: Optional[PromoDecision] = None
    referral: Optional[ReferralDecision] = None


def _merge(lines, key) -> Dict[int, int]:
    merged: Dict[int, int] = {}
    for line in lines or []:
        merged[line[key]] = merged.get(line[key], 0) + int(line["quantity"])
    return merged


def _rental_lines(items) -> List[pricing.RentalLine]:
    quantities = _merge(items, "product_id")
    if not quantities or not any(q > 0 for q in quantities.values()):
        raise ValidationError("Cart is empty")
    products = {p.id: p for p in Product.query.filter(Product.id.in_(list(quantities))).all()}
    lines = []
    for product_id, quantity in sorted(quantities.items()):
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        lines.append(pricing.RentalLine(product.id, quantity, product.daily_rate))
    return lines


def _addon_lines(addons, lock: bool = False) -> List[pricing.AddonLine]:
    quantities = _merge(addons, "addon_id")
    if not quantities:
        return []
    query = Addon.query.filter(Addon.id.in_(list(quantities))).order_by(Addon.id)
    if lock:
        query = query.with_for_update(of=Addon)
    found = {a.id: a for a in query.all()}
    lines = []
    for addon_id, quantity in sorted(quantities.items()):
        addon = found.get(addon_id)
        if addon is None or not addon.is_active:
            raise NotFoundError(f"Addon {addon_id} not found")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if (addon.quantity_available or 0) < quantity:
            raise ValidationError(f"Not enough {addon.name} available")
        lines.append(pricing.AddonLine(addon.id, quantity, addon.price))
    return lines


def quote_cart(data: dict, *, today: Optional[date] = None, lock: bool = False) -> CartQuote:
    """Price a cart the way checkout will. Rejected codes raise ValidationError, used-up promos ConflictError."""
    today = today or date.today()
    delivery_date, return_date = data.get("delivery_date"), data.get("return_date")
    check_range(delivery_date, return_date)
    if delivery_date < today:
        raise ValidationError("Delivery date cannot be in the past")

    city = db.session.get(City, data.get("city_id"))
    if city is None or not city.is_active:
        raise NotFoundError("City not found")

    rentals = _rental_lines(data.get("items"))
    addons = _addon_lines(data.get("addons"), lock=lock)
    rental_subtotal = sum(line.line_total(pricing.rental_days(delivery_date, return_date)) for line in rentals)

    promo_decision = None
    promo_code = (data.get("promo_code") or "").strip()
    referral_code = (data.get("referral_code") or "").strip()
    email = data.get("email") or (data.get("customer") or {}).get("email")

    if promo_code and referral_code:
        raise ValidationError("Referral codes cannot be combined with promo codes")
    if promo_code:
        promo_decision = check_promo(promo_code, rental_subtotal, lock=lock)
        if promo_decision.reason == USAGE_LIMIT_REACHED:
            raise ConflictError(promo_decision.message)
        if not promo_decision.accepted:
            raise ValidationError(promo_decision.message)

    referral_decision = None
    if referral_code:
        if not email:
            raise ValidationError("Email is required to use a referral code")
        referral_decision = check_referral(referral_code, email)
        if not referral_decision.accepted:
            raise ValidationError(referral_decision.message)

    credit_balance = 0
    if data.get("use_credit") and email:
        customer = find_customer(email)
        credit_balance = customer.referral_credit if customer else 0

    breakdown = pricing.quote(
        rentals,
        addons,
        delivery_date,
        return_date,
        today=today,
        tax_rate=city.tax_rate if city.tax_rate is not None else current_app.config.get("DEFAULT_TAX_RATE"),
        promo=promo_decision.terms if promo_decision else None,
        referral=referral_decision is not None,
        credit_balance=credit_balance,
        return_method=data.get("return_method") or pricing.PICKUP,
    )
    return CartQuote(breakdown, rentals, addons, promo_decision, referral_decision)


def _validate_addresses(data: dict) -> None:
    if not (data.get("delivery_address") or "").strip():
        raise ValidationError("Delivery address is required")
    if data.get("return_method") == RETURN_SHIP:
        ship_back = data.get("ship_back") or {}
        missing = [f for f in ("address", "city", "state", "zip") if not ship_back.get(f)]
        if missing:
            raise ValidationError("Ship-back address is incomplete")
    elif not (data.get("return_address") or "").strip():
        raise ValidationError("Return address is required")


def create_order(data: dict, gateway, *, today: Optional[date] = None):
    """
    Create a pending order with its reservations and a payment intent.

    Everything happens in one transaction: if units run out, an addon is
    short, a code was used up in the meantime or the payment provider fails,
    nothing is written. Returns (order, client_secret).
    """
    customer_data = data["customer"]
    email = customer_data["email"].strip().lower()
    _validate_addresses(data)

    with transactional("Checkout failed"):
        cart = quote_cart(data, today=today, lock=True)
        b = cart.breakdown
        expected = data.get("expected_total")
        if expected is not None and int(expected) != b.total:
            raise ValidationError("Price has changed")

        get_or_create_customer(email, customer_data.get("name"), customer_data.get("phone"))

        ship_back = data.get("ship_back") or {}
        ships_back = data.get("return_method") == RETURN_SHIP
        order = Order(
            customer_email=email,
            customer_name=customer_data["name"],
            customer_phone=customer_data.get("phone"),
            delivery_address=data["delivery_address"],
            delivery_city_id=data["city_id"],
            return_address=None if ships_back else data.get("return_address"),
            return_city_id=None if ships_back else data.get("return_city_id") or data["city_id"],
            delivery_date=data["delivery_date"],
            return_date=data["return_date"],
            delivery_window=data.get("delivery_window"),
            return_window=data.get("return_window"),
            return_method=data.get("return_method") or pricing.PICKUP,
            ship_back_address=ship_back.get("address"),
            ship_back_city=ship_back.get("city"),
            ship_back_state=ship_back.get("state"),
            ship_back_zip=ship_back.get("zip"),
            rental_subtotal=b.rental_subtotal,
            addons_subtotal=b.addons_subtotal,
            subtotal=b.subtotal,
            early_bird_discount=b.early_bird_discount,
            promo_discount=b.promo_discount,
            referral_discount=b.referral_discount,
            referral_credit_applied=b.credit_applied,
            discount=b.total_discount,
            rush_fee=b.rush_fee,
            delivery_fee=b.delivery_fee,
            ship_back_fee=b.ship_back_fee,
            tax_rate=b.tax_rate,
            tax=b.tax,
            total=b.total,
            promo_code_id=cart.promo.promo.id if cart.promo else None,
            referral_code_used=cart.referral.referrer.referral_code if cart.referral else None,
            status=PENDING,
        )
        db.session.add(order)
        db.session.flush()

        for line in cart.rentals:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                daily_rate=line.daily_rate,
                days=b.days,
                line_total=line.line_total(b.days),
            ))
        for line in cart.addons:
            db.session.add(OrderAddon(
                order_id=order.id, addon_id=line.addon_id, quantity=line.quantity, unit_price=line.price
            ))

        with booking_span("reservations.commit", order_id=order.id, city_id=order.delivery_city_id) as span:
            reserved = commit_reservations(
                order.id,
                order.delivery_city_id,
                order.delivery_date,
                order.return_date,
                {line.product_id: line.quantity for line in cart.rentals},
            )
            span.set_attribute("ooloo.units", reserved.reservations_created)

        for line in cart.addons:
            addon = db.session.get(Addon, line.addon_id)
            addon.quantity_available -= line.quantity

        if b.credit_applied:
            adjust_credit(email, -b.credit_applied, reason=f"order {order.id}")
        if cart.promo:
            consume_promo(cart.promo.promo.id)

        with booking_span("payments.create_intent", order_id=order.id, amount=b.total):
            intent = gateway.create_intent(
                b.total,
                metadata={"order_id": str(order.id)},
                description=f"ooloo booking #{order.id}",
            )
        order.payment_intent_id = intent.id
        db.session.add(OrderStatusLog(order_id=order.id, status=PENDING, updated_by=email))

    CHECKOUTS.labels(str(order.delivery_city_id)).inc()
    logger.info("Order %s created, total %s", order.id, order.total)
    return order, intent.client_secret
