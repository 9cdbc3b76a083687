from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, Text, Date, DateTime, ForeignKey
from models import db, BIGINT

PENDING = "pending"
CONFIRMED = "confirmed"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
OUT_FOR_PICKUP = "out_for_pickup"
RETURNED = "returned"
CANCELLED = "cancelled"

ORDER_STATUSES = (PENDING, CONFIRMED, OUT_FOR_DELIVERY, DELIVERED, OUT_FOR_PICKUP, RETURNED, CANCELLED)
TERMINAL_STATUSES = (CANCELLED, RETURNED)
# Statuses reached once the bags are with the customer
HANDED_OVER_STATUSES = (DELIVERED, OUT_FOR_PICKUP, RETURNED)

RETURN_PICKUP = "pickup"
RETURN_SHIP = "ship"


class Order(db.Model):
    __tablename__ = "order"
    __table_args__ = (
        db.Index("ix_order_status_created", "status", "created_at"),
        db.Index("ix_order_email", "customer_email"),
    )
    id = Column(BIGINT, primary_key=True)

    customer_email = Column(String(255), nullable=False)  # lower-cased
    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(20), nullable=True)

    delivery_address = Column(Text, nullable=False)
    delivery_city_id = Column(BIGINT, ForeignKey("city.id"), nullable=False)
    return_address = Column(Text, nullable=True)  # empty for ship-back
    return_city_id = Column(BIGINT, ForeignKey("city.id"), nullable=True)
    delivery_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=False)
    delivery_window = Column(String(50), nullable=True)
    return_window = Column(String(50), nullable=True)
    return_method = Column(String(10), nullable=False, default=RETURN_PICKUP)  # pickup or ship
    ship_back_address = Column(String(255), nullable=True)
    ship_back_city = Column(String(100), nullable=True)
    ship_back_state = Column(String(2), nullable=True)
    ship_back_zip = Column(String(10), nullable=True)

    # Money, all in cents
    rental_subtotal = Column(Integer, nullable=False, default=0)
    addons_subtotal = Column(Integer, nullable=False, default=0)
    subtotal = Column(Integer, nullable=False, default=0)
    early_bird_discount = Column(Integer, nullable=False, default=0)
    promo_discount = Column(Integer, nullable=False, default=0)
    referral_discount = Column(Integer, nullable=False, default=0)
    referral_credit_applied = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)  # sum of the four above
    rush_fee = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    ship_back_fee = Column(Integer, nullable=False, default=0)
    tax_rate = Column(Numeric(6, 4), nullable=False)
    tax = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)

    promo_code_id = Column(BIGINT, ForeignKey("promo_code.id"), nullable=True)
    referral_code_used = Column(String(32), nullable=True)
    payment_intent_id = Column(String(255), nullable=True, unique=True)

    status = Column(String(30), nullable=False, default=PENDING)
    admin_notes = Column(Text, nullable=True)  # append-only
    abandoned_notice_sent_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)  # full refund issued
    created_at = Column(DateTime, default=datetime.utcnow)  # UTC
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship("OrderItem", backref="order", cascade="all, delete-orphan", lazy=True)
    addons = db.relationship("OrderAddon", backref="order", cascade="all, delete-orphan", lazy=True)
    delivery_city = db.relationship("City", foreign_keys=[delivery_city_id], lazy=True)

    @property
    def is_ship_back(self) -> bool:
        return self.return_method == RETURN_SHIP

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def append_note(self, note: str) -> None:
        self.admin_notes = f"{self.admin_notes}\n\n{note}" if self.admin_notes else note

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "delivery_city_id": self.delivery_city_id,
            "delivery_date": self.delivery_date.isoformat(),
            "return_date": self.return_date.isoformat(),
            "delivery_window": self.delivery_window,
            "return_window": self.return_window,
            "delivery_address": self.delivery_address,
            "return_address": self.return_address,
            "return_method": self.return_method,
            "rental_subtotal": self.rental_subtotal,
            "addons_subtotal": self.addons_subtotal,
            "subtotal": self.subtotal,
            "early_bird_discount": self.early_bird_discount,
            "promo_discount": self.promo_discount,
            "referral_discount": self.referral_discount,
            "referral_credit_applied": self.referral_credit_applied,
            "discount": self.discount,
            "rush_fee": self.rush_fee,
            "delivery_fee": self.delivery_fee,
            "ship_back_fee": self.ship_back_fee,
            "tax_rate": str(self.tax_rate),
            "tax": self.tax,
            "total": self.total,
            "items": [i.to_dict() for i in self.items],
            "addons": [a.to_dict() for a in self.addons],
        }


class OrderItem(db.Model):
    __tablename__ = "order_item"
    id = Column(BIGINT, primary_key=True)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False)
    product_id = Column(BIGINT, ForeignKey("product.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    daily_rate = Column(Integer, nullable=False)  # snapshot at booking time
    days = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)

    product = db.relationship("Product", lazy=True)

    def to_dict(self):
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "daily_rate": self.daily_rate,
            "days": self.days,
            "line_total": self.line_total,
        }


class OrderAddon(db.Model):
    __tablename__ = "order_addon"
    id = Column(BIGINT, primary_key=True)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False)
    addon_id = Column(BIGINT, ForeignKey("addon.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)

    def to_dict(self):
        return {
            "addon_id": self.addon_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }


class OrderStatusLog(db.Model):
    __tablename__ = "order_status_log"
    id = Column(BIGINT, primary_key=True)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False)
    status = Column(String(30), nullable=False)
    updated_by = Column(String(255), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "status": self.status,
            "updated_by": self.updated_by,
            "timestamp": self.timestamp,
        }


class OrderPayment(db.Model):
    """A payment taken against an order after checkout. One row per intent, so an intent is spent once."""
    __tablename__ = "order_payment"
    id = Column(BIGINT, primary_key=True)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False, index=True)
    payment_intent_id = Column(String(255), nullable=False, unique=True)
    kind = Column(String(20), nullable=False, default="extension")
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
