"""
Order lifecycle after checkout: payment events, cancellation, fulfillment
status changes, address edits and return-date changes.

State-changing work commits in one transaction first. Side effects that talk
to the outside world (refunds, SMS) run afterwards, never roll that work
back, and have their failures written to the order's admin notes.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.errors import ValidationError, NotFoundError, ConflictError, UpstreamError
from app.metrics import CANCELLATIONS
from app.services import notifications as sms
from app.services.payments import SUCCEEDED, get_gateway
from app.services.pricing import rental_days, settle
from app.services.referrals import normalize_email, restore_credit, award_referrer
from app.services.reservations import release_reservations, ensure_extendable, move_end_date
from app.utils import transactional
from models import db, Order, OrderStatusLog, OrderPayment
from models.order import (
    PENDING,
    CONFIRMED,
    OUT_FOR_DELIVERY,
    DELIVERED,
    OUT_FOR_PICKUP,
    RETURNED,
    CANCELLED,
    HANDED_OVER_STATUSES,
)

logger = logging.getLogger(__name__)

FULFILLMENT_STATUSES = (CONFIRMED, OUT_FOR_DELIVERY, DELIVERED, OUT_FOR_PICKUP, RETURNED)

REFUNDED = "refunded"
NOT_CAPTURED = "payment_not_captured"
NO_PAYMENT = "no_payment"
ALREADY_REFUNDED = "already_refunded"


@dataclass
class CancellationResult:
    order: Order
    refund_status: Optional[str] = None
    credit_restored: int = 0
    reservations_released: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "order_id": self.order.id,
            "status": self.order.status,
            "refund_status": self.refund_status,
            "credit_restored": self.credit_restored,
            "reservations_released": self.reservations_released,
        }


def _stamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.utcnow()).strftime("%Y-%m-%d %H:%M")


def _config(key):
    return current_app.config[key]


def hours_before(day: date, now: datetime) -> float:
    """Hours from ``now`` until midnight at the start of ``day``."""
    return (datetime.combine(day, time.min) - now).total_seconds() / 3600


def get_order(order_id) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def get_customer_order(order_id, email: str) -> Order:
    """Load an order for its customer. A wrong email looks exactly like a missing order."""
    order = db.session.get(Order, order_id)
    if order is None or order.customer_email != normalize_email(email):
        raise NotFoundError("Order not found")
    return order


def lock_order(order_id) -> Order:
    return Order.query.filter_by(id=order_id).with_for_update(of=Order).one()


def notify(phone: Optional[str], body: str) -> Optional[str]:
    """Queue an SMS. Returns a failure description instead of raising."""
    from app.tasks.notifications import send_sms_task

    if not phone:
        return None
    try:
        send_sms_task.delay(phone, body)
    except Exception as e:
        logger.error("SMS dispatch failed: %s", e)
        return f"sms_failed: {e}"
    return None


def refund_payment(order: Order, gateway, amount: Optional[int] = None) -> str:
    """Refund an order's payment if it was captured. Never raises."""
    if not order.payment_intent_id:
        return NO_PAYMENT
    try:
        intent = gateway.retrieve_intent(order.payment_intent_id)
        if intent.status != SUCCEEDED:
            return NOT_CAPTURED
        gateway.refund(order.payment_intent_id, amount)
    except UpstreamError as e:
        return f"refund_failed: {e.message}"
    return REFUNDED


def refund_once(order: Order, gateway) -> str:
    """Full refund, claimed through ``refunded_at`` so an order is refunded at most once."""
    with transactional("Claiming refund failed"):
        order = lock_order(order.id)
        if order.refunded_at is not None:
            return ALREADY_REFUNDED
        order.refunded_at = datetime.utcnow()
    status = refund_payment(order, gateway)
    if status != REFUNDED:
        with transactional("Releasing refund claim failed"):
            order.refunded_at = None
    return status


def release_order(order: Order, actor: str, reason: str, source: str) -> CancellationResult:
    order.status = CANCELLED
    released = release_reservations(order.id)
    restored = restore_credit(order)
    db.session.add(OrderStatusLog(order_id=order.id, status=CANCELLED, updated_by=actor))
    order.append_note(f"[{_stamp()}] Cancelled by {actor}: {reason}")
    CANCELLATIONS.labels(source).inc()
    return CancellationResult(order, credit_restored=restored, reservations_released=released)


def _follow_up(result: CancellationResult, gateway, refund: bool, send_sms: bool = True) -> CancellationResult:
    order = result.order
    notes = []
    if refund:
        result.refund_status = refund_once(order, gateway)
        notes.append(f"Refund: {result.refund_status}")
        if result.refund_status.startswith("refund_failed"):
            result.failures.append(result.refund_status)
    if send_sms:
        failure = notify(order.customer_phone, sms.order_cancelled(order))
        if failure:
            result.failures.append(failure)
            notes.append(failure)
    if notes:
        with transactional("Recording cancellation follow-up failed"):
            order.append_note(f"[{_stamp()}] " + "; ".join(notes))
    if result.failures:
        logger.warning("Order %s cancelled with follow-up failures: %s", order.id, result.failures)
    return result


def cancel_order(order_id, email: str, gateway, now: Optional[datetime] = None) -> CancellationResult:
    """Customer cancellation, allowed up to the cutoff before delivery day starts."""
    now = now or datetime.now()
    order = get_customer_order(order_id, email)
    if order.status == CANCELLED:
        raise ConflictError("Order is already cancelled")
    if order.status in HANDED_OVER_STATUSES:
        raise ConflictError("Order has already been delivered")
    cutoff = _config("CANCELLATION_CUTOFF_HOURS")
    if hours_before(order.delivery_date, now) < cutoff:
        raise ConflictError(f"Orders can only be cancelled at least {cutoff} hours before delivery")

    with transactional("Cancellation failed"):
        order = lock_order(order_id)
        if order.status == CANCELLED:
            raise ConflictError("Order is already cancelled")
        result = release_order(order, order.customer_email, "Cancelled by customer", "customer")
    return _follow_up(result, gateway, refund=True)


def admin_cancel(order_id, actor: str, reason: str, gateway, refund: bool = True) -> CancellationResult:
    order = get_order(order_id)
    if order.is_terminal:
        raise ConflictError(f"Order is already {order.status}")
    with transactional("Cancellation failed"):
        order = lock_order(order_id)
        if order.is_terminal:
            raise ConflictError(f"Order is already {order.status}")
        result = release_order(order, actor, reason or "No reason given", "admin")
    return _follow_up(result, gateway, refund=refund)


def _order_for_intent(intent_id) -> Optional[Order]:
    if not intent_id:
        return None
    return Order.query.filter_by(payment_intent_id=intent_id).first()


def _late_payment(order: Order, gateway) -> str:
    """A payment landed on an order that was already cancelled; give the money back."""
    status = refund_once(order, gateway)
    if status == ALREADY_REFUNDED:
        return "already_processed"
    with transactional("Recording late payment failed"):
        order.append_note(f"[{_stamp()}] Payment {order.payment_intent_id} succeeded after cancellation. Refund: {status}")
    if status != REFUNDED:
        logger.error("Order %s was paid after cancellation and could not be refunded: %s", order.id, status)
        return "refund_failed"
    return "refunded"


def handle_payment_event(event, gateway=None) -> str:
    """Apply a verified payment provider event. Returns what was done."""
    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "payment_intent.succeeded":
        order = _order_for_intent(obj.get("id"))
        if order is None:
            logger.warning("Payment succeeded for unknown intent")
            return "ignored"
        with transactional("Confirming order failed"):
            order = lock_order(order.id)
            previous = order.status
            if previous == PENDING:
                order.status = CONFIRMED
                db.session.add(OrderStatusLog(order_id=order.id, status=CONFIRMED, updated_by="payments"))
        if previous == CANCELLED:
            return _late_payment(order, gateway or get_gateway())
        if previous != PENDING:
            return "already_processed"
        notify(order.customer_phone, sms.order_confirmed(order))
        logger.info("Order %s confirmed", order.id)
        return "confirmed"

    if event_type in ("payment_intent.payment_failed", "charge.refunded"):
        intent_id = obj.get("id") if event_type.startswith("payment_intent") else obj.get("payment_intent")
        order = _order_for_intent(intent_id)
        if order is None:
            logger.warning("%s for unknown intent", event_type)
            return "ignored"
        reason = "Payment failed" if event_type == "payment_intent.payment_failed" else "Charge refunded"
        with transactional("Cancelling order failed"):
            order = lock_order(order.id)
            if order.is_terminal:
                return "already_processed"
            if event_type == "charge.refunded":
                order.refunded_at = datetime.utcnow()
            release_order(order, "payments", reason, "payment")
        return "cancelled"

    logger.info("Ignoring payment event %s", event_type)
    return "ignored"


def advance_status(order_id, new_status: str, actor: str) -> Order:
    """Move an order along fulfillment. Cancellation has its own path."""
    if new_status not in FULFILLMENT_STATUSES:
        raise ValidationError(f"Invalid status {new_status}")
    order = get_order(order_id)
    if order.is_terminal:
        raise ConflictError(f"Order is already {order.status}")
    if new_status == OUT_FOR_PICKUP and order.is_ship_back:
        raise ValidationError("Ship-back orders are not picked up")

    with transactional("Status update failed"):
        order.status = new_status
        db.session.add(OrderStatusLog(order_id=order.id, status=new_status, updated_by=actor))
        if new_status == RETURNED:
            award_referrer(order)

    if new_status == OUT_FOR_DELIVERY:
        notify(order.customer_phone, sms.out_for_delivery(order))
    elif new_status == DELIVERED:
        notify(order.customer_phone, sms.delivered(order))
    return order


def update_address(order_id, email: str, changes: dict, now: Optional[datetime] = None) -> Order:
    """Change delivery and/or return details ahead of their cutoffs.

    ``changes`` may carry delivery_address, delivery_window, return_address
    and return_window; keys with None values are ignored.
    """
    now = now or datetime.now()
    order = get_customer_order(order_id, email)
    if order.status in (CANCELLED, RETURNED):
        raise ConflictError(f"Order is {order.status} and can no longer be changed")

    delivery = {k: v for k, v in changes.items() if k in ("delivery_address", "delivery_window") and v is not None}
    returning = {k: v for k, v in changes.items() if k in ("return_address", "return_window") and v is not None}
    if not delivery and not returning:
        raise ValidationError("Nothing to update")

    cutoff = _config("ADDRESS_CHANGE_CUTOFF_HOURS")
    if delivery:
        if order.status in HANDED_OVER_STATUSES:
            raise ConflictError("Delivery details cannot change after delivery")
        if hours_before(order.delivery_date, now) < cutoff:
            raise ConflictError(f"Delivery details must be changed at least {cutoff} hours ahead")
    if returning:
        if order.is_ship_back:
            raise ValidationError("Ship-back orders have no return address")
        if hours_before(order.return_date, now) < cutoff:
            raise ConflictError(f"Return details must be changed at least {cutoff} hours ahead")

    with transactional("Address update failed"):
        changed = []
        for key, value in {**delivery, **returning}.items():
            setattr(order, key, value)
            changed.append(key)
        order.append_note(f"[{_stamp()}] Customer updated {', '.join(sorted(changed))}")
    return order


@dataclass(frozen=True)
class ExtensionQuote:
    order_id: int
    current_return_date: date
    new_return_date: date
    day_delta: int
    rental_difference: int
    tax_difference: int
    amount_due: int
    new_total: int

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "current_return_date": self.current_return_date.isoformat(),
            "new_return_date": self.new_return_date.isoformat(),
            "day_delta": self.day_delta,
            "rental_difference": self.rental_difference,
            "tax_difference": self.tax_difference,
            "amount_due": self.amount_due,
            "new_total": self.new_total,
        }


def _recompute(order: Order, new_rental_subtotal: int):
    subtotal = new_rental_subtotal + order.addons_subtotal
    _, tax, total = settle(
        subtotal, order.discount, order.delivery_fee, order.ship_back_fee, order.rush_fee, order.tax_rate
    )
    return subtotal, tax, total


def quote_extension(order: Order, new_return_date: date, today: Optional[date] = None) -> ExtensionQuote:
    """Price a return-date change. Discounts stay as booked; tax uses the order's stored rate."""
    today = today or date.today()
    if order.is_terminal:
        raise ConflictError(f"Order is already {order.status}")
    if new_return_date < order.delivery_date:
        raise ValidationError("Return date must be on or after delivery date")
    if new_return_date < today:
        raise ValidationError("Return date cannot be in the past")
    if new_return_date == order.return_date:
        raise ValidationError("Return date is unchanged")

    delta = rental_days(order.delivery_date, new_return_date) - rental_days(order.delivery_date, order.return_date)
    rental_difference = sum(item.daily_rate * item.quantity for item in order.items) * delta
    _, tax, total = _recompute(order, order.rental_subtotal + rental_difference)
    return ExtensionQuote(
        order_id=order.id,
        current_return_date=order.return_date,
        new_return_date=new_return_date,
        day_delta=delta,
        rental_difference=rental_difference,
        tax_difference=tax - order.tax,
        amount_due=total - order.total,
        new_total=total,
    )


@dataclass
class ExtensionResult:
    status: str  # applied, requires_payment
    quote: ExtensionQuote
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    refund_status: Optional[str] = None

    def to_dict(self):
        data = {"status": self.status, "quote": self.quote.to_dict()}
        if self.client_secret:
            data["client_secret"] = self.client_secret
            data["payment_intent_id"] = self.payment_intent_id
        if self.refund_status:
            data["refund_status"] = self.refund_status
        return data


def _extension_payment(order: Order, payment_intent_id: str, new_return_date: date, amount_due: int, gateway):
    """Check that an intent paid for exactly this return-date change on this order."""
    if payment_intent_id == order.payment_intent_id:
        raise ValidationError("Extension needs its own payment")
    intent = gateway.retrieve_intent(payment_intent_id)
    if intent.status != SUCCEEDED or intent.amount < amount_due:
        raise ValidationError("Extension payment has not succeeded")
    if (intent.metadata.get("order_id") != str(order.id)
            or intent.metadata.get("new_return_date") != new_return_date.isoformat()):
        raise ValidationError("Extension payment was made for a different change")
    return intent


def _spend(order: Order, intent) -> None:
    """Record an extension intent against the order. Does NOT commit."""
    if OrderPayment.query.filter_by(payment_intent_id=intent.id).first() is not None:
        raise ValidationError("Extension payment has already been used")
    db.session.add(OrderPayment(order_id=order.id, payment_intent_id=intent.id, kind="extension", amount=intent.amount))
    try:
        db.session.flush()
    except IntegrityError as e:
        raise ValidationError("Extension payment has already been used") from e


def apply_extension(order_id, email: str, new_return_date: date, gateway,
                    payment_intent_id: Optional[str] = None, today: Optional[date] = None) -> ExtensionResult:
    """
    Change an order's return date.

    Extending needs the order's own units free for the added days and a
    succeeded payment for the difference; without one a payment intent is
    created and returned for the client to complete. Shortening refunds the
    difference on a best-effort basis.
    """
    order = get_customer_order(order_id, email)
    quote = quote_extension(order, new_return_date, today)

    intent = None
    if quote.amount_due > 0:
        ensure_extendable(order.id, new_return_date)
        if not payment_intent_id:
            intent = gateway.create_intent(
                quote.amount_due,
                metadata={"order_id": str(order.id), "new_return_date": new_return_date.isoformat()},
                description=f"ooloo booking #{order.id} extension",
            )
            return ExtensionResult("requires_payment", quote, intent.client_secret, intent.id)
        intent = _extension_payment(order, payment_intent_id, new_return_date, quote.amount_due, gateway)

    old_return = order.return_date
    with transactional("Changing return date failed"):
        order = lock_order(order.id)
        if order.return_date != quote.current_return_date or order.is_terminal:
            raise ConflictError("Order changed while the return date was being updated")
        if intent is not None:
            _spend(order, intent)
        move_end_date(order.id, new_return_date)
        days = rental_days(order.delivery_date, new_return_date)
        for item in order.items:
            item.days = days
            item.line_total = item.quantity * item.daily_rate * days
        order.rental_subtotal += quote.rental_difference
        order.subtotal, order.tax, order.total = _recompute(order, order.rental_subtotal)
        order.return_date = new_return_date
        note = f"[{_stamp()}] Return date changed from {old_return} to {new_return_date} ({quote.amount_due:+d} cents)"
        if intent is not None:
            note += f", paid with {intent.id}"
        order.append_note(note)

    result = ExtensionResult("applied", quote)
    if quote.amount_due < 0:
        result.refund_status = refund_payment(order, gateway, -quote.amount_due)
        with transactional("Recording extension refund failed"):
            order.append_note(f"[{_stamp()}] Refund {-quote.amount_due} cents: {result.refund_status}")
    return result


def order_history(order_id) -> List[OrderStatusLog]:
    return OrderStatusLog.query.filter_by(order_id=order_id).order_by(OrderStatusLog.id).all()


def list_orders(status: Optional[str] = None, page: int = 1, per_page: int = 50):
    query = Order.query
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page).all()


def stale_pending(older_than: timedelta, now: Optional[datetime] = None) -> List[Order]:
    cutoff = (now or datetime.utcnow()) - older_than
    return Order.query.filter(Order.status == PENDING, Order.created_at < cutoff).order_by(Order.id).all()
