"""Periodic housekeeping, run from Celery beat or the CLI by an external scheduler."""
import logging
from datetime import date, datetime, timedelta
from typing import Optional

from flask import current_app

from app.errors import UpstreamError
from app.services import notifications as sms
from app.services.orders import notify, release_order, stale_pending, lock_order
from app.services.payments import SUCCEEDED, get_gateway
from app.services.promos import create_comeback_promo
from app.services.referrals import award_referrer
from app.utils import transactional
from models import db, Order, OrderStatusLog
from models.order import PENDING, CONFIRMED, DELIVERED, RETURNED, RETURN_SHIP, RETURN_PICKUP

logger = logging.getLogger(__name__)

NOTICE_AFTER = timedelta(hours=1)
NOTICE_UNTIL = timedelta(hours=2)


def send_abandoned_notices(now: Optional[datetime] = None) -> int:
    """Offer a one-off 10% code to customers who left a checkout unpaid for an hour."""
    now = now or datetime.utcnow()
    orders = (
        Order.query.filter(
            Order.status == PENDING,
            Order.abandoned_notice_sent_at.is_(None),
            Order.created_at <= now - NOTICE_AFTER,
            Order.created_at > now - NOTICE_UNTIL,
        )
        .order_by(Order.id)
        .all()
    )
    sent = 0
    for order in orders:
        with transactional("Abandoned notice failed"):
            promo = create_comeback_promo(order.id, now)
            order.abandoned_notice_sent_at = now
        notify(order.customer_phone, sms.recovery_offer(order, promo.code))
        sent += 1
    if sent:
        logger.info("Sent %s abandoned checkout notices", sent)
    return sent


def _paid(order: Order, gateway) -> Optional[bool]:
    """Whether a pending order's intent already succeeded; None when the provider can't tell us."""
    if not order.payment_intent_id:
        return False
    try:
        return gateway.retrieve_intent(order.payment_intent_id).status == SUCCEEDED
    except UpstreamError as e:
        logger.warning("Payment status unknown for order %s: %s", order.id, e.message)
        return None


def cancel_stale_orders(now: Optional[datetime] = None, gateway=None) -> int:
    """Cancel unpaid orders past the payment window and free their units.

    Orders whose payment went through are left for the payment webhook to confirm.
    """
    now = now or datetime.utcnow()
    gateway = gateway or get_gateway()
    hours = current_app.config["ABANDONED_ORDER_HOURS"]
    cancelled = 0
    for order in stale_pending(timedelta(hours=hours), now):
        paid = _paid(order, gateway)
        if paid is not False:
            if paid:
                logger.warning("Order %s is paid but still pending; not expiring it", order.id)
            continue
        with transactional("Stale order cancellation failed"):
            order = lock_order(order.id)
            if order.status == PENDING:
                release_order(order, "system", f"Payment not completed within {hours} hours", "expired")
                cancelled += 1
    if cancelled:
        logger.info("Cancelled %s stale pending orders", cancelled)
    return cancelled


def send_reminders(today: Optional[date] = None) -> dict:
    """Text customers about tomorrow's deliveries and pickups."""
    tomorrow = (today or date.today()) + timedelta(days=1)
    deliveries = Order.query.filter(
        Order.delivery_date == tomorrow, Order.status.in_((PENDING, CONFIRMED))
    ).all()
    pickups = Order.query.filter(
        Order.return_date == tomorrow, Order.status == DELIVERED, Order.return_method == RETURN_PICKUP
    ).all()
    for order in deliveries:
        notify(order.customer_phone, sms.delivery_reminder(order))
    for order in pickups:
        notify(order.customer_phone, sms.return_reminder(order))
    return {"deliveries": len(deliveries), "pickups": len(pickups)}


def close_shipped_returns(today: Optional[date] = None) -> int:
    """Mark ship-back orders returned once their return date has passed."""
    today = today or date.today()
    orders = Order.query.filter(
        Order.status == DELIVERED, Order.return_method == RETURN_SHIP, Order.return_date < today
    ).all()
    for order in orders:
        with transactional("Closing ship-back order failed"):
            order.status = RETURNED
            db.session.add(OrderStatusLog(order_id=order.id, status=RETURNED, updated_by="system"))
            award_referrer(order)
    return len(orders)
