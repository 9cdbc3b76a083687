import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from app.errors import ValidationError
from app.services.pricing import REFERRAL_DISCOUNT
from models import db, Customer, Order
from models.order import CANCELLED

logger = logging.getLogger(__name__)

REFERRER_REWARD = 1000

INVALID = "invalid"
OWN_CODE = "own_code"
NOT_NEW_CUSTOMER = "not_new_customer"
HAS_CREDIT = "has_credit"
PROMO_CONFLICT = "promo_conflict"

REASON_MESSAGES = {
    INVALID: "Invalid referral code",
    OWN_CODE: "You cannot use your own referral code",
    NOT_NEW_CUSTOMER: "Referral codes are for first bookings only",
    HAS_CREDIT: "Referral codes cannot be used while you have referral credit",
    PROMO_CONFLICT: "Referral codes cannot be combined with promo codes",
}


@dataclass(frozen=True)
class ReferralDecision:
    accepted: bool
    reason: Optional[str] = None
    referrer: Optional[Customer] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason)

    def to_dict(self):
        if self.accepted:
            return {"valid": True, "discount": REFERRAL_DISCOUNT}
        return {"valid": False, "reason": self.reason, "message": self.message}


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def generate_referral_code() -> str:
    while True:
        code = f"OOLOO-{secrets.token_hex(3).upper()}"
        if not Customer.query.filter_by(referral_code=code).first():
            return code


def find_customer(email: str) -> Optional[Customer]:
    return Customer.query.filter_by(email=normalize_email(email)).first()


def get_or_create_customer(email: str, name: Optional[str] = None, phone: Optional[str] = None) -> Customer:
    """Look up a customer by email, creating one with a fresh referral code. Does NOT commit."""
    customer = find_customer(email)
    if customer is None:
        customer = Customer(
            email=normalize_email(email),
            name=name,
            phone=phone,
            referral_code=generate_referral_code(),
            referral_credit=0,
        )
        db.session.add(customer)
        db.session.flush()
        logger.info("Created customer %s", customer.id)
    else:
        if name:
            customer.name = name
        if phone:
            customer.phone = phone
    return customer


def _has_prior_orders(email: str) -> bool:
    return (
        Order.query.filter(Order.customer_email == normalize_email(email), Order.status != CANCELLED).first()
        is not None
    )


def check_referral(code: str, email: str, promo_code: Optional[str] = None) -> ReferralDecision:
    if promo_code:
        return ReferralDecision(False, PROMO_CONFLICT)
    referrer = Customer.query.filter_by(referral_code=(code or "").strip().upper()).first()
    if referrer is None:
        return ReferralDecision(False, INVALID)
    if referrer.email == normalize_email(email):
        return ReferralDecision(False, OWN_CODE)
    customer = find_customer(email)
    if customer is not None and customer.referral_credit > 0:
        return ReferralDecision(False, HAS_CREDIT)
    if _has_prior_orders(email):
        return ReferralDecision(False, NOT_NEW_CUSTOMER)
    return ReferralDecision(True, referrer=referrer)


def adjust_credit(email: str, delta: int, *, reason: str) -> int:
    """
    Atomically adjust a customer's referral credit by ``delta`` cents.
    Prevents negative balances. Returns the new balance.
    Does NOT commit; caller is responsible for commit/rollback.
    """
    customer = (
        Customer.query.filter_by(email=normalize_email(email)).with_for_update(of=Customer).first()
    )
    if customer is None:
        if delta < 0:
            raise ValidationError("Insufficient referral credit")
        customer = get_or_create_customer(email)

    new_balance = customer.referral_credit + delta
    if new_balance < 0:
        raise ValidationError("Insufficient referral credit")
    customer.referral_credit = new_balance
    logger.info("Referral credit %+d for customer %s (%s)", delta, customer.id, reason)
    return new_balance


def restore_credit(order) -> int:
    """Give back the credit an order consumed. Returns the amount restored."""
    amount = order.referral_credit_applied or 0
    if amount <= 0:
        return 0
    if find_customer(order.customer_email) is None:
        logger.warning("No customer to restore credit for order %s", order.id)
        return 0
    adjust_credit(order.customer_email, amount, reason=f"order {order.id} cancelled")
    return amount


def award_referrer(order) -> int:
    """Credit the owner of the referral code an order was placed with."""
    if not order.referral_code_used:
        return 0
    referrer = Customer.query.filter_by(referral_code=order.referral_code_used).first()
    if referrer is None:
        return 0
    adjust_credit(referrer.email, REFERRER_REWARD, reason=f"referred order {order.id} returned")
    return REFERRER_REWARD
