from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.errors import ValidationError, ConflictError
from app.services.pricing import PromoTerms, PERCENT, FIXED
from models import db, PromoCode

INVALID = "invalid"
EXPIRED = "expired"
USAGE_LIMIT_REACHED = "usage_limit_reached"
BELOW_MINIMUM = "below_minimum"

REASON_MESSAGES = {
    INVALID: "Invalid promo code",
    EXPIRED: "Promo code has expired",
    USAGE_LIMIT_REACHED: "Promo code usage limit reached",
    BELOW_MINIMUM: "Order total is below the promo code minimum",
}


@dataclass(frozen=True)
class PromoDecision:
    accepted: bool
    reason: Optional[str] = None
    promo: Optional[PromoCode] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason)

    @property
    def terms(self) -> Optional[PromoTerms]:
        if not self.accepted:
            return None
        return PromoTerms(self.promo.discount_type, self.promo.discount_value, self.promo.id)

    def to_dict(self):
        data = {"valid": self.accepted}
        if self.accepted:
            data["code"] = self.promo.code
            data["discount_type"] = self.promo.discount_type
            data["discount_value"] = self.promo.discount_value
        else:
            data["reason"] = self.reason
            data["message"] = self.message
        return data


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def check_promo(code: str, rental_subtotal: int, now: Optional[datetime] = None, lock: bool = False) -> PromoDecision:
    """Decide whether a code applies to a cart with the given rental subtotal.

    Checks run in order: exists and active, not expired, under its usage
    limit, rental subtotal at or above its minimum.
    """
    now = now or datetime.utcnow()
    query = PromoCode.query.filter_by(code=normalize_code(code))
    if lock:
        query = query.with_for_update(of=PromoCode)
    promo = query.first()
    if promo is None or not promo.is_active:
        return PromoDecision(False, INVALID)
    if promo.expires_at is not None and promo.expires_at < now:
        return PromoDecision(False, EXPIRED)
    if promo.usage_limit is not None and promo.times_used >= promo.usage_limit:
        return PromoDecision(False, USAGE_LIMIT_REACHED)
    if promo.min_order_total is not None and rental_subtotal < promo.min_order_total:
        return PromoDecision(False, BELOW_MINIMUM)
    return PromoDecision(True, promo=promo)


def consume_promo(promo_code_id) -> PromoCode:
    """
    Count one use of a promo code under a row lock.
    Does NOT commit; caller is responsible for commit/rollback.
    """
    promo = PromoCode.query.filter_by(id=promo_code_id).with_for_update(of=PromoCode).one()
    if promo.usage_limit is not None and promo.times_used >= promo.usage_limit:
        raise ConflictError(REASON_MESSAGES[USAGE_LIMIT_REACHED])
    promo.times_used += 1
    return promo


def create_promo(code: str, discount_type: str, discount_value: int, *, min_order_total=None,
                 usage_limit=None, expires_at=None) -> PromoCode:
    if discount_type not in (PERCENT, FIXED):
        raise ValidationError("Discount type must be percent or fixed")
    if discount_value <= 0 or (discount_type == PERCENT and discount_value > 100):
        raise ValidationError("Invalid discount value")
    promo = PromoCode(
        code=normalize_code(code),
        discount_type=discount_type,
        discount_value=discount_value,
        min_order_total=min_order_total,
        usage_limit=usage_limit,
        times_used=0,
        expires_at=expires_at,
        is_active=True,
    )
    db.session.add(promo)
    db.session.flush()
    return promo


def comeback_code(order_id) -> str:
    return f"COMEBACK10-{order_id}"


def create_comeback_promo(order_id, now: Optional[datetime] = None) -> PromoCode:
    """Single-use 10% code offered to a customer who left a checkout unpaid."""
    now = now or datetime.utcnow()
    existing = PromoCode.query.filter_by(code=comeback_code(order_id)).first()
    if existing is not None:
        return existing
    return create_promo(
        comeback_code(order_id), PERCENT, 10, usage_limit=1, expires_at=now + timedelta(days=7)
    )
