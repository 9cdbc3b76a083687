"""
Booking price computation.

Everything here is a pure function of its arguments. Amounts are integer
cents and every rounding step is round-half-up, applied per step (early-bird,
promo, tax) rather than once on the final total so stored orders can be
re-derived exactly.

Discounts stack in a fixed order, each computed on the rental amount left by
the previous one:

    early-bird -> promo code -> referral discount -> referral credit

None of them touch add-ons, fees or tax.
"""
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from app.errors import ValidationError

EARLY_BIRD_DAYS = 60
EARLY_BIRD_PERCENT = 10
RUSH_DAYS = 1
RUSH_FEE = 999
DELIVERY_FEE_ROUND_TRIP = 1999
DELIVERY_FEE_ONE_WAY = 999
SHIP_BACK_FEE = 2999
REFERRAL_DISCOUNT = 1000
DEFAULT_TAX_RATE = Decimal("0.095")

PERCENT = "percent"
FIXED = "fixed"
PICKUP = "pickup"
SHIP = "ship"


def round_cents(value) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_rate(value) -> Decimal:
    if value is None:
        return DEFAULT_TAX_RATE
    return Decimal(str(value))


def rental_days(delivery_date: date, return_date: date) -> int:
    """Billable days; a same-day return still bills one day."""
    if return_date < delivery_date:
        raise ValidationError("Return date must be on or after delivery date")
    return max(1, (return_date - delivery_date).days)


def days_until(delivery_date: date, today: date) -> int:
    return (delivery_date - today).days


@dataclass(frozen=True)
class RentalLine:
    product_id: int
    quantity: int
    daily_rate: int

    def line_total(self, days: int) -> int:
        return self.quantity * self.daily_rate * days


@dataclass(frozen=True)
class AddonLine:
    addon_id: int
    quantity: int
    price: int

    @property
    def line_total(self) -> int:
        return self.quantity * self.price


@dataclass(frozen=True)
class PromoTerms:
    discount_type: str
    discount_value: int
    promo_code_id: Optional[int] = None


@dataclass(frozen=True)
class PriceBreakdown:
    days: int
    days_until_delivery: int
    rental_subtotal: int
    addons_subtotal: int
    subtotal: int
    early_bird_discount: int
    promo_discount: int
    referral_discount: int
    credit_applied: int
    total_discount: int
    rush_fee: int
    delivery_fee: int
    ship_back_fee: int
    taxable_amount: int
    tax_rate: Decimal
    tax: int
    total: int

    def to_dict(self):
        data = asdict(self)
        data["tax_rate"] = str(self.tax_rate)
        return data


def promo_discount_for(promo: Optional[PromoTerms], base: int) -> int:
    """Discount a promo gives on ``base``; never more than ``base``."""
    if promo is None or base <= 0:
        return 0
    if promo.discount_type == PERCENT:
        amount = round_cents(Decimal(base) * Decimal(promo.discount_value) / 100)
    elif promo.discount_type == FIXED:
        amount = promo.discount_value
    else:
        raise ValidationError(f"Unknown discount type {promo.discount_type}")
    return max(0, min(amount, base))


def settle(subtotal: int, total_discount: int, delivery_fee: int, ship_back_fee: int,
           rush_fee: int, tax_rate) -> tuple:
    """Return (taxable_amount, tax, total) for an already discounted order."""
    taxable = subtotal - total_discount + delivery_fee + ship_back_fee + rush_fee
    tax = round_cents(Decimal(taxable) * to_rate(tax_rate))
    return taxable, tax, taxable + tax


def quote(
    rentals: Iterable[RentalLine],
    addons: Iterable[AddonLine],
    delivery_date: date,
    return_date: date,
    *,
    today: date,
    tax_rate=None,
    promo: Optional[PromoTerms] = None,
    referral: bool = False,
    credit_balance: int = 0,
    return_method: str = PICKUP,
) -> PriceBreakdown:
    if promo is not None and referral:
        raise ValidationError("Referral codes cannot be combined with promo codes")
    if return_method not in (PICKUP, SHIP):
        raise ValidationError(f"Unknown return method {return_method}")

    days = rental_days(delivery_date, return_date)
    until = days_until(delivery_date, today)

    rental_subtotal = sum(line.line_total(days) for line in rentals)
    addons_subtotal = sum(line.line_total for line in addons)
    subtotal = rental_subtotal + addons_subtotal

    early_bird = 0
    if until >= EARLY_BIRD_DAYS:
        early_bird = round_cents(Decimal(rental_subtotal) * EARLY_BIRD_PERCENT / 100)
    remaining = rental_subtotal - early_bird

    promo_amount = promo_discount_for(promo, remaining)
    remaining -= promo_amount

    referral_amount = min(REFERRAL_DISCOUNT, remaining) if referral else 0
    remaining -= referral_amount

    credit = max(0, min(credit_balance, remaining))

    total_discount = early_bird + promo_amount + referral_amount + credit
    rush_fee = RUSH_FEE if until <= RUSH_DAYS else 0
    delivery_fee = DELIVERY_FEE_ONE_WAY if return_method == SHIP else DELIVERY_FEE_ROUND_TRIP
    ship_back_fee = SHIP_BACK_FEE if return_method == SHIP else 0
    rate = to_rate(tax_rate)
    taxable, tax, total = settle(subtotal, total_discount, delivery_fee, ship_back_fee, rush_fee, rate)

    return PriceBreakdown(
        days=days,
        days_until_delivery=until,
        rental_subtotal=rental_subtotal,
        addons_subtotal=addons_subtotal,
        subtotal=subtotal,
        early_bird_discount=early_bird,
        promo_discount=promo_amount,
        referral_discount=referral_amount,
        credit_applied=credit,
        total_discount=total_discount,
        rush_fee=rush_fee,
        delivery_fee=delivery_fee,
        ship_back_fee=ship_back_fee,
        taxable_amount=taxable,
        tax_rate=rate,
        tax=tax,
        total=total,
    )


def rederive_total(order) -> int:
    """Recompute an order's total from the monetary fields stored on it."""
    discount = (
        order.early_bird_discount
        + order.promo_discount
        + order.referral_discount
        + order.referral_credit_applied
    )
    _, _, total = settle(
        order.subtotal, discount, order.delivery_fee, order.ship_back_fee, order.rush_fee, order.tax_rate
    )
    return total
