from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, constr


class AvailabilityRequest(BaseModel):
    city_id: int
    delivery_date: date
    return_date: date
    product_id: Optional[int] = None


class CartItem(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class CartAddon(BaseModel):
    addon_id: int
    quantity: int = Field(ge=1)


class ShipBackAddress(BaseModel):
    address: str
    city: str
    state: constr(pattern=r"^[A-Za-z]{2}$")
    zip: constr(pattern=r"^\d{5}(-\d{4})?$")


class QuoteRequest(BaseModel):
    city_id: int
    delivery_date: date
    return_date: date
    items: List[CartItem]
    addons: List[CartAddon] = []
    return_method: Literal["pickup", "ship"] = "pickup"
    promo_code: Optional[str] = None
    referral_code: Optional[str] = None
    email: Optional[EmailStr] = None
    use_credit: bool = False


class CustomerDetails(BaseModel):
    email: EmailStr
    name: constr(min_length=1, max_length=200)
    phone: Optional[constr(pattern=r"^\+?[\d\s().-]{10,20}$")] = None


class CheckoutRequest(QuoteRequest):
    customer: CustomerDetails
    delivery_address: constr(min_length=1)
    delivery_window: Optional[str] = None
    return_address: Optional[str] = None
    return_window: Optional[str] = None
    ship_back: Optional[ShipBackAddress] = None
    expected_total: Optional[int] = None


class PromoValidateRequest(BaseModel):
    code: constr(min_length=1, max_length=50)
    rental_subtotal: int = Field(ge=0)


class ReferralValidateRequest(BaseModel):
    code: constr(min_length=1, max_length=32)
    email: EmailStr
    promo_code: Optional[str] = None


class CancelOrderRequest(BaseModel):
    order_id: int
    email: EmailStr


class UpdateAddressRequest(BaseModel):
    order_id: int
    email: EmailStr
    delivery_address: Optional[str] = None
    delivery_window: Optional[str] = None
    return_address: Optional[str] = None
    return_window: Optional[str] = None


class ExtensionQuoteRequest(BaseModel):
    order_id: int
    email: EmailStr
    new_return_date: date


class ExtensionRequest(ExtensionQuoteRequest):
    payment_intent_id: Optional[str] = None
