"""
Free-unit counts for a city, product and inclusive date range.

A unit is busy for a range when any of its reservations overlaps it:
``reservation.end_date >= start AND reservation.start_date <= end``.
Touching endpoints count as overlap.
"""
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Mapping, Optional

from sqlalchemy import select

from app.errors import ValidationError, NotFoundError
from models import db, City, Product, InventoryItem, Reservation
from models.inventory import UNIT_AVAILABLE
from models.product import SET_SLUG, SET_COMPONENT_SLUGS


@dataclass(frozen=True)
class Shortfall:
    product: str
    needed: int
    available: int


def check_range(start: Optional[date], end: Optional[date]) -> None:
    if start is None or end is None:
        raise ValidationError("Delivery and return dates are required")
    if start > end:
        raise ValidationError("Return date must be on or after delivery date")


def reserved_unit_ids(start: date, end: date, exclude_order_id=None):
    stmt = select(Reservation.inventory_item_id).where(
        Reservation.end_date >= start,
        Reservation.start_date <= end,
    )
    if exclude_order_id is not None:
        stmt = stmt.where(Reservation.order_id != exclude_order_id)
    return stmt


def free_units(city_id, product_id, start: date, end: date, exclude_order_id=None):
    """Query of non-retired units in the pool with no overlapping reservation."""
    return InventoryItem.query.filter(
        InventoryItem.city_id == city_id,
        InventoryItem.product_id == product_id,
        InventoryItem.status == UNIT_AVAILABLE,
        ~InventoryItem.id.in_(reserved_unit_ids(start, end, exclude_order_id)),
    )


def set_components() -> List[Product]:
    components = Product.query.filter(Product.slug.in_(SET_COMPONENT_SLUGS)).all()
    if len(components) != len(SET_COMPONENT_SLUGS):
        return []
    return components


def count_available(city_id, product: Product, start: date, end: date) -> int:
    check_range(start, end)
    if product.slug == SET_SLUG:
        components = set_components()
        if not components:
            return 0
        return min(free_units(city_id, p.id, start, end).count() for p in components)
    return free_units(city_id, product.id, start, end).count()


def availability_for_city(city_id, start: date, end: date) -> Dict[int, int]:
    """Free units per active product id, sets included."""
    check_range(start, end)
    if db.session.get(City, city_id) is None:
        raise NotFoundError("City not found")
    products = Product.query.filter_by(is_active=True).order_by(Product.sort_order).all()
    return {product.id: count_available(city_id, product, start, end) for product in products}


def expand_demand(demand: Mapping[int, int]) -> Dict[int, int]:
    """Turn a cart (product id -> quantity) into physical units per product.

    Sets become one carry-on and one large each and are merged with any
    carry-ons or larges requested directly.
    """
    physical: Dict[int, int] = {}
    products = {p.id: p for p in Product.query.filter(Product.id.in_(list(demand))).all()}
    for product_id, quantity in demand.items():
        if quantity <= 0:
            continue
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if product.slug == SET_SLUG:
            components = set_components()
            if not components:
                raise ValidationError("Sets are not available")
            for component in components:
                physical[component.id] = physical.get(component.id, 0) + quantity
        else:
            physical[product.id] = physical.get(product.id, 0) + quantity
    return physical


def find_shortfalls(city_id, demand: Mapping[int, int], start: date, end: date) -> List[Shortfall]:
    check_range(start, end)
    shortfalls = []
    for product_id, needed in expand_demand(demand).items():
        available = free_units(city_id, product_id, start, end).count()
        if available < needed:
            product = db.session.get(Product, product_id)
            shortfalls.append(Shortfall(product=product.slug, needed=needed, available=available))
    return shortfalls
