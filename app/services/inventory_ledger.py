import logging
import re
from datetime import date, timedelta
from typing import List

from app.errors import ValidationError, NotFoundError
from app.services.availability import check_range, free_units
from models import db, City, Product, InventoryItem, Reservation
from models.inventory import UNIT_AVAILABLE, UNIT_RETIRED
from models.product import SET_SLUG

logger = logging.getLogger(__name__)

SKU_PREFIXES = {"carryon": "CO", "medium": "MD", "large": "LG"}
_SEQUENCE = re.compile(r"(\d+)$")


def sku_prefix(city: City, product: Product) -> str:
    product_code = SKU_PREFIXES.get(product.slug, product.slug[:2].upper())
    city_code = city.slug.upper()
    return f"{product_code}-{city_code}"


def _highest_sequence(city_id, product_id) -> int:
    skus = db.session.query(InventoryItem.sku).filter_by(city_id=city_id, product_id=product_id).all()
    highest = 0
    for (sku,) in skus:
        match = _SEQUENCE.search(sku)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def create_units(city_id, product_id, quantity: int) -> List[InventoryItem]:
    """
    Add ``quantity`` new units to a (city, product) pool.

    SKUs continue from the highest sequence already used for the pair,
    e.g. ``CO-SEATTLE-007``. Does NOT commit; caller is responsible for
    commit/rollback.
    """
    if not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    city = db.session.get(City, city_id)
    if city is None:
        raise NotFoundError("City not found")
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.slug == SET_SLUG:
        raise ValidationError("Sets are made of carry-on and large units and have no inventory of their own")

    prefix = sku_prefix(city, product)
    start = _highest_sequence(city_id, product_id) + 1
    units = [
        InventoryItem(
            sku=f"{prefix}-{seq:03d}",
            city_id=city_id,
            product_id=product_id,
            status=UNIT_AVAILABLE,
        )
        for seq in range(start, start + quantity)
    ]
    db.session.add_all(units)
    db.session.flush()
    logger.info("Added %s units %s..%s", quantity, units[0].sku, units[-1].sku)
    return units


def _set_status(item_id, status: str) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError("Inventory item not found")
    item.status = status
    return item


def retire(item_id) -> InventoryItem:
    """Take a unit out of future allocation. Existing reservations stay honored."""
    return _set_status(item_id, UNIT_RETIRED)


def reactivate(item_id) -> InventoryItem:
    return _set_status(item_id, UNIT_AVAILABLE)


def inventory_summary(city_id, on_date: date) -> List[dict]:
    """Per-product unit counts for the admin dashboard."""
    if db.session.get(City, city_id) is None:
        raise NotFoundError("City not found")
    rows = []
    products = Product.query.filter(Product.slug != SET_SLUG).order_by(Product.sort_order).all()
    for product in products:
        pool = InventoryItem.query.filter_by(city_id=city_id, product_id=product.id)
        total = pool.count()
        retired = pool.filter_by(status=UNIT_RETIRED).count()
        free = free_units(city_id, product.id, on_date, on_date).count()
        rows.append({
            "product_id": product.id,
            "product": product.slug,
            "total": total,
            "retired": retired,
            "rented": total - retired - free,
            "available": free,
        })
    return rows


def occupancy_forecast(city_id, start: date, end: date) -> List[dict]:
    """Reserved vs. non-retired units per day across all bag types in a city."""
    check_range(start, end)
    capacity = InventoryItem.query.filter_by(city_id=city_id, status=UNIT_AVAILABLE).count()
    reservations = (
        db.session.query(Reservation.start_date, Reservation.end_date)
        .join(InventoryItem, InventoryItem.id == Reservation.inventory_item_id)
        .filter(
            InventoryItem.city_id == city_id,
            Reservation.end_date >= start,
            Reservation.start_date <= end,
        )
        .all()
    )
    days = []
    day = start
    while day <= end:
        reserved = sum(1 for r_start, r_end in reservations if r_start <= day <= r_end)
        days.append({"date": day.isoformat(), "reserved": reserved, "capacity": capacity})
        day += timedelta(days=1)
    return days
