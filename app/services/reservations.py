"""
Turning a cart into reservation rows on specific units.

Every affected (city, product) pool is locked with ``SELECT ... FOR UPDATE``
in product-id order before free units are counted, so two checkouts racing
for the last bag serialize on the pool and the loser sees the winner's
reservation. SQLite has no row locks; there the pool lock is a no-op UPDATE
that takes the database write lock. On PostgreSQL the
``ex_reservation_unit_overlap`` exclusion constraint rejects anything that
slips past; the IntegrityError it raises is reported as
InsufficientInventoryError like any other shortfall.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Mapping

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from app.errors import InsufficientInventoryError
from app.metrics import RESERVATION_CONFLICTS
from app.services.availability import check_range, expand_demand, free_units
from models import db, Product, InventoryItem, Reservation
from models.inventory import UNIT_AVAILABLE

logger = logging.getLogger(__name__)


@dataclass
class ReservationCommit:
    reservations_created: int
    unit_ids: List[int] = field(default_factory=list)


def _lock_pool(city_id, product_id) -> None:
    if db.session.get_bind().dialect.name == "sqlite":
        # No row locks in SQLite; a no-op write takes the database write lock instead
        db.session.execute(
            text("UPDATE inventory_item SET status = status WHERE city_id = :city_id AND product_id = :product_id"),
            {"city_id": city_id, "product_id": product_id},
        )
        return
    (
        InventoryItem.query.filter_by(city_id=city_id, product_id=product_id, status=UNIT_AVAILABLE)
        .order_by(InventoryItem.id)
        .with_for_update(of=InventoryItem)
        .all()
    )


def _conflict(product_id, needed: int, available: int) -> InsufficientInventoryError:
    product = db.session.get(Product, product_id)
    slug = product.slug if product else str(product_id)
    RESERVATION_CONFLICTS.labels(slug).inc()
    logger.warning("Reservation conflict: %s needed %s available %s", slug, needed, available)
    return InsufficientInventoryError(slug, needed, available)


def commit_reservations(order_id, city_id, start: date, end: date, items: Mapping[int, int]) -> ReservationCommit:
    """
    Reserve units for every line of ``items`` (product id -> quantity) or none.

    Sets are expanded to one carry-on and one large each. Units are chosen
    lowest SKU first. Does NOT commit; caller is responsible for
    commit/rollback.
    """
    check_range(start, end)
    demand: Dict[int, int] = expand_demand(items)

    for product_id in sorted(demand):
        _lock_pool(city_id, product_id)

    chosen: List[InventoryItem] = []
    for product_id in sorted(demand):
        needed = demand[product_id]
        units = free_units(city_id, product_id, start, end).order_by(InventoryItem.sku).limit(needed).all()
        if len(units) < needed:
            raise _conflict(product_id, needed, len(units))
        chosen.extend(units)

    db.session.add_all(
        Reservation(inventory_item_id=unit.id, order_id=order_id, start_date=start, end_date=end)
        for unit in chosen
    )
    try:
        db.session.flush()
    except IntegrityError as e:
        logger.warning("Reservation overlap rejected by the database: %s", e.orig)
        RESERVATION_CONFLICTS.labels("unknown").inc()
        raise InsufficientInventoryError("unknown", len(chosen), 0) from e

    logger.info("Reserved %s units for order %s", len(chosen), order_id)
    return ReservationCommit(reservations_created=len(chosen), unit_ids=[u.id for u in chosen])


def release_reservations(order_id) -> int:
    """Delete every reservation held by an order. Releasing nothing is fine."""
    released = Reservation.query.filter_by(order_id=order_id).delete(synchronize_session=False)
    if released:
        logger.info("Released %s reservations for order %s", released, order_id)
    return released


def reservations_for(order_id) -> List[Reservation]:
    return Reservation.query.filter_by(order_id=order_id).order_by(Reservation.id).all()


def ensure_extendable(order_id, new_end: date) -> None:
    """Raise InsufficientInventoryError when an order's own units are taken for the added days."""
    held = reservations_for(order_id)
    if not held or new_end <= held[0].end_date:
        return
    added_from = held[0].end_date + timedelta(days=1)
    unit_ids = [r.inventory_item_id for r in held]
    busy = {
        r.inventory_item_id
        for r in Reservation.query.filter(
            Reservation.inventory_item_id.in_(unit_ids),
            Reservation.order_id != order_id,
            Reservation.end_date >= added_from,
            Reservation.start_date <= new_end,
        )
    }
    if not busy:
        return
    product_id = next(r.inventory_item.product_id for r in held if r.inventory_item_id in busy)
    same_product = [r for r in held if r.inventory_item.product_id == product_id]
    free = sum(1 for r in same_product if r.inventory_item_id not in busy)
    raise _conflict(product_id, len(same_product), free)


def move_end_date(order_id, new_end: date) -> int:
    """
    Move the end date of an order's reservations, keeping the same units.

    When the rental grows, each unit must be free for the added days apart
    from this order's own claim. Does NOT commit.
    """
    held = reservations_for(order_id)
    if not held:
        return 0
    check_range(held[0].start_date, new_end)
    if new_end > held[0].end_date:
        (
            InventoryItem.query.filter(InventoryItem.id.in_([r.inventory_item_id for r in held]))
            .order_by(InventoryItem.id)
            .with_for_update(of=InventoryItem)
            .all()
        )
        ensure_extendable(order_id, new_end)

    for reservation in held:
        reservation.end_date = new_end
    try:
        db.session.flush()
    except IntegrityError as e:
        raise InsufficientInventoryError("unknown", len(held), 0) from e
    return len(held)
