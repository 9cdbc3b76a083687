from sqlalchemy import Column, String, Date, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from models import db, BIGINT

UNIT_AVAILABLE = "available"
UNIT_RETIRED = "retired"


class InventoryItem(db.Model):
    """One physical bag. Whether it is rented on a day is derived from reservations."""

    __tablename__ = "inventory_item"
    __table_args__ = (
        db.Index("ix_inventory_item_pool", "city_id", "product_id", "status"),
    )
    id = Column(BIGINT, primary_key=True)
    sku = Column(String(40), nullable=False, unique=True)
    city_id = Column(BIGINT, ForeignKey("city.id"), nullable=False)
    product_id = Column(BIGINT, ForeignKey("product.id"), nullable=False)
    status = Column(String(20), nullable=False, default=UNIT_AVAILABLE)  # available, retired
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    city = db.relationship("City", lazy=True)
    product = db.relationship("Product", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "sku": self.sku,
            "city_id": self.city_id,
            "product_id": self.product_id,
            "status": self.status,
        }


class Reservation(db.Model):
    """Claim on one unit for the inclusive range [start_date, end_date].

    Overlap between reservations of the same unit is rejected at commit time
    and, on PostgreSQL, by the ``ex_reservation_unit_overlap`` exclusion
    constraint created in migrations.
    """

    __tablename__ = "reservation"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_reservation_range"),
        db.Index("ix_reservation_unit_range", "inventory_item_id", "start_date", "end_date"),
        db.Index("ix_reservation_order", "order_id"),
    )
    id = Column(BIGINT, primary_key=True)
    inventory_item_id = Column(BIGINT, ForeignKey("inventory_item.id"), nullable=False)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=func.now())

    inventory_item = db.relationship("InventoryItem", lazy=True)

    def to_dict(self):
        return {
            "inventory_item_id": self.inventory_item_id,
            "order_id": self.order_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }
