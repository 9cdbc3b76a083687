from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from models import db, BIGINT

SET_SLUG = "set"
# A set is fulfilled from these pools, one unit of each per set
SET_COMPONENT_SLUGS = ("carryon", "large")


class Product(db.Model):
    __tablename__ = "product"
    id = Column(BIGINT, primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(50), nullable=False, unique=True)  # carryon, medium, large, set
    description = Column(Text, nullable=True)
    daily_rate = Column(Integer, nullable=False)  # cents per day
    is_active = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())

    @property
    def is_set(self) -> bool:
        return self.slug == SET_SLUG

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "daily_rate": self.daily_rate,
            "sort_order": self.sort_order,
        }


class Addon(db.Model):
    __tablename__ = "addon"
    id = Column(BIGINT, primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)  # flat cents, not scaled by rental days
    quantity_available = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "price": self.price,
            "quantity_available": self.quantity_available,
        }
