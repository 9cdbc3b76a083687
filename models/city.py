from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from models import db, BIGINT


class City(db.Model):
    __tablename__ = "city"
    id = Column(BIGINT, primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    tax_rate = Column(Numeric(6, 4), nullable=True)  # e.g. 0.1025; NULL falls back to DEFAULT_TAX_RATE
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
        }
