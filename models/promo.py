from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from models import db, BIGINT


class PromoCode(db.Model):
    __tablename__ = "promo_code"
    id = Column(BIGINT, primary_key=True)
    code = Column(String(50), nullable=False, unique=True)  # upper-case
    discount_type = Column(String(10), nullable=False)  # percent or fixed
    discount_value = Column(Integer, nullable=False)  # percent points or cents
    min_order_total = Column(Integer, nullable=True)  # cents of rental subtotal
    usage_limit = Column(Integer, nullable=True)
    times_used = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_total": self.min_order_total,
            "usage_limit": self.usage_limit,
            "times_used": self.times_used,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
