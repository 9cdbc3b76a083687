from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from models import db, BIGINT


class Customer(db.Model):
    __tablename__ = "customer"
    id = Column(BIGINT, primary_key=True)
    email = Column(String(255), nullable=False, unique=True)  # stored lower-cased
    name = Column(String(200), nullable=True)
    phone = Column(String(20), nullable=True)
    referral_code = Column(String(32), nullable=False, unique=True)
    referral_credit = Column(Integer, nullable=False, default=0)  # cents
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            "email": self.email,
            "name": self.name,
            "referral_code": self.referral_code,
            "referral_credit": self.referral_credit,
        }
