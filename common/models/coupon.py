from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from .base import Base


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED_AMOUNT = "FIXED_AMOUNT"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT)


class Coupon(Base):
    __tablename__ = "coupon"

    id = Column(String(36), primary_key=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(String(16), nullable=False)
    # percent (1-100) or an amount in minor currency units
    discount_value = Column(Integer, nullable=False)
    min_purchase = Column(Integer, nullable=True)
    max_discount = Column(Integer, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())
