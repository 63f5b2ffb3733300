from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from ..utils.clock import utcnow
from .base import Base
from .order_status import OrderStatus


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, name="order_status", native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    total_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    items_count = Column(Integer, nullable=False)
    coupon_id = Column(String(36), ForeignKey("coupon.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_provider = Column(String(32), nullable=False, default="STRIPE")
    payment_intent_id = Column(String(255), nullable=True, index=True)
    tracking_number = Column(String(100), nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.position")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.created_at.desc()",
    )
    coupon = relationship("Coupon")
