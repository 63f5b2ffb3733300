from sqlalchemy import Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship
from ..utils.clock import utcnow
from .base import Base
from .order_status import OrderStatus


class OrderStatusHistory(Base):
    """Append-only audit row, one per status change of an order."""

    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id"), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, name="order_status", native_enum=False, length=16, validate_strings=True),
        nullable=False,
    )
    note = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="status_history")
