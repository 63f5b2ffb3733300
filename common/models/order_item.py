from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from .base import Base


class OrderItem(Base):
    """A line of an order. Prices are copied from the product when the order is placed."""

    __tablename__ = "order_item"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),)

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("product.id"), nullable=False, index=True)
    # line position within the request, keeps items in submission order
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    subtotal_cents = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
