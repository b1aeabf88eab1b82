"""
Minimal purchase order tables.

These only exist so the line-item pipeline has a submission boundary to hand
off to. Listing, filtering and reporting live elsewhere.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, JSON, DateTime, Date, Float, ForeignKey, Text
from sqlalchemy.orm import relationship

from orderentry.core.database import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)  # PO-YYYYMMDD-NNN
    project_id = Column(Integer, nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("order_templates.id"), nullable=True)
    order_date = Column(Date, nullable=False)
    delivery_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    total_amount = Column(Float, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    custom_fields = Column(JSON, nullable=True)  # General-form field bag

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "PurchaseOrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id"
    )

    def __repr__(self):
        return f"<PurchaseOrder(number='{self.order_number}', total={self.total_amount})>"


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False)
    item_name = Column(String(255), nullable=False)
    specification = Column(Text, nullable=True)
    unit = Column(String(50), nullable=True)
    quantity = Column(Float, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("PurchaseOrder", back_populates="items")
