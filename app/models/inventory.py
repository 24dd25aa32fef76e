"""Inventory model consumed by the POS stock pipeline."""
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func

from app.database import Base
from app.models.base import generate_id


class InventoryItem(Base):
    """A tobacco inventory row. Quantity is tracked in grams."""

    __tablename__ = "inventory_items"

    id = Column(String, primary_key=True, default=lambda: generate_id("inv"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    brand = Column(String, nullable=False)
    flavor = Column(String, nullable=False)

    # May go negative; display is the inventory layer's concern
    quantity_grams = Column(Numeric(12, 2), nullable=False, default=0)
    purchase_price = Column(Numeric(12, 2), nullable=True)
    package_grams = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def display_name(self) -> str:
        return f"{self.brand} - {self.flavor}"
