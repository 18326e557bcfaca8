"""
Catalog product as seen by the stock ledger.

Only the fields the ledger needs are mapped here. ``stock`` is a projection of
the ``stock_movements`` table and is written exclusively by
``stockledger.services.stock_projection``.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from stockledger.database import Base


def utc_now():
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(64), nullable=True, index=True)  # Not unique: upstream data has duplicates
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Projected quantity - derivable from stock_movements, never edited directly
    stock = Column(Integer, default=0, nullable=False)

    movements = relationship("StockMovement", back_populates="product", lazy="raise")

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}', stock={self.stock})>"
