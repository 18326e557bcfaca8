# stockledger/models/bundle_component.py
from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint, CheckConstraint

from stockledger.database import Base


class BundleComponent(Base):
    """
    One component of a bundle product.

    A bundle has no shelf stock of its own: selling one bundle takes
    ``quantity`` units of every component product.
    """
    __tablename__ = "bundle_components"

    id = Column(Integer, primary_key=True)
    bundle_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("bundle_id", "component_id", name="uq_bundle_components_bundle_component"),
        CheckConstraint("quantity > 0", name="ck_bundle_components_quantity_pos"),
        CheckConstraint("bundle_id <> component_id", name="ck_bundle_components_not_self"),
    )

    def __repr__(self):
        return f"<BundleComponent(bundle_id={self.bundle_id}, component_id={self.component_id}, quantity={self.quantity})>"
