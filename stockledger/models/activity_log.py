# stockledger/models/activity_log.py
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from stockledger.database import Base


class ActivityLog(Base):
    """
    Records significant back-office activities for auditing.

    This includes:
    - Order status changes (with the reconciliation summary when stock moved)
    - Ledger maintenance (projection rebuilds)
    """
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False, index=True)  # 'status_change', 'rebuild'
    entity_type = Column(String(50), nullable=False, index=True)  # 'order', 'product'
    entity_id = Column(String(100), nullable=False, index=True)

    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    actor = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<ActivityLog {self.action} {self.entity_type} {self.entity_id}>"
