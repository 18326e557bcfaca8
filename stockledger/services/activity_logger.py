# stockledger/services/activity_logger.py
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


class ActivityLogger:
    """
    Service for recording back-office activities.

    Entries are added to the caller's session and flushed; committing is left
    to the caller.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_activity(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> ActivityLog:
        log_entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),  # Convert to string for consistency
            details=details,
            actor=actor,
            created_at=datetime.now(timezone.utc)
        )

        self.db.add(log_entry)
        await self.db.flush()

        logger.debug("Activity logged: %s %s %s", action, entity_type, entity_id)
        return log_entry

    async def log_status_change(
        self,
        order_id: int,
        previous_status: str,
        new_status: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> ActivityLog:
        """
        Log an order status change.

        Args:
            order_id: ID of the order
            previous_status: Status before the change
            new_status: Status after the change
            details: Extra details, e.g. the reconciliation summary
            actor: Who requested the change
        """
        return await self.log_activity(
            action="status_change",
            entity_type="order",
            entity_id=str(order_id),
            details={
                "from": previous_status,
                "to": new_status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **(details or {})
            },
            actor=actor
        )

    async def log_rebuild(self, product_id: int, previous_stock: int, new_stock: int) -> ActivityLog:
        return await self.log_activity(
            action="rebuild",
            entity_type="product",
            entity_id=str(product_id),
            details={"from": previous_stock, "to": new_stock},
            actor="system"
        )
