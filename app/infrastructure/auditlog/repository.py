"""
Audit Log Repository - append-only trail of ledger mutations
"""
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from app.infrastructure.db.models import AuditLog


class AuditLogRepository:
    """
    Repository for the audit log.

    Writes never commit: the caller's unit of work decides whether the
    audit row lands together with the mutation it describes.
    """

    def __init__(self, db: Session):
        self.db = db

    def append_event(
        self,
        family_id: int,
        event_type: str,
        entity_type: str,
        entity_id: Optional[int],
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
        actor_user_id: Optional[int] = None,
    ) -> int:
        """
        Append an event to the audit log

        Args:
            family_id: owning family
            event_type: e.g. "income_event_received"
            entity_type: e.g. "IncomeEvent"
            entity_id: id of the mutated row (None for bulk events)
            payload: JSON-serializable data (amounts as strings)
            occurred_at: when it happened (default: now, UTC)
            actor_user_id: who did it (optional)

        Returns:
            id of the audit row

        Example:
            >>> repo = AuditLogRepository(db)
            >>> repo.append_event(
            ...     family_id=1,
            ...     event_type="attribution_created",
            ...     entity_type="PaymentAttribution",
            ...     entity_id=7,
            ...     payload={"payment_id": 3, "income_event_id": 5, "amount": "700.00"},
            ... )
        """
        if occurred_at is None:
            occurred_at = datetime.now(timezone.utc)

        event = AuditLog(
            family_id=family_id,
            actor_user_id=actor_user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload_json=payload,
            occurred_at=occurred_at,
        )

        self.db.add(event)
        self.db.flush()  # get the id without committing

        return event.id

    def list_events(
        self,
        family_id: int,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        limit: int = 200,
    ) -> List[AuditLog]:
        """
        Events for a family, oldest first

        Args:
            family_id: owning family
            entity_type: filter by entity type (optional)
            entity_id: filter by entity id (optional)
            limit: max rows (default: 200)
        """
        query = self.db.query(AuditLog).filter(AuditLog.family_id == family_id)

        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)

        return query.order_by(AuditLog.id.asc()).limit(limit).all()
