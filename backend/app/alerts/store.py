"""
store.py — Persistence for emergency alert records.

``transition_status`` is the only mutation after creation. Concurrent
transitions on the same alert are last-write-wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.alerts.models import AlertStatus, AlertType, EmergencyAlert
from backend.app.alerts.orm import EmergencyAlertORM
from backend.app.core.database import utcnow
from backend.app.core.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def _to_domain(row: EmergencyAlertORM) -> EmergencyAlert:
    return EmergencyAlert(
        id=row.id,
        user_id=row.user_id,
        alert_type=AlertType(row.alert_type),
        message=row.message,
        latitude=row.latitude,
        longitude=row.longitude,
        location_accuracy=row.location_accuracy,
        address=row.address,
        status=AlertStatus(row.status),
        contacts_notified=list(row.contacts_notified or []),
        police_contacted=bool(row.police_contacted),
        acknowledged_at=row.acknowledged_at,
        resolved_at=row.resolved_at,
        metadata=dict(row.metadata_ or {}),
        is_test=bool(row.is_test),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _coerce_status(value: Any) -> AlertStatus:
    try:
        return AlertStatus(value)
    except ValueError:
        raise ValidationError(
            "Please provide a valid alert status",
            field="status",
            allowed=[s.value for s in AlertStatus],
        )


class AlertStore:
    """Alert reads and writes scoped to one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _flush(self, operation: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error("Alert %s failed: %s", operation, exc)
            raise StorageError(operation, str(exc)) from exc

    async def create(self, alert: EmergencyAlert) -> EmergencyAlert:
        row = EmergencyAlertORM(
            id=alert.id,
            user_id=alert.user_id,
            alert_type=AlertType(alert.alert_type).value,
            message=alert.message,
            latitude=alert.latitude,
            longitude=alert.longitude,
            location_accuracy=alert.location_accuracy,
            address=alert.address,
            status=_coerce_status(alert.status).value,
            contacts_notified=list(alert.contacts_notified),
            police_contacted=alert.police_contacted,
            metadata_=dict(alert.metadata),
            is_test=alert.is_test,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
        )
        self.session.add(row)
        await self._flush("create_alert")
        logger.info(
            "Alert %s created (%s, %d contacts)",
            row.id, row.alert_type, len(row.contacts_notified),
            extra={"alert_id": row.id, "user_id": row.user_id},
        )
        return _to_domain(row)

    async def find_by_id(self, alert_id: str) -> Optional[EmergencyAlert]:
        row = await self.session.get(EmergencyAlertORM, alert_id)
        return _to_domain(row) if row else None

    async def list_by_user(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        include_tests: bool = False,
    ) -> List[EmergencyAlert]:
        """Alerts for one user, newest first."""
        stmt = select(EmergencyAlertORM).where(EmergencyAlertORM.user_id == user_id)
        if not include_tests:
            stmt = stmt.where(EmergencyAlertORM.is_test.is_(False))
        stmt = (
            stmt.order_by(EmergencyAlertORM.created_at.desc())
            .limit(max(limit, 0))
            .offset(max(offset, 0))
        )
        result = await self.session.execute(stmt)
        return [_to_domain(row) for row in result.scalars()]

    async def transition_status(
        self,
        alert_id: str,
        new_status: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EmergencyAlert:
        """
        Move an alert to ``new_status``.

        Stamps ``acknowledged_at`` / ``resolved_at`` when entering those
        states and leaves them alone otherwise. ``metadata`` is merged
        over the existing mapping.
        """
        status = _coerce_status(new_status)
        row = await self.session.get(EmergencyAlertORM, alert_id)
        if row is None:
            raise NotFoundError("Alert", id=alert_id)

        now = utcnow()
        row.status = status.value
        if status is AlertStatus.ACKNOWLEDGED:
            row.acknowledged_at = now
        elif status is AlertStatus.RESOLVED:
            row.resolved_at = now
        if metadata:
            row.metadata_ = {**(row.metadata_ or {}), **metadata}
        row.updated_at = now

        await self._flush("transition_status")
        logger.info(
            "Alert %s → %s", alert_id, status.value,
            extra={"alert_id": alert_id},
        )
        return _to_domain(row)

    async def get_stats(self, user_id: str) -> Dict[str, int]:
        """Count per status plus ``total`` (test alerts excluded)."""
        columns = [func.count(EmergencyAlertORM.id).label("total")]
        columns += [
            func.sum(case((EmergencyAlertORM.status == s.value, 1), else_=0)).label(s.value)
            for s in AlertStatus
        ]
        stmt = select(*columns).where(
            EmergencyAlertORM.user_id == user_id,
            EmergencyAlertORM.is_test.is_(False),
        )
        row = (await self.session.execute(stmt)).one()
        mapping = row._mapping
        stats = {"total": int(mapping["total"] or 0)}
        for s in AlertStatus:
            stats[s.value] = int(mapping[s.value] or 0)
        return stats
