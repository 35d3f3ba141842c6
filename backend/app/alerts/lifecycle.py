"""
lifecycle.py — Alert lifecycle orchestration.

This is the central coordinator that:
    1. Loads the user's active contacts (none → NoContactsError, nothing stored)
    2. Persists the alert as ``pending`` with a snapshot of contact ids
    3. Starts background dispatch (not awaited)
    4. Moves the alert to ``sent`` and subscribes the owner to its room
    5. Applies owner status updates and recipient acknowledgements
    6. Serves history / detail views enriched with current contact data

═══════════════════════════════════════════════════════════════════════════
TRIGGER FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  POST /alerts       │
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐     none active
    │  active contacts    │ ───────────────► 400 NO_EMERGENCY_CONTACTS
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  store: pending     │  contacts_notified = [ids in priority order]
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  dispatcher.spawn   │  background task, SMS/email per contact
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  store: sent        │  201 returned here, dispatch may still run
    └─────────────────────┘

The returned alert reads ``sent`` even while deliveries are still going out
or after some of them failed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    AlertRequest,
    AlertStatus,
    AlertType,
    DeliveryAttempt,
    EmergencyAlert,
)
from backend.app.alerts.store import AlertStore
from backend.app.contacts.directory import ContactDirectory
from backend.app.contacts.models import EmergencyContact
from backend.app.core.errors import NoContactsError, NotFoundError, OwnershipError
from backend.app.realtime.hub import BroadcastHub, alert_room
from backend.app.users.models import UserIdentity

logger = logging.getLogger(__name__)

TEST_ALERT_MESSAGE = "This is a test of your emergency alert system. No action required."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AlertLifecycleController:
    """Coordinates the store, the dispatcher and the realtime hub."""

    def __init__(self, dispatcher: NotificationDispatcher, hub: Optional[BroadcastHub] = None):
        self.dispatcher = dispatcher
        self.hub = hub

    # ── helpers ──

    async def _owned_alert(self, session: AsyncSession, user: UserIdentity, alert_id: str) -> EmergencyAlert:
        alert = await AlertStore(session).find_by_id(alert_id)
        if alert is None:
            raise NotFoundError("Alert", id=alert_id)
        if alert.user_id != user.id:
            raise OwnershipError("Alert", id=alert_id)
        return alert

    async def _push_status(self, alert: EmergencyAlert, updated_by: UserIdentity) -> None:
        if self.hub is None:
            return
        await self.hub.emit_to_room(alert_room(alert.id), "alert-status", {
            "alertId": alert.id,
            "status": alert.status.value,
            "acknowledgedAt": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
            "resolvedAt": alert.resolved_at.isoformat() if alert.resolved_at else None,
            "updatedBy": {"id": updated_by.id, "name": updated_by.name},
            "timestamp": _now_iso(),
        })

    # ── trigger ──

    async def trigger(
        self,
        session: AsyncSession,
        user: UserIdentity,
        request: AlertRequest,
    ) -> Tuple[EmergencyAlert, asyncio.Task]:
        """Persist an alert and start notifying contacts in the background."""
        contacts = await ContactDirectory(session).list_active_by_user(user.id)
        if not contacts:
            raise NoContactsError()

        store = AlertStore(session)
        alert = await store.create(EmergencyAlert(
            user_id=user.id,
            alert_type=AlertType(request.alert_type),
            message=request.message or None,
            latitude=request.latitude,
            longitude=request.longitude,
            location_accuracy=request.location_accuracy,
            address=request.address or None,
            status=AlertStatus.PENDING,
            contacts_notified=[c.id for c in contacts],
            police_contacted=bool(request.contact_police or user.auto_contact_police),
            metadata={**request.metadata, "timestamp": _now_iso()},
        ))

        task = self.dispatcher.spawn(alert, contacts, user)
        alert = await store.transition_status(alert.id, AlertStatus.SENT)

        if self.hub is not None:
            await self.hub.join(user.id, alert_room(alert.id))

        logger.warning(
            "Emergency alert %s (%s) from user %s: %d contacts",
            alert.id, alert.alert_type.value, user.id, len(contacts),
            extra={"alert_id": alert.id, "user_id": user.id},
        )
        return alert, task

    # ── status ──

    async def update_status(
        self,
        session: AsyncSession,
        user: UserIdentity,
        alert_id: str,
        status: Any,
        notes: Optional[str] = None,
    ) -> EmergencyAlert:
        """Owner-driven status change; notes are merged into metadata."""
        await self._owned_alert(session, user, alert_id)
        metadata = None
        if notes:
            metadata = {
                "notes": notes,
                "statusUpdatedBy": user.id,
                "statusUpdatedAt": _now_iso(),
            }
        alert = await AlertStore(session).transition_status(alert_id, status, metadata)
        await self._push_status(alert, user)
        return alert

    async def acknowledge(
        self, session: AsyncSession, alert_id: str, by_user: UserIdentity,
    ) -> EmergencyAlert:
        """Recipient acknowledgement relayed from the realtime hub."""
        store = AlertStore(session)
        if await store.find_by_id(alert_id) is None:
            raise NotFoundError("Alert", id=alert_id)
        alert = await store.transition_status(alert_id, AlertStatus.ACKNOWLEDGED, {
            "acknowledgedBy": by_user.id,
            "acknowledgedByName": by_user.name,
        })
        await self._push_status(alert, by_user)
        return alert

    def make_ack_relay(self, session_factory: async_sessionmaker[AsyncSession]):
        """Build the hub's ``on_acknowledge`` callback with its own session."""

        async def relay(alert_id: str, identity: UserIdentity) -> EmergencyAlert:
            async with session_factory() as session:
                alert = await self.acknowledge(session, alert_id, identity)
                await session.commit()
                return alert

        return relay

    # ── test ──

    async def send_test(
        self, session: AsyncSession, user: UserIdentity,
    ) -> Tuple[EmergencyAlert, EmergencyContact, List[DeliveryAttempt]]:
        """Send a marked test message to the first active contact only."""
        contacts = await ContactDirectory(session).list_active_by_user(user.id)
        if not contacts:
            raise NoContactsError(
                "You must have at least one active emergency contact to test the system"
            )
        contact = contacts[0]
        alert = await AlertStore(session).create(EmergencyAlert(
            user_id=user.id,
            alert_type=AlertType.GENERAL,
            message=TEST_ALERT_MESSAGE,
            status=AlertStatus.SENT,
            contacts_notified=[contact.id],
            metadata={"isTest": True, "testTimestamp": _now_iso()},
            is_test=True,
        ))
        attempts = await self.dispatcher.send_test(alert, contact, user)
        logger.info("Test notification sent to %s", contact.name, extra={"alert_id": alert.id})
        return alert, contact, attempts

    # ── reads ──

    async def history(
        self, session: AsyncSession, user: UserIdentity, limit: int = 50, offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Alerts newest first, each with the names of contacts that still exist."""
        alerts = await AlertStore(session).list_by_user(user.id, limit=limit, offset=offset)
        directory = ContactDirectory(session)
        names: Dict[str, Optional[str]] = {}
        items = []
        for alert in alerts:
            contact_names = []
            for contact_id in alert.contacts_notified:
                if contact_id not in names:
                    contact = await directory.find_by_id(contact_id)
                    names[contact_id] = contact.name if contact else None
                if names[contact_id] is not None:
                    contact_names.append(names[contact_id])
            items.append({**alert.to_dict(), "contactNames": contact_names})
        return items

    async def detail(self, session: AsyncSession, user: UserIdentity, alert_id: str) -> Dict[str, Any]:
        alert = await self._owned_alert(session, user, alert_id)
        directory = ContactDirectory(session)
        details = []
        for contact_id in alert.contacts_notified:
            contact = await directory.find_by_id(contact_id)
            if contact is None:
                continue
            details.append({
                "id": contact.id,
                "name": contact.name,
                "phoneNumber": contact.phone_number,
                "relationship": contact.relationship.value,
            })
        return {**alert.to_dict(), "contactDetails": details}

    async def stats(self, session: AsyncSession, user: UserIdentity) -> Dict[str, int]:
        return await AlertStore(session).get_stats(user.id)

    async def deliveries(self, session: AsyncSession, user: UserIdentity, alert_id: str) -> Dict[str, Any]:
        """In-memory delivery trail for one owned alert."""
        await self._owned_alert(session, user, alert_id)
        log = self.dispatcher.delivery_log
        return {
            "summary": log.summary(alert_id),
            "attempts": [a.to_dict() for a in log.for_alert(alert_id)],
        }
