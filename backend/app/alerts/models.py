"""
models.py — Shared data structures for emergency alerting.

Defines:
    • AlertType       — what kind of emergency the user reported
    • AlertStatus     — lifecycle state of an alert record
    • EmergencyAlert  — one persisted "I need help" event
    • DeliveryChannel — SMS / email
    • DeliveryOutcome — result of one send attempt
    • DeliveryAttempt — single send attempt record
    • AlertRequest    — trigger input from the API layer

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    pending ──► sent ──► delivered / acknowledged / resolved / failed

There is no enforced transition graph: the owner may move an alert to any
status at any time (a resolved alert can be re-opened as acknowledged).
Entering ``acknowledged`` stamps ``acknowledged_at``; entering ``resolved``
stamps ``resolved_at``. Re-entering either overwrites its stamp.

``sent`` means "dispatch was started", not "every contact was reached".
Per-contact results live in the delivery log (see dispatcher.DeliveryLog).

═══════════════════════════════════════════════════════════════════════════
CONTACT SNAPSHOT
═══════════════════════════════════════════════════════════════════════════

``contacts_notified`` is the ordered list of contact ids that were active
when the alert fired. It is never rewritten: deleting a contact afterwards
leaves a dangling id, which readers skip when enriching.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    GENERAL          = "general"
    MEDICAL          = "medical"
    VIOLENCE         = "violence"
    HARASSMENT       = "harassment"
    STALKING         = "stalking"
    ACCIDENT         = "accident"
    FIRE             = "fire"
    NATURAL_DISASTER = "natural_disaster"


class AlertStatus(str, Enum):
    PENDING      = "pending"        # persisted, dispatch not yet started
    SENT         = "sent"           # dispatch started
    DELIVERED    = "delivered"
    ACKNOWLEDGED = "acknowledged"   # a recipient confirmed
    RESOLVED     = "resolved"
    FAILED       = "failed"


class DeliveryChannel(str, Enum):
    SMS   = "sms"
    EMAIL = "email"


class DeliveryOutcome(str, Enum):
    SUCCESS   = "success"
    SIMULATED = "simulated"   # channel not configured, logged only
    FAILED    = "failed"


MAX_MESSAGE_LENGTH = 500


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class EmergencyAlert:
    """
    A persisted emergency alert.

    Attributes
    ----------
    user_id : str
        Owner (the person in danger). Only the owner may read or update it.
    message : str | None
        Free text from the user, at most 500 characters.
    latitude, longitude : float | None
        Either both present or both absent.
    contacts_notified : list[str]
        Ordered snapshot of contact ids at trigger time.
    police_contacted : bool
        Intent flag only; nothing is sent to emergency services.
    is_test : bool
        Test alerts are excluded from history and statistics by default.
    """
    user_id: str
    alert_type: AlertType = AlertType.GENERAL
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    message: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_accuracy: Optional[float] = None
    address: Optional[str] = None
    status: AlertStatus = AlertStatus.PENDING
    contacts_notified: List[str] = field(default_factory=list)
    police_contacted: bool = False
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_test: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "alertType": self.alert_type.value,
            "message": self.message,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "locationAccuracy": self.location_accuracy,
            "address": self.address,
            "status": self.status.value,
            "contactsNotified": list(self.contacts_notified),
            "policeContacted": self.police_contacted,
            "acknowledgedAt": _iso(self.acknowledged_at),
            "resolvedAt": _iso(self.resolved_at),
            "metadata": self.metadata,
            "isTest": self.is_test,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt to one contact via one channel."""
    alert_id: str
    contact_id: str
    contact_name: str
    channel: DeliveryChannel
    outcome: DeliveryOutcome
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    is_test: bool = False
    attempted_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
            "channel": self.channel.value,
            "outcome": self.outcome.value,
            "providerMessageId": self.provider_message_id,
            "error": self.error,
            "isTest": self.is_test,
            "attemptedAt": self.attempted_at.isoformat(),
        }


@dataclass
class AlertRequest:
    """What the user submits when triggering an alert."""
    alert_type: AlertType = AlertType.GENERAL
    message: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_accuracy: Optional[float] = None
    address: Optional[str] = None
    contact_police: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
