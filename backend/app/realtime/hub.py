"""
hub.py — Presence tracking and event fan-out for realtime clients.

═══════════════════════════════════════════════════════════════════════════
ROOMS
═══════════════════════════════════════════════════════════════════════════

    user-<userId>    joined automatically on connect; personal notifications
    alert-<alertId>  joined by the alert owner (on trigger / emergency-alert)
                     and by anyone who sends join-alert

Room membership is tracked per user id. Disconnecting drops the user from
every room. Each user has at most one live connection (last connect wins).

═══════════════════════════════════════════════════════════════════════════
INBOUND EVENTS
═══════════════════════════════════════════════════════════════════════════

    Event               Effect
    ─────────────────   ─────────────────────────────────────────────────────
    emergency-alert     emergency-notification → each user-<contactId> room
                        alert-sent → sender; sender joins alert-<id>
    location-update     location-update → alert-<alertId> room
    acknowledge-alert   alert-acknowledged → alert-<alertId> room,
                        then relayed to the lifecycle controller
    status-update       user-status-update → every other connected user
    join-alert          sender joins alert-<alertId>
    leave-alert         sender leaves alert-<alertId>
    anything else       error → sender

Offline recipients are skipped silently; nothing is queued.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from backend.app.core.errors import SafetyAPIError
from backend.app.users.models import UserIdentity

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Connected to Sentinel Safety Network"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


Authenticator = Callable[[Optional[str]], Awaitable[UserIdentity]]
AckRelay = Callable[[str, UserIdentity], Awaitable[Any]]


def user_room(user_id: str) -> str:
    return f"user-{user_id}"


def alert_room(alert_id: str) -> str:
    return f"alert-{alert_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _alert_id_from(data: Any) -> Optional[str]:
    """Accept either a bare id or ``{"alertId": ...}``."""
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        value = data.get("alertId") or data.get("id")
        return str(value) if value else None
    return None


class BroadcastHub:
    """
    Registry of connected users plus room-based event delivery.

    Parameters
    ----------
    authenticate : async callable
        ``token -> UserIdentity``; raises AuthError to reject a handshake.
    on_acknowledge : async callable | None
        ``(alert_id, identity)`` relay for acknowledge-alert events.
    """

    def __init__(self, authenticate: Authenticator, on_acknowledge: Optional[AckRelay] = None):
        self._authenticate = authenticate
        self.on_acknowledge = on_acknowledge
        self._presence: Dict[str, Tuple[Connection, UserIdentity]] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    # ── presence ──

    async def authenticate(self, token: Optional[str]) -> UserIdentity:
        """Resolve a handshake credential; raises AuthError on rejection."""
        return await self._authenticate(token)

    async def connect(self, token: Optional[str], connection: Connection) -> UserIdentity:
        """Authenticate and register a connection. Raises AuthError on rejection."""
        identity = await self.authenticate(token)
        await self.register(identity, connection)
        return identity

    async def register(self, identity: UserIdentity, connection: Connection) -> None:
        """Track an already-authenticated connection and send the welcome frame."""
        async with self._lock:
            previous = self._presence.get(identity.id)
            self._presence[identity.id] = (connection, identity)
            self._rooms.setdefault(user_room(identity.id), set()).add(identity.id)
            total = len(self._presence)

        if previous is not None and previous[0] is not connection:
            logger.info("User %s reconnected; replacing previous connection", identity.id)
        logger.info(
            "User connected: %s (%s)", identity.name, identity.id,
            extra={"user_id": identity.id, "connected_users": total},
        )
        await self._send(identity.id, connection, "connected", {
            "message": WELCOME_MESSAGE,
            "userId": identity.id,
            "timestamp": _now(),
        })

    async def disconnect(self, user_id: str, connection: Optional[Connection] = None) -> None:
        """Drop a user from presence and every room.

        When ``connection`` is given and a newer connection has replaced it,
        nothing is removed.
        """
        async with self._lock:
            current = self._presence.get(user_id)
            if current is None:
                return
            if connection is not None and current[0] is not connection:
                return
            del self._presence[user_id]
            for room in list(self._rooms):
                members = self._rooms[room]
                members.discard(user_id)
                if not members:
                    del self._rooms[room]
            total = len(self._presence)
        logger.info(
            "User disconnected: %s", user_id,
            extra={"user_id": user_id, "connected_users": total},
        )

    def connected_count(self) -> int:
        return len(self._presence)

    def connected_users(self) -> List[str]:
        return list(self._presence)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._presence

    # ── rooms ──

    async def join(self, user_id: str, room: str) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(user_id)

    async def leave(self, user_id: str, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(user_id)
            if not members:
                del self._rooms[room]

    def room_members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    # ── delivery ──

    async def _send(self, user_id: str, connection: Connection, event: str, data: Any) -> bool:
        try:
            await connection.send_json({"event": event, "data": data})
        except Exception as exc:
            logger.warning("Failed to send '%s' to user %s: %s", event, user_id, exc)
            await self.disconnect(user_id, connection)
            return False
        return True

    async def _deliver(self, user_ids: Iterable[str], event: str, data: Any) -> int:
        async with self._lock:
            targets = [
                (uid, self._presence[uid][0]) for uid in dict.fromkeys(user_ids)
                if uid in self._presence
            ]
        delivered = 0
        for uid, connection in targets:
            if await self._send(uid, connection, event, data):
                delivered += 1
        return delivered

    async def send_to_user(self, user_id: str, event: str, data: Any) -> bool:
        """Send to one user if online; False when offline."""
        return await self._deliver([user_id], event, data) == 1

    async def broadcast_to_users(self, user_ids: Iterable[str], event: str, data: Any) -> int:
        """Send the same event to each user's personal room."""
        delivered = 0
        for uid in user_ids:
            delivered += await self.emit_to_room(user_room(uid), event, data)
        return delivered

    async def emit_to_room(
        self, room: str, event: str, data: Any, *, exclude: Optional[str] = None,
    ) -> int:
        """Send to every online member of ``room``; returns deliveries made."""
        members = [uid for uid in self.room_members(room) if uid != exclude]
        return await self._deliver(members, event, data)

    # ── inbound events ──

    async def handle_event(self, identity: UserIdentity, event: str, data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            await self.send_to_user(identity.id, "error", {
                "message": f"Unknown event: {event}",
                "event": event,
            })
            return
        await handler(self, identity, data or {})

    async def _on_emergency_alert(self, identity: UserIdentity, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return
        contact_ids = data.get("contactIds") or []
        if not isinstance(contact_ids, (list, tuple)) or not all(
            isinstance(user_id, str) for user_id in contact_ids
        ):
            await self.send_to_user(identity.id, "error", {
                "message": "contactIds must be a list of user ids",
                "event": "emergency-alert",
            })
            return
        alert_id = data.get("id")
        logger.warning(
            "Emergency alert from %s via realtime channel", identity.name,
            extra={"alert_id": alert_id, "user_id": identity.id},
        )
        notification = {
            "type": "emergency_alert",
            "alert": {
                "id": alert_id,
                "type": data.get("alertType"),
                "message": data.get("message"),
                "location": data.get("location"),
                "user": identity.to_dict(),
            },
            "timestamp": _now(),
        }
        await self.broadcast_to_users(contact_ids, "emergency-notification", notification)
        if alert_id:
            await self.join(identity.id, alert_room(alert_id))
        await self.send_to_user(identity.id, "alert-sent", {
            "alertId": alert_id,
            "status": "broadcasted",
            "timestamp": _now(),
        })

    async def _on_location_update(self, identity: UserIdentity, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return
        alert_id = data.get("alertId")
        if not alert_id:
            return
        await self.emit_to_room(alert_room(alert_id), "location-update", {
            "alertId": alert_id,
            "location": {
                "latitude": data.get("latitude"),
                "longitude": data.get("longitude"),
                "accuracy": data.get("accuracy"),
                "address": data.get("address"),
            },
            "user": {"id": identity.id, "name": identity.name},
            "timestamp": _now(),
        })

    async def _on_acknowledge(self, identity: UserIdentity, data: Any) -> None:
        alert_id = _alert_id_from(data)
        if not alert_id:
            await self.send_to_user(identity.id, "error", {"message": "alertId is required"})
            return
        logger.info(
            "Alert acknowledged by %s: %s", identity.name, alert_id,
            extra={"alert_id": alert_id, "user_id": identity.id},
        )
        await self.emit_to_room(alert_room(alert_id), "alert-acknowledged", {
            "alertId": alert_id,
            "acknowledgedBy": {"id": identity.id, "name": identity.name},
            "timestamp": _now(),
        })
        if self.on_acknowledge is None:
            return
        try:
            await self.on_acknowledge(alert_id, identity)
        except SafetyAPIError as exc:
            await self.send_to_user(identity.id, "error", {
                "message": exc.message,
                "error": exc.error_code,
            })
        except Exception:
            logger.exception("Acknowledgement relay failed for alert %s", alert_id)
            await self.send_to_user(identity.id, "error", {
                "message": "Failed to record acknowledgement",
            })

    async def _on_status_update(self, identity: UserIdentity, data: Any) -> None:
        payload = {
            "userId": identity.id,
            "userName": identity.name,
            "status": data,
            "timestamp": _now(),
        }
        others = [uid for uid in self.connected_users() if uid != identity.id]
        await self._deliver(others, "user-status-update", payload)

    async def _on_join_alert(self, identity: UserIdentity, data: Any) -> None:
        alert_id = _alert_id_from(data)
        if alert_id:
            await self.join(identity.id, alert_room(alert_id))

    async def _on_leave_alert(self, identity: UserIdentity, data: Any) -> None:
        alert_id = _alert_id_from(data)
        if alert_id:
            await self.leave(identity.id, alert_room(alert_id))

    _handlers = {
        "emergency-alert": _on_emergency_alert,
        "location-update": _on_location_update,
        "acknowledge-alert": _on_acknowledge,
        "status-update": _on_status_update,
        "join-alert": _on_join_alert,
        "leave-alert": _on_leave_alert,
    }
