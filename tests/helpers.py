"""Fakes and builders shared by the test modules."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from backend.app.contacts.directory import ContactDirectory
from backend.app.contacts.models import EmergencyContact, Relationship
from backend.app.core.errors import TransportError
from backend.app.core.security import create_access_token
from backend.app.users.models import UserIdentity
from backend.app.users.store import UserStore


# ═══════════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════════

class FakeSmsSender:
    """Records every SMS; raises TransportError for numbers in ``fail_for``."""

    def __init__(self, fail_for: Optional[set] = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for = fail_for or set()

    async def send(self, body: str, to: str, from_: Optional[str] = None) -> str:
        if to in self.fail_for:
            raise TransportError("sms", f"carrier rejected {to}")
        self.sent.append({"body": body, "to": to, "from": from_})
        return f"SM{len(self.sent):04d}"


class FakeEmailSender:
    def __init__(self, fail_for: Optional[set] = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for = fail_for or set()

    async def send(
        self, to: str, subject: str, text: str, html: str, from_: Optional[str] = None,
    ) -> str:
        if to in self.fail_for:
            raise TransportError("email", f"mailbox {to} unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return f"msg-{len(self.sent)}"


class GatedSmsSender(FakeSmsSender):
    """Each send waits on ``gate``; ``started`` lists numbers whose send began."""

    def __init__(self, gate: asyncio.Event):
        super().__init__()
        self.gate = gate
        self.started: List[str] = []
        self.first_started = asyncio.Event()

    async def send(self, body: str, to: str, from_: Optional[str] = None) -> str:
        self.started.append(to)
        self.first_started.set()
        await self.gate.wait()
        return await super().send(body, to, from_)


class RecordingSleep:
    """Stands in for asyncio.sleep; remembers requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeConnection:
    """Collects JSON frames the hub sends."""

    def __init__(self, fail: bool = False):
        self.frames: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self) -> List[str]:
        return [f["event"] for f in self.frames]

    def last(self, event: str) -> Dict[str, Any]:
        return [f["data"] for f in self.frames if f["event"] == event][-1]


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

async def make_user(
    session,
    name: str = "Jane Doe",
    email: Optional[str] = None,
    phone: Optional[str] = "+15550001111",
    auto_contact_police: bool = False,
) -> UserIdentity:
    email = email or f"{name.lower().replace(' ', '.')}@example.com"
    return await UserStore(session).create(
        email=email, full_name=name, phone_number=phone,
        auto_contact_police=auto_contact_police,
    )


async def make_contact(
    session,
    user: UserIdentity,
    name: str = "Alex",
    phone: str = "+15552220001",
    email: Optional[str] = None,
    priority: int = 1,
    relationship: Relationship = Relationship.FRIEND,
) -> EmergencyContact:
    return await ContactDirectory(session).add(
        user.id, name=name, phone_number=phone, email=email,
        relationship=relationship, priority_order=priority,
    )


def auth_headers(user: UserIdentity) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
