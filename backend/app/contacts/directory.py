"""
directory.py — Emergency contact directory.

Trusts its caller: ownership (contact.user_id == requester) is checked by
the API layer before ``update`` / ``remove`` are reached.

Duplicate phone numbers are detected by a read-then-compare in the API
layer (``find_by_phone``), not by a schema constraint. Two concurrent adds
with the same number can therefore both succeed; that window is accepted.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.contacts.models import EmergencyContact, Relationship
from backend.app.contacts.orm import EmergencyContactORM
from backend.app.core.database import utcnow
from backend.app.core.errors import StorageError

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({
    "name", "phone_number", "email", "relationship", "is_active", "priority_order",
})


def _to_domain(row: EmergencyContactORM) -> EmergencyContact:
    return EmergencyContact(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        phone_number=row.phone_number,
        email=row.email,
        relationship=Relationship(row.relationship),
        is_active=bool(row.is_active),
        priority_order=row.priority_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _clean_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip()
    return email or None


class ContactDirectory:
    """Contact reads and writes scoped to one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _ordered(self, user_id: str):
        return (
            select(EmergencyContactORM)
            .where(EmergencyContactORM.user_id == user_id)
            .order_by(
                EmergencyContactORM.priority_order.asc(),
                EmergencyContactORM.created_at.desc(),
            )
        )

    async def list_by_user(self, user_id: str) -> List[EmergencyContact]:
        result = await self.session.execute(self._ordered(user_id))
        return [_to_domain(row) for row in result.scalars()]

    async def list_active_by_user(self, user_id: str) -> List[EmergencyContact]:
        stmt = self._ordered(user_id).where(EmergencyContactORM.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [_to_domain(row) for row in result.scalars()]

    async def find_by_id(self, contact_id: str) -> Optional[EmergencyContact]:
        row = await self.session.get(EmergencyContactORM, contact_id)
        return _to_domain(row) if row else None

    async def find_by_phone(
        self, user_id: str, phone_number: str, *, exclude_id: Optional[str] = None,
    ) -> Optional[EmergencyContact]:
        """First contact of ``user_id`` with this number (optionally skipping one id)."""
        for contact in await self.list_by_user(user_id):
            if contact.phone_number == phone_number and contact.id != exclude_id:
                return contact
        return None

    async def add(
        self,
        user_id: str,
        *,
        name: str,
        phone_number: str,
        relationship: Relationship,
        email: Optional[str] = None,
        priority_order: Optional[int] = None,
    ) -> EmergencyContact:
        now = utcnow()
        row = EmergencyContactORM(
            user_id=user_id,
            name=name.strip(),
            phone_number=phone_number,
            email=_clean_email(email),
            relationship=Relationship(relationship).value,
            is_active=True,
            priority_order=priority_order or 1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error("Contact insert failed for user %s: %s", user_id, exc)
            raise StorageError("add_contact", str(exc)) from exc
        logger.info("Contact %s added for user %s", row.id, user_id)
        return _to_domain(row)

    async def update(self, contact: EmergencyContact, **changes: Any) -> EmergencyContact:
        """Apply field changes; an empty change set returns the contact untouched."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown contact fields: {sorted(unknown)}")
        if not changes:
            return contact

        row = await self.session.get(EmergencyContactORM, contact.id)
        if row is None:
            raise StorageError("update_contact", f"contact {contact.id} vanished")

        for key, value in changes.items():
            if key == "name":
                value = value.strip()
            elif key == "email":
                value = _clean_email(value)
            elif key == "relationship":
                value = Relationship(value).value
            setattr(row, key, value)
        row.updated_at = utcnow()

        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise StorageError("update_contact", str(exc)) from exc
        return _to_domain(row)

    async def remove(self, contact: EmergencyContact) -> None:
        row = await self.session.get(EmergencyContactORM, contact.id)
        if row is None:
            return
        await self.session.delete(row)
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise StorageError("remove_contact", str(exc)) from exc
        logger.info("Contact %s removed for user %s", contact.id, contact.user_id)

    async def stats(self, user_id: str) -> Dict[str, Any]:
        contacts = await self.list_by_user(user_id)
        active = sum(1 for c in contacts if c.is_active)
        by_relationship = Counter(c.relationship.value for c in contacts)
        return {
            "total": len(contacts),
            "active": active,
            "inactive": len(contacts) - active,
            "byRelationship": dict(by_relationship),
        }
