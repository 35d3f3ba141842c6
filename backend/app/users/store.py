"""Keyed user lookups for the auth boundary."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import StorageError
from backend.app.users.models import UserIdentity
from backend.app.users.orm import UserORM, UserSettingsORM

logger = logging.getLogger(__name__)


def _to_identity(row: UserORM) -> UserIdentity:
    return UserIdentity(
        id=row.id,
        name=row.full_name,
        phone=row.phone_number,
        email=row.email,
        auto_contact_police=bool(row.settings and row.settings.auto_contact_police),
    )


class UserStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, user_id: str) -> Optional[UserIdentity]:
        result = await self.session.execute(
            select(UserORM).where(UserORM.id == user_id, UserORM.is_active.is_(True))
        )
        row = result.scalar_one_or_none()
        return _to_identity(row) if row else None

    async def create(
        self,
        *,
        email: str,
        full_name: str,
        phone_number: Optional[str] = None,
        password_hash: Optional[str] = None,
        auto_contact_police: bool = False,
    ) -> UserIdentity:
        """Insert a user with default settings (registration lives outside this service)."""
        row = UserORM(
            email=email.strip().lower(),
            full_name=full_name.strip(),
            phone_number=phone_number,
            password_hash=password_hash,
        )
        row.settings = UserSettingsORM(auto_contact_police=auto_contact_police)
        self.session.add(row)
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error("User insert failed for %s: %s", email, exc)
            raise StorageError("create_user", str(exc)) from exc
        return _to_identity(row)
