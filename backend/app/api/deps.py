"""Shared FastAPI dependencies: current user and app-scoped services."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.alerts.lifecycle import AlertLifecycleController
from backend.app.core.database import get_db
from backend.app.core.logging_config import update_request_context
from backend.app.core.security import extract_bearer, resolve_identity
from backend.app.users.models import UserIdentity


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> UserIdentity:
    """Resolve the bearer credential; 401 when missing, 403 when invalid."""
    token = extract_bearer(request.headers.get("authorization"))
    user = await resolve_identity(db, token)
    update_request_context(user_id=user.id)
    return user


def get_lifecycle(request: Request) -> AlertLifecycleController:
    return request.app.state.lifecycle
