"""
FastAPI routes: emergency contact management.

Provides endpoints to:
    GET    /api/v1/contacts          — all contacts, priority order
    GET    /api/v1/contacts/active   — active contacts only
    GET    /api/v1/contacts/stats    — totals + relationship breakdown
    POST   /api/v1/contacts          — add (409 on duplicate phone)
    PUT    /api/v1/contacts/{id}     — partial update (owner only)
    DELETE /api/v1/contacts/{id}     — hard delete (owner only)
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_current_user
from backend.app.api.schemas import ContactCreate, ContactUpdate
from backend.app.contacts.directory import ContactDirectory
from backend.app.contacts.models import EmergencyContact
from backend.app.core.database import get_db
from backend.app.core.errors import ConflictError, NotFoundError, OwnershipError
from backend.app.users.models import UserIdentity

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])

DUPLICATE_PHONE_MESSAGE = "A contact with this phone number already exists"


async def _owned_contact(
    directory: ContactDirectory, user: UserIdentity, contact_id: str,
) -> EmergencyContact:
    contact = await directory.find_by_id(contact_id)
    if contact is None:
        raise NotFoundError("Contact", id=contact_id)
    if contact.user_id != user.id:
        raise OwnershipError("Contact", id=contact_id)
    return contact


@router.get("", summary="List emergency contacts")
async def list_contacts(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    contacts = await ContactDirectory(db).list_by_user(user.id)
    return {
        "message": "Contacts retrieved successfully",
        "contacts": [c.to_dict() for c in contacts],
        "count": len(contacts),
    }


@router.get("/active", summary="List active emergency contacts")
async def list_active_contacts(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    contacts = await ContactDirectory(db).list_active_by_user(user.id)
    return {
        "message": "Active contacts retrieved successfully",
        "contacts": [c.to_dict() for c in contacts],
        "count": len(contacts),
    }


@router.get("/stats", summary="Contact statistics")
async def contact_stats(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    return {
        "message": "Contact statistics retrieved successfully",
        "stats": await ContactDirectory(db).stats(user.id),
    }


@router.post("", status_code=201, summary="Add an emergency contact")
async def add_contact(
    body: ContactCreate,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    directory = ContactDirectory(db)
    # Read-then-compare; concurrent adds of the same number can both pass
    if await directory.find_by_phone(user.id, body.phone_number):
        raise ConflictError(DUPLICATE_PHONE_MESSAGE, phoneNumber=body.phone_number)

    contact = await directory.add(
        user.id,
        name=body.name,
        phone_number=body.phone_number,
        email=body.email,
        relationship=body.relationship,
        priority_order=body.priority_order,
    )
    return {"message": "Emergency contact added successfully", "contact": contact.to_dict()}


@router.put("/{contact_id}", summary="Update an emergency contact")
async def update_contact(
    contact_id: str,
    body: ContactUpdate,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    directory = ContactDirectory(db)
    contact = await _owned_contact(directory, user, contact_id)

    # Explicit null only means something for email (clears it)
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key == "email"
    }
    phone = changes.get("phone_number")
    if phone and phone != contact.phone_number:
        if await directory.find_by_phone(user.id, phone, exclude_id=contact.id):
            raise ConflictError(DUPLICATE_PHONE_MESSAGE, phoneNumber=phone)

    updated = await directory.update(contact, **changes)
    return {"message": "Emergency contact updated successfully", "contact": updated.to_dict()}


@router.delete("/{contact_id}", summary="Delete an emergency contact")
async def delete_contact(
    contact_id: str,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    directory = ContactDirectory(db)
    contact = await _owned_contact(directory, user, contact_id)
    await directory.remove(contact)
    return {"message": "Emergency contact deleted successfully"}
