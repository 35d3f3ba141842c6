"""
Pydantic request schemas for the contacts and alerts API.

Bodies use the camelCase field names the mobile client sends
(``phoneNumber``, ``alertType`` ...); snake_case is accepted too.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from backend.app.alerts.models import MAX_MESSAGE_LENGTH, AlertStatus, AlertType
from backend.app.contacts.models import Relationship

# Digits with optional leading "+", spaces, dashes, dots or parentheses
PHONE_PATTERN = r"^\+?[0-9][0-9\s\-().]{5,19}$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class ContactCreate(_CamelModel):
    """Request body for POST /api/v1/contacts."""
    name: str = Field(..., min_length=2, max_length=100, examples=["Jane Doe"])
    phone_number: str = Field(
        ..., alias="phoneNumber", pattern=PHONE_PATTERN, examples=["+15550001111"],
    )
    email: Optional[EmailStr] = Field(None, examples=["jane@example.com"])
    relationship: Relationship = Field(..., examples=["family"])
    priority_order: Optional[int] = Field(None, alias="priorityOrder", ge=1, examples=[1])

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ContactUpdate(_CamelModel):
    """Request body for PUT /api/v1/contacts/{id}; only sent fields change."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone_number: Optional[str] = Field(None, alias="phoneNumber", pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    relationship: Optional[Relationship] = None
    is_active: Optional[bool] = Field(None, alias="isActive")
    priority_order: Optional[int] = Field(None, alias="priorityOrder", ge=1)

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertCreate(_CamelModel):
    """Request body for POST /api/v1/alerts."""
    alert_type: AlertType = Field(..., alias="alertType", examples=["medical"])
    message: Optional[str] = Field(None, max_length=MAX_MESSAGE_LENGTH)
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, examples=[40.7128])
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, examples=[-74.006])
    address: Optional[str] = Field(None, max_length=500)
    location_accuracy: Optional[float] = Field(None, alias="locationAccuracy", ge=0)
    contact_police: bool = Field(False, alias="contactPolice")

    @model_validator(mode="after")
    def _coordinates_pair(self) -> "AlertCreate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class AlertStatusUpdate(_CamelModel):
    """Request body for PUT /api/v1/alerts/{id}/status."""
    status: AlertStatus = Field(..., examples=["acknowledged"])
    notes: Optional[str] = Field(None, max_length=MAX_MESSAGE_LENGTH)
