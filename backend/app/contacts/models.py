"""
models.py — Emergency contact record.

A contact belongs to exactly one user and is never shared. Ordering for
notification is ``priority_order`` ascending (1 = first to be notified),
ties broken by most recently created first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Relationship(str, Enum):
    FAMILY    = "family"
    FRIEND    = "friend"
    COLLEAGUE = "colleague"
    NEIGHBOR  = "neighbor"
    OTHER     = "other"


@dataclass
class EmergencyContact:
    id: str
    user_id: str
    name: str
    phone_number: str
    relationship: Relationship
    email: Optional[str] = None
    is_active: bool = True
    priority_order: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "phoneNumber": self.phone_number,
            "email": self.email,
            "relationship": self.relationship.value,
            "isActive": self.is_active,
            "priorityOrder": self.priority_order,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
