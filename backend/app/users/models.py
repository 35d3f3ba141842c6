"""
models.py — Read-only user view shared with the alerting core.

The core only ever needs who sent an alert (id, display name, phone) and
the one alert-behaviour flag it honours (auto police contact).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UserIdentity:
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    auto_contact_police: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "phone": self.phone}
