"""SQLAlchemy tables for users and their alert settings."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base, UTCDateTime, new_id, utcnow


class UserORM(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow,
    )

    settings: Mapped[Optional["UserSettingsORM"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin",
        cascade="all, delete-orphan",
    )


class UserSettingsORM(Base):
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    alert_delay_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    auto_contact_police: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    location_sharing: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user: Mapped[UserORM] = relationship(back_populates="settings")
