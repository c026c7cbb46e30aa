"""
app/database/models.py

Core SQLAlchemy ORM Models

Defines:
- User: Platform accounts with role-based access and the fundi payout profile

The job core treats users as weak references: it reads contact and payout
details and bumps the completed-jobs counter, nothing else.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database.base import Base, utcnow
from app.database.enums import UserRole

# ---------------------------------------------------
# User Model: Authenticated Platform User
# ---------------------------------------------------


class User(Base):
    __tablename__ = "users"

    # -------------------------------------
    # Fields
    # -------------------------------------
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4, comment="Unique identifier for the user"
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, comment="User's email address"
    )
    phone_number: Mapped[str | None] = mapped_column(
        String(20), nullable=True, comment="User's phone number"
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, comment="User role (CUSTOMER, FUNDI, ADMIN)"
    )
    first_name: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="User's first name"
    )
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, comment="User's last name")
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Whether the user account is active"
    )

    # -------------------------------------
    # Fundi Payout Profile
    # -------------------------------------
    mpesa_number: Mapped[str | None] = mapped_column(
        String(20), nullable=True, comment="Mobile-money number payouts are sent to"
    )
    payout_recipient_code: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="Provider routing handle for payouts"
    )
    completed_jobs: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Number of approved jobs"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
