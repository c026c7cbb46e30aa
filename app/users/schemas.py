"""
app/users/schemas.py

User Collaborator Schemas
Read-only views of a user that the job core is allowed to see:
- Token payload decoded from access tokens
- Contact info used for charging customers
- Payout profile used for paying fundis
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TokenPayload(BaseModel):
    """Claims the API relies on inside an access token."""

    sub: UUID = Field(..., description="User id the token was issued to")


class ContactInfo(BaseModel):
    user_id: UUID
    email: str
    phone_number: str | None = None
    full_name: str


class PayoutProfile(BaseModel):
    user_id: UUID
    full_name: str
    mpesa_number: str | None = Field(None, description="Destination for mobile-money payouts")
    payout_recipient_code: str | None = None
    completed_jobs: int = 0


class UserSummary(BaseModel):
    """Partial user information for embedding in job responses."""

    id: UUID
    first_name: str
    last_name: str

    model_config = ConfigDict(from_attributes=True)
