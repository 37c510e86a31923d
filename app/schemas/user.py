"""User schemas."""
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import UserRole


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    role: UserRole
    is_active: bool = True
    stripe_account_id: str | None = Field(default=None, pattern=r"^acct_[A-Za-z0-9]+$")
    stripe_onboarding_complete: bool = False


class UserRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: UserRole
    is_active: bool
    stripe_account_id: str | None = None
    stripe_onboarding_complete: bool = False

    model_config = ConfigDict(from_attributes=True)


class StripeAccountLinkRead(BaseModel):
    url: str
    expires_at: int | None = None
    stripe_account_id: str
    stripe_onboarding_complete: bool
