"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .models import UserRole


# Response schemas
class UserResponse(BaseModel):
    """User response (never carries the password hash)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    name: str
    last_name: str
    role: UserRole
    phone: str | None = None
    business_code: str | None = None
    created_at: datetime
