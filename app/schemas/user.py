# app/schemas/user.py
from pydantic import BaseModel, Field, EmailStr
from typing import Optional

# Public view of the authenticated principal (GET /users/me)
class UserBase(BaseModel):
    id: int = Field(..., description="Unique database identifier for the user")
    email: EmailStr = Field(..., description="User's email address")
    display_name: Optional[str] = Field(None, alias="displayName", description="User's display name")
    role: str = Field("user", description="System role: 'user' or 'admin'")

    model_config = {"from_attributes": True, "populate_by_name": True}
