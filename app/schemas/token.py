# app/schemas/token.py
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

# Relevant claims from a verified Firebase ID token
class FirebaseTokenData(BaseModel):
    uid: str = Field(..., description="Firebase User ID")
    email: Optional[EmailStr] = Field(None, description="User's email address (if available in token)")
    name: Optional[str] = Field(None, description="User's display name (if available in token)")

    # Decoded tokens carry many more claims (iss, aud, exp...) we don't need
    model_config = {"extra": "ignore"}


class Principal(BaseModel):
    """The authenticated actor, resolved from the token uid to our `users` row."""
    id: int
    email: str
    role: str = "user"  # system role: "user" | "admin"
    display_name: Optional[str] = None

    model_config = {"from_attributes": True}

    @property
    def is_system_admin(self) -> bool:
        return self.role == "admin"
