# app/schemas/notification.py
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

class InvitationEmail(BaseModel):
    """Everything the Notifier needs to render and deliver one invitation."""
    model_config = ConfigDict(populate_by_name=True)

    recipient_email: str = Field(..., alias="recipientEmail")
    inviter_name: str = Field(..., alias="inviterName")
    workspace_name: str = Field(..., alias="workspaceName")
    role: str
    permissions: Dict[str, bool]
    token: str
    expires_at: datetime = Field(..., alias="expiresAt")
    custom_message: Optional[str] = Field(None, alias="customMessage")

class DeliveryResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
