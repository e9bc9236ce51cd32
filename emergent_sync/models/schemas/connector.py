"""
Connector Schemas
Models for webhook events from Nango
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict


class NangoEndUser(BaseModel):
    """The end user a Nango connection was created for (our user_id)."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    email: Optional[str] = None


class NangoWebhook(BaseModel):
    """
    Nango webhook payload for connection events.

    Only successful auth events are acted on; sync and forward events are
    acknowledged and ignored.

    See: https://docs.nango.dev/integrate/guides/webhooks
    """
    model_config = ConfigDict(extra="allow")  # Allow additional fields from Nango

    type: str  # Event type: "auth", "sync", "forward"
    connectionId: Optional[str] = None
    providerConfigKey: Optional[str] = None  # Integration key (google-calendar, google-mail)
    success: bool = False
    endUser: Optional[NangoEndUser] = None

    @property
    def end_user_id(self) -> Optional[str]:
        return self.endUser.id if self.endUser else None
