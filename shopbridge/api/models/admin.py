"""
Admin API request schemas.
"""
import datetime as dt
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, model_validator


class _MessageBody(BaseModel):
    content: Optional[str] = Field(None, max_length=2000)
    embed: Optional[Dict[str, Any]] = None
    author_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_body(self):
        if not self.content and not self.embed:
            raise ValueError("content or embed is required")
        return self


class ChannelMessageRequest(_MessageBody):
    """Post to a channel (defaults to the notification channel)."""
    channel_id: Optional[str] = None


class DirectMessageRequest(_MessageBody):
    user_id: str = Field(..., min_length=1)


class BroadcastRequest(_MessageBody):
    limit: int = Field(1000, ge=1, le=10000)


class SettingUpdate(BaseModel):
    value: str


class SyncPreviewRequest(BaseModel):
    """Either a look-back window or a starting order id."""
    window_hours: Optional[int] = Field(None, ge=1, le=24 * 30)
    since_id: Optional[str] = None


class MemberEvent(BaseModel):
    """Member lifecycle event relayed from the chat platform gateway."""
    type: Literal["join", "leave", "roles_updated"]
    user_id: str = Field(..., min_length=1)
    username: Optional[str] = None
    role_ids: List[str] = []
    joined_at: Optional[dt.datetime] = None
