import datetime as dt
from typing import Optional
from pydantic import Field

from shopbridge.models.base import MongoBaseModel, utcnow


class MemberRecord(MongoBaseModel):
    """
    Local mirror of a community member's state.

    Never hard-deleted: it is the audit trail for compliance-gated messaging.
    A member holding the closed-DMs role must never get another automated DM.
    """
    user_id: str = Field(..., description="Chat platform user id")
    username: Optional[str] = None
    joined_at: dt.datetime = Field(default_factory=utcnow)
    is_verified: bool = False
    has_closed_dms_role: bool = False
    welcome_dm_sent: bool = False
    still_in_server: bool = True
    dm_sent_at: Optional[dt.datetime] = None
    opt_out_at: Optional[dt.datetime] = None

    @property
    def has_opted_out(self) -> bool:
        """Closed DMs now, or ever did. An opt-out survives leaving and rejoining."""
        return self.has_closed_dms_role or self.opt_out_at is not None

    def is_auto_dm_eligible(self, require_verified: bool = True) -> bool:
        """Stored-state half of the welcome DM gate."""
        if not self.still_in_server or self.welcome_dm_sent or self.has_opted_out:
            return False
        return self.is_verified or not require_verified
