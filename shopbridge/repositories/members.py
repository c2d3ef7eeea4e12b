"""
Member Tracking Repository
Community member state used by the welcome DM compliance gate.
"""
from typing import Any, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
import datetime as dt

from .base import BaseRepository
from .connection import MEMBER_TRACKING
from ..models.members import MemberRecord
from ..utils.observability import logger


class MemberRepository(BaseRepository[MemberRecord]):
    """Repository for member records. Records are never deleted."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, MEMBER_TRACKING, MemberRecord)

    async def get_by_user_id(self, user_id: str) -> Optional[MemberRecord]:
        return await self.find_one({"user_id": user_id})

    async def upsert(self, member: MemberRecord) -> MemberRecord:
        """
        Create or replace the record for `member.user_id`.

        The original `created_at` survives a rejoin.
        """
        now = dt.datetime.now(dt.UTC)
        fields = member.model_dump(exclude={"id", "created_at"})
        fields["updated_at"] = now

        doc = await self.collection.find_one_and_update(
            {"user_id": member.user_id},
            {"$set": fields, "$setOnInsert": {"created_at": member.created_at}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.debug(f"Upserted member {member.user_id}")
        return self._to_model(doc)

    async def update_by_user_id(self, user_id: str, **fields: Any) -> bool:
        return await self.update_fields({"user_id": user_id}, fields)

    async def list_auto_dm_candidates(
        self,
        limit: int,
        require_verified: bool = True,
        joined_before: Optional[dt.datetime] = None
    ) -> List[MemberRecord]:
        """Oldest-joined members passing the stored-state welcome DM gate."""
        query = {
            "still_in_server": True,
            "welcome_dm_sent": False,
            "has_closed_dms_role": False,
            "opt_out_at": None,
        }
        if require_verified:
            query["is_verified"] = True
        if joined_before is not None:
            query["joined_at"] = {"$lt": joined_before}

        return await self.find_many(query, limit=limit, sort=[("joined_at", 1)])

    async def list_reachable(self, limit: int = 1000) -> List[MemberRecord]:
        return await self.find_many(
            {"still_in_server": True, "has_closed_dms_role": False, "opt_out_at": None},
            limit=limit,
            sort=[("joined_at", 1)],
        )
