"""
Settings & Template Repositories
Operator-controlled feature toggles and message templates.
"""
from typing import Dict, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
import datetime as dt

from .base import BaseRepository, to_object_id
from .connection import MESSAGE_TEMPLATES, SETTINGS
from ..models.settings import MessageTemplate, Setting


class SettingsRepository(BaseRepository[Setting]):
    """Key/value feature toggles."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, SETTINGS, Setting)

    async def get_value(self, key: str) -> Optional[str]:
        setting = await self.find_one({"key": key})
        return setting.value if setting else None

    async def set_value(self, key: str, value: str) -> None:
        now = dt.datetime.now(dt.UTC)
        await self.collection.update_one(
            {"key": key},
            {"$set": {"value": value, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )

    async def all_values(self) -> Dict[str, str]:
        settings = await self.find_many({}, limit=1000, sort=[("key", 1)])
        return {s.key: s.value for s in settings}


class TemplateRepository(BaseRepository[MessageTemplate]):
    """Embed templates; at most one active per template type."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, MESSAGE_TEMPLATES, MessageTemplate)

    async def get_active(self, template_type: str) -> Optional[MessageTemplate]:
        return await self.find_one({"template_type": template_type, "is_active": True})

    async def save(self, template: MessageTemplate) -> MessageTemplate:
        if template.is_active:
            await self.collection.update_many(
                {"template_type": template.template_type, "is_active": True},
                {"$set": {"is_active": False}},
            )

        if template.id:
            await self.update_fields(
                {"_id": to_object_id(template.id)},
                template.model_dump(exclude={"id", "created_at", "updated_at"}),
            )
            return template

        return await self.create(template)

    async def increment_usage(self, template_id: str) -> None:
        object_id = to_object_id(template_id)
        if object_id is not None:
            await self.collection.update_one({"_id": object_id}, {"$inc": {"usage_count": 1}})
