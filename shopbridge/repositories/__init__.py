"""
Repositories Layer
MongoDB persistence for the delivery subsystem.
"""
from .connection import db_manager, DatabaseManager
from .base import BaseRepository
from .members import MemberRepository
from .messages import MessageRepository
from .orders import OrderRepository
from .settings import SettingsRepository, TemplateRepository
from .store import MongoDeliveryStore

__all__ = [
    "db_manager",
    "DatabaseManager",
    "BaseRepository",
    "MemberRepository",
    "MessageRepository",
    "OrderRepository",
    "SettingsRepository",
    "TemplateRepository",
    "MongoDeliveryStore",
]
