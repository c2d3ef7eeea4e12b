"""Services package."""
from shopbridge.services.chat_platform import (
    ChatPlatform,
    DiscordRestClient,
    LogOnlyChatPlatform,
    MemberSnapshot,
    SentMessage,
)
from shopbridge.services.ingestion import IngestionOutcome, IngestionResult, WebhookIngestionService
from shopbridge.services.member_engagement import WelcomeDmDecision, WelcomeDmScheduler
from shopbridge.services.offline_sync import OfflineOrderSync, SyncPreview, SyncReport
from shopbridge.services.announcements import OperatorMessaging
from shopbridge.services.shopify_client import ShopifyAdminClient

__all__ = [
    "ChatPlatform",
    "DiscordRestClient",
    "LogOnlyChatPlatform",
    "MemberSnapshot",
    "SentMessage",
    "IngestionOutcome",
    "IngestionResult",
    "WebhookIngestionService",
    "WelcomeDmDecision",
    "WelcomeDmScheduler",
    "OfflineOrderSync",
    "SyncPreview",
    "SyncReport",
    "OperatorMessaging",
    "ShopifyAdminClient",
]
