"""
FastAPI Application

Main entry point for the shopbridge API.
Handles application lifecycle, service wiring and router mounting.
"""
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from shopbridge.api.routes import admin_router, health_router, metrics_router, webhooks_router
from shopbridge.config import settings
from shopbridge.errors import (
    AuthenticationError,
    ConnectivityError,
    InvalidTransitionError,
    NotReadyError,
    UpstreamAPIError,
    ValidationError,
)
from shopbridge.message_queue import InMemoryDeliveryStore, MessageDispatcher, QueueDrainer, RetryPolicy
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.settings import DEFAULT_SETTINGS, default_welcome_template
from shopbridge.repositories import MongoDeliveryStore, db_manager
from shopbridge.services import (
    DiscordRestClient,
    LogOnlyChatPlatform,
    OfflineOrderSync,
    OperatorMessaging,
    ShopifyAdminClient,
    WebhookIngestionService,
    WelcomeDmScheduler,
)
from shopbridge.services.chat_platform import ChatPlatform
from shopbridge.utils.observability import configure_logging
from shopbridge.utils.ttl_store import TTLStore


def attach_services(
    app: FastAPI,
    store: DeliveryStore,
    platform: ChatPlatform,
    shopify: ShopifyAdminClient,
    config=settings,
) -> None:
    """
    Build every service around a store and put them on app.state.

    Nothing is started here; the lifespan starts the background loops.

    Args:
        app: Application to attach to
        store: Persistence interface shared by all services
        platform: Chat platform used for delivery and live member lookups
        shopify: Storefront Admin API client for reconciliation
        config: Settings instance
    """
    dispatcher = MessageDispatcher(
        platform,
        reactions=config.order_reactions,
        reaction_delay=config.reaction_delay_seconds,
    )
    drainer = QueueDrainer(
        store=store,
        dispatcher=dispatcher,
        policy=RetryPolicy.from_settings(config),
        batch_size=config.queue_batch_size,
        poll_interval=config.queue_poll_interval_seconds,
        delivery_timeout=config.queue_delivery_timeout_seconds,
        retention=timedelta(days=config.queue_retention_days),
        purge_interval=config.queue_purge_interval_hours * 3600,
    )
    ingestion = WebhookIngestionService.from_settings(store, config)

    app.state.store = store
    app.state.platform = platform
    app.state.shopify = shopify
    app.state.dispatcher = dispatcher
    app.state.drainer = drainer
    app.state.ingestion = ingestion
    app.state.offline_sync = OfflineOrderSync(
        store=store,
        shopify=shopify,
        ingestion=ingestion,
        window_hours=config.sync_window_hours,
        inter_order_delay=config.sync_inter_order_delay_seconds,
    )
    app.state.scheduler = WelcomeDmScheduler.from_settings(store, platform, config)
    app.state.messaging = OperatorMessaging(
        store=store,
        stagger_seconds=config.broadcast_stagger_seconds,
        max_attempts=config.queue_default_max_attempts,
    )
    app.state.sync_previews = TTLStore(config.sync_preview_ttl_seconds)


async def _build_store() -> DeliveryStore:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory store; queued messages are lost on restart")
        return InMemoryDeliveryStore()

    await db_manager.connect()
    await db_manager.create_indexes()
    return MongoDeliveryStore(
        db_manager.database,
        client=db_manager.client,
        use_transactions=settings.mongodb_use_transactions,
    )


def _build_platform() -> ChatPlatform:
    if settings.discord_bot_token:
        return DiscordRestClient()
    logger.warning("DISCORD_BOT_TOKEN not set; outbound messages will only be logged")
    return LogOnlyChatPlatform()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup:
    - Connect the store (MongoDB or in-memory) and seed defaults
    - Build delivery, ingestion, sync and engagement services
    - Start the drain loop and the welcome-DM sweep

    Shutdown:
    - Stop background loops and pending timers
    - Close HTTP clients and disconnect from MongoDB
    """
    configure_logging()
    logger.info("Starting shopbridge API server...")

    store = await _build_store()
    await store.seed_defaults(DEFAULT_SETTINGS, [default_welcome_template(settings.shopify_shop_url)])

    platform = _build_platform()
    shopify = ShopifyAdminClient()
    attach_services(app, store, platform, shopify)

    app.state.drainer.start()
    app.state.scheduler.start()

    logger.info("API server ready to receive webhooks")

    yield

    logger.info("Shutting down API server...")

    await app.state.scheduler.shutdown()
    await app.state.drainer.stop()
    await shopify.close()
    if isinstance(platform, DiscordRestClient):
        await platform.close()

    if isinstance(store, MongoDeliveryStore):
        await db_manager.disconnect()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="shopbridge API",
    description="Storefront order notifications and member messaging for a Discord community",
    version="1.0.0",
    lifespan=lifespan
)


# ==================== Error mapping ====================

def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": str(exc)}
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(400, exc)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error_response(401, exc)


@app.exception_handler(NotReadyError)
async def not_ready_error_handler(request: Request, exc: NotReadyError):
    logger.warning(f"Request rejected, service not ready: {exc}", extra={"path": request.url.path})
    return _error_response(503, exc)


@app.exception_handler(ConnectivityError)
@app.exception_handler(UpstreamAPIError)
async def upstream_error_handler(request: Request, exc: Exception):
    logger.error(f"Upstream failure: {exc}", extra={"path": request.url.path})
    return _error_response(502, exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error_response(409, exc)


# Mount routers
app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(metrics_router)
app.include_router(admin_router)
