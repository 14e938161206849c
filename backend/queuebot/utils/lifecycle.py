# /queuebot/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from queuebot.utils.logging import setup_logging
from queuebot.utils.alerting import alerting_service
from queuebot.services.db_service import db_service
from queuebot.services.cache_service import cache_service
from queuebot.services.conversation_engine import ConversationEngine
from queuebot.services.notification_service import NotificationService
from queuebot.config.settings import settings

# Startup builds the outbound notifier and the conversation engine and keeps
# them on app.state; shutdown closes every client the process opened.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")

    await db_service.create_indexes()

    notification_service = NotificationService(settings)
    app.state.notification_service = notification_service
    app.state.conversation_engine = ConversationEngine(db_service, notification_service)

    if not notification_service.enabled:
        logger.warning("WhatsApp sending is disabled; replies will be logged but not delivered")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await notification_service.close()
    await alerting_service.cleanup()
    await cache_service.close()
    if db_service.client:
        db_service.client.close()
