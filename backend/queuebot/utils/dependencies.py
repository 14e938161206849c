# /queuebot/utils/dependencies.py

import secrets
import structlog
from fastapi import Request, HTTPException

from queuebot.config.settings import settings
from queuebot.services.conversation_engine import ConversationEngine
from queuebot.services.db_service import db_service
from queuebot.services.notification_service import NotificationService
from queuebot.services.qr_link_service import QRLinkService

log = structlog.get_logger(__name__)


async def verify_api_key(request: Request):
    """Guards internal endpoints when an API key is configured."""
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            log.warning("Rejected request with invalid API key", path=request.url.path)
            raise HTTPException(status_code=403, detail="Invalid or missing API key")


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_conversation_engine(request: Request) -> ConversationEngine:
    return request.app.state.conversation_engine


def get_qr_link_service() -> QRLinkService:
    return QRLinkService(db_service)
