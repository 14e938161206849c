# /queuebot/routes/webhooks.py

import structlog
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from queuebot.config import strings
from queuebot.config.settings import settings
from queuebot.models.api import InboundWebhookPayload
from queuebot.services.conversation_engine import ConversationEngine
from queuebot.services.db_service import db_service
from queuebot.services.notification_service import NotificationService
from queuebot.services.qr_link_service import extract_qr_context
from queuebot.services.security_service import EnhancedSecurityService, rate_limiter
from queuebot.utils.dependencies import get_conversation_engine, get_notification_service
from queuebot.utils.logging import mask_phone
from queuebot.utils.metrics import response_time_histogram, webhook_events_counter
from queuebot.utils.rate_limiter import limiter

# Inbound WhatsApp messages delivered by UltraMsg. Each message is handled
# inline: the conversation engine produces the reply, the reply is sent back
# through UltraMsg and the exchange is written to the interaction log.

router = APIRouter(
    tags=["Webhooks"]
)

log = structlog.get_logger(__name__)

INBOUND_EVENT_TYPES = ("message_create", "message_received")
INVALID_PAYLOAD = {"error": "Invalid payload structure or event type"}


def _skipped(reason: str) -> dict:
    webhook_events_counter.labels(outcome="skipped").inc()
    return {"success": True, "skipped": True, "reason": reason}


@router.post("/whatsapp/inbound")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_ultramsg_inbound(
    request: Request,
    engine: ConversationEngine = Depends(get_conversation_engine),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Handles one UltraMsg message event and answers the customer."""
    with response_time_histogram.labels(endpoint="whatsapp_inbound").time():
        if not settings.ultramsg_webhook_enabled:
            webhook_events_counter.labels(outcome="disabled").inc()
            return JSONResponse({"error": "Webhook disabled"}, status_code=503)

        try:
            payload = InboundWebhookPayload.model_validate(await request.json())
        except (ValueError, ValidationError) as e:
            log.warning("Unparseable UltraMsg webhook payload", error=str(e))
            webhook_events_counter.labels(outcome="invalid").inc()
            return JSONResponse(INVALID_PAYLOAD, status_code=400)

        if not EnhancedSecurityService.verify_shared_token(payload.token, settings.ultramsg_webhook_token):
            log.error("UltraMsg webhook token mismatch", instance_id=payload.instanceId)
            webhook_events_counter.labels(outcome="unauthorized").inc()
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        if payload.data is None or payload.event_type not in INBOUND_EVENT_TYPES:
            log.warning("Ignoring UltraMsg event", event_type=payload.event_type)
            webhook_events_counter.labels(outcome="invalid").inc()
            return JSONResponse(INVALID_PAYLOAD, status_code=400)

        message = payload.data
        if message.fromMe:
            return _skipped("Message sent by instance owner")
        if message.type != "chat":
            return _skipped(f"Unsupported message type: {message.type}")

        phone_number = EnhancedSecurityService.strip_chat_suffix(message.from_)
        business_number = EnhancedSecurityService.strip_chat_suffix(message.to)
        try:
            body = EnhancedSecurityService.validate_message_content(message.body or "")
        except ValueError:
            log.warning("Rejected oversized message", phone=mask_phone(phone_number))
            webhook_events_counter.labels(outcome="invalid").inc()
            return JSONResponse({"error": "Message too long"}, status_code=400)

        if not await rate_limiter.check_phone_rate_limit(phone_number):
            log.warning("Rate limit exceeded for phone", phone=mask_phone(phone_number))
            webhook_events_counter.labels(outcome="rate_limited").inc()
            return JSONResponse({"status": "rate_limited"}, status_code=429)

        organization = await db_service.get_organization_by_whatsapp_number(business_number)
        if not organization:
            log.warning("No organization for WhatsApp number", business_number=business_number)
            await notifier.send_message(phone_number, strings.ORGANIZATION_NOT_FOUND)
            webhook_events_counter.labels(outcome="organization_not_found").inc()
            return {"success": False, "error": "Organization not found for this WhatsApp number"}

        branch_id, department_id = extract_qr_context(body)
        log.info(
            "Processing inbound WhatsApp message",
            phone=mask_phone(phone_number),
            organization_id=organization.id,
            qr_branch_id=branch_id,
            qr_department_id=department_id,
        )

        reply = await engine.process_message(phone_number, body, organization.id, branch_id, department_id)
        sent = await notifier.send_message(phone_number, reply)

        record = {
            "organization_id": organization.id,
            "phone_number": phone_number,
            "message_content": body,
            "processed": True,
            "event_type": payload.event_type,
            "webhook_data": {
                "outbound_message": reply,
                "send_success": sent,
                "qr_context": {"branch_id": branch_id, "department_id": department_id},
                "processed_at": datetime.now(timezone.utc),
            },
        }
        # Keyed by the provider id so redeliveries overwrite one row
        if message.id:
            record["_id"] = message.id
        await db_service.log_inbound_message(record)

        webhook_events_counter.labels(outcome="processed").inc()
        return {
            "success": True,
            "processed": 1,
            "response": {"organization_id": organization.id, "message": reply, "sent": sent},
        }
