# /queuebot/routes/notifications.py

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from queuebot.models.api import NotificationRequest
from queuebot.services.notification_service import NotificationService
from queuebot.services.security_service import EnhancedSecurityService
from queuebot.utils.dependencies import get_notification_service, verify_api_key
from queuebot.utils.logging import mask_phone

# Ticket notifications requested by the queue administration side
# (ticket created, almost your turn, your turn).

router = APIRouter(
    tags=["Notifications"],
    dependencies=[Depends(verify_api_key)]
)

log = structlog.get_logger(__name__)


@router.post("/whatsapp")
async def send_whatsapp_notification(
    notification: NotificationRequest,
    notifier: NotificationService = Depends(get_notification_service),
):
    if notification.missing_fields():
        log.warning("Notification request rejected", missing=notification.missing_fields())
        return JSONResponse(
            {
                "success": False,
                "error": "Missing required fields: " + ", ".join(NotificationRequest.REQUIRED_FIELDS),
            },
            status_code=400,
        )

    phone = EnhancedSecurityService.sanitize_phone_number(notification.phone)
    if not phone:
        return JSONResponse({"success": False, "error": "Invalid phone number"}, status_code=400)

    if not notifier.enabled:
        return {"success": False, "message": "WhatsApp notifications are disabled"}

    sent = await notifier.notify(notification.model_copy(update={"phone": phone}))
    log.info(
        "WhatsApp notification processed",
        type=notification.type,
        ticket_number=notification.ticketNumber,
        phone=mask_phone(notification.phone),
        sent=sent,
    )
    return {
        "success": sent,
        "message": "Notification sent" if sent else "Failed to send WhatsApp notification",
    }
