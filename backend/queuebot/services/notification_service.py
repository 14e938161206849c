# /queuebot/services/notification_service.py

import httpx
import logging
import tenacity
from typing import Optional, Dict, Any

from queuebot.config import strings
from queuebot.config.settings import Settings
from queuebot.models.api import NotificationRequest
from queuebot.services.template_service import get_fallback_message
from queuebot.utils.alerting import alerting_service
from queuebot.utils.logging import mask_phone
from queuebot.utils.metrics import notifications_counter

logger = logging.getLogger(__name__)


def format_notification(request: NotificationRequest) -> str:
    """Customer text for a direct ticket notification."""
    variables = {
        "ticket_number": request.ticketNumber,
        "department_name": request.departmentName,
        "organization_name": request.organizationName,
        "current_serving": request.currentServing,
        "waiting_count": request.waitingCount,
    }
    if request.type == "ticket_created":
        queue_hint = (
            strings.CUSTOMERS_AHEAD_HINT.format(waiting_count=request.waitingCount)
            if request.waitingCount
            else strings.CALLED_SOON_HINT
        )
        return strings.TICKET_CREATED_NOTIFICATION.format(
            organization_name=request.organizationName,
            ticket_number=request.ticketNumber,
            department_name=request.departmentName,
            queue_hint=queue_hint,
        )
    if request.type in ("almost_your_turn", "your_turn"):
        return get_fallback_message(request.type, variables)
    return get_fallback_message("default", variables)


class NotificationService:
    """
    Outbound WhatsApp messages through UltraMsg.

    Sends are fire-and-forget from the caller's point of view: every failure
    is logged and reported as False, nothing is raised.
    """

    def __init__(self, app_settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.instance_id = app_settings.ultramsg_instance_id
        self.token = app_settings.ultramsg_token
        self.base_url = app_settings.ultramsg_base_url
        self.enabled = app_settings.whatsapp_enabled
        self.debug = app_settings.whatsapp_debug
        self.http_client = http_client or httpx.AsyncClient(timeout=app_settings.ultramsg_timeout_seconds)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.instance_id}/messages/chat"

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=4),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
    )
    async def resilient_api_call(self, func, *args, **kwargs):
        return await func(*args, **kwargs)

    async def send_message(self, to_phone: str, message: str, notification_type: str = "reply") -> bool:
        """Sends a chat message; True only when UltraMsg reports it as sent."""
        if not self.enabled:
            logger.info(f"WhatsApp sending disabled, skipping {notification_type} to {mask_phone(to_phone)}")
            notifications_counter.labels(type=notification_type, status="disabled").inc()
            return False
        if not (self.instance_id and self.token):
            logger.error("UltraMsg configuration missing (instance id or token)")
            notifications_counter.labels(type=notification_type, status="not_configured").inc()
            return False

        formatted_phone = to_phone[1:] if to_phone.startswith("+") else to_phone
        if self.debug:
            logger.info(f"WhatsApp debug mode, would send {notification_type} to {mask_phone(formatted_phone)}: {message[:100]}")
            notifications_counter.labels(type=notification_type, status="debug").inc()
            return True

        payload = {"token": self.token, "to": formatted_phone, "body": message, "priority": "1"}
        try:
            response = await self.resilient_api_call(self.http_client.post, self.endpoint, data=payload)
            response_data: Dict[str, Any] = response.json()
        except Exception as e:
            logger.error(f"whatsapp_send_error to {mask_phone(formatted_phone)}: {e}", exc_info=True)
            notifications_counter.labels(type=notification_type, status="error").inc()
            return False

        sent = response_data.get("sent")
        if sent is True or str(sent).lower() == "true":
            logger.info(f"WhatsApp {notification_type} sent to {mask_phone(formatted_phone)}, id: {response_data.get('id')}")
            notifications_counter.labels(type=notification_type, status="sent").inc()
            return True

        error_message = response_data.get("error") or response_data.get("message") or "Unknown error"
        logger.error(f"whatsapp_send_failed to {mask_phone(formatted_phone)}: {response.status_code} - {error_message}")
        notifications_counter.labels(type=notification_type, status="failed").inc()
        if response.status_code == 401:
            await alerting_service.send_critical_alert("UltraMsg authentication failed", {"error": str(error_message)})
        return False

    async def notify(self, request: NotificationRequest) -> bool:
        return await self.send_message(request.phone, format_notification(request), request.type)

    async def notify_ticket_created(
        self, phone: str, ticket_number: str, department_name: str, organization_name: str,
        waiting_count: Optional[int] = None,
    ) -> bool:
        return await self.notify(NotificationRequest(
            phone=phone, ticketNumber=ticket_number, departmentName=department_name,
            organizationName=organization_name, type="ticket_created", waitingCount=waiting_count,
        ))

    async def close(self):
        await self.http_client.aclose()
