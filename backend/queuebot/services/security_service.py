# /queuebot/services/security_service.py

import re
import logging
import secrets
from typing import Optional

from queuebot.services.cache_service import cache_service

# Input normalisation for provider payloads and the shared-secret checks of
# the webhook and internal endpoints.

logger = logging.getLogger(__name__)

WHATSAPP_CHAT_SUFFIX = "@c.us"


class SecurityService:
    @staticmethod
    def verify_shared_token(provided: Optional[str], expected: Optional[str]) -> bool:
        """Constant-time comparison; an unset expected token disables the check."""
        if not expected:
            return True
        if not provided:
            return False
        return secrets.compare_digest(provided, expected)


class EnhancedSecurityService(SecurityService):
    @staticmethod
    def strip_chat_suffix(address: Optional[str]) -> str:
        """'15551234567@c.us' -> '15551234567'."""
        if not address:
            return ""
        return address.replace(WHATSAPP_CHAT_SUFFIX, "").strip()

    @staticmethod
    def ensure_plus_prefix(phone: str) -> str:
        """Phone numbers are stored with a leading '+' on tickets."""
        return phone if phone.startswith("+") else f"+{phone}"

    @staticmethod
    def sanitize_phone_number(phone: str) -> str:
        """
        Sanitizes a phone number.
        - Returns a normalized E.164-style string (e.g., +919876543210) if valid.
        - Returns an empty string for invalid or empty inputs (instead of raising).
        """
        if not phone or not isinstance(phone, str):
            return ""

        clean_phone = re.sub(r"[^\d+]", "", phone.strip())
        if not clean_phone.startswith("+"):
            clean_phone = "+" + clean_phone.lstrip("+")

        if not re.match(r"^\+\d{10,15}$", clean_phone):
            return ""

        return clean_phone

    @staticmethod
    def validate_message_content(message: str) -> str:
        if len(message) > 4096:
            raise ValueError("Message too long")
        return message.strip()


# --- Rate Limiting ---
class AdvancedRateLimiter:
    def __init__(self, redis_client):
        self.redis = redis_client

    async def _within_limit(self, key: str, limit: int, window: int) -> bool:
        if not self.redis:
            return True
        try:
            current_count = await self.redis.incr(key)
            if current_count == 1:
                await self.redis.expire(key, window)
        except Exception as e:
            logger.warning(f"Rate limit check skipped for {key}: {e}")
            return True
        return current_count <= limit

    async def check_phone_rate_limit(self, phone_number: str, limit: int = 20, window: int = 60) -> bool:
        return await self._within_limit(f"rate_limit:phone:{phone_number}", limit, window)

# Globally accessible instances
rate_limiter = AdvancedRateLimiter(cache_service.redis)
