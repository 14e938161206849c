# backend/tests/unit/test_security.py

import pytest
from unittest.mock import AsyncMock

from queuebot.services.security_service import AdvancedRateLimiter, EnhancedSecurityService as SecurityService

class TestEnhancedSecurityService:

    # --- Phone number sanitization tests ---
    def test_sanitize_phone_number_valid(self):
        """Valid phone numbers should be formatted correctly."""
        assert SecurityService.sanitize_phone_number("123-456-7890") == "+1234567890"
        assert SecurityService.sanitize_phone_number("+1 (555) 867-5309") == "+15558675309"
        assert SecurityService.sanitize_phone_number("447911123456") == "+447911123456"

    def test_sanitize_phone_number_invalid_returns_empty(self):
        """Invalid phone numbers return an empty string."""
        assert SecurityService.sanitize_phone_number("123") == ""  # Too short
        assert SecurityService.sanitize_phone_number("12345678901234567890") == ""  # Too long
        assert SecurityService.sanitize_phone_number(None) == ""  # None value
        assert SecurityService.sanitize_phone_number("not a number") == ""  # Invalid chars

    # --- Provider address normalisation ---
    def test_strip_chat_suffix(self):
        assert SecurityService.strip_chat_suffix("15557654321@c.us") == "15557654321"
        assert SecurityService.strip_chat_suffix("15557654321") == "15557654321"
        assert SecurityService.strip_chat_suffix(None) == ""

    def test_ensure_plus_prefix(self):
        assert SecurityService.ensure_plus_prefix("15557654321") == "+15557654321"
        assert SecurityService.ensure_plus_prefix("+15557654321") == "+15557654321"

    # --- Message content validation tests ---
    def test_validate_message_content_strips(self):
        assert SecurityService.validate_message_content("  2  ") == "2"

    def test_validate_message_content_too_long(self):
        """Messages exceeding the limit should raise ValueError."""
        long_message = "a" * 5000
        with pytest.raises(ValueError, match="Message too long"):
            SecurityService.validate_message_content(long_message)

    # --- Shared token checks ---
    def test_verify_shared_token(self):
        assert SecurityService.verify_shared_token("secret", "secret") is True
        assert SecurityService.verify_shared_token("wrong", "secret") is False
        assert SecurityService.verify_shared_token(None, "secret") is False
        assert SecurityService.verify_shared_token(None, None) is True


class TestAdvancedRateLimiter:

    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        redis = AsyncMock()
        redis.incr.side_effect = [1, 2, 3]
        limiter = AdvancedRateLimiter(redis)

        assert await limiter.check_phone_rate_limit("15557654321", limit=2) is True
        assert await limiter.check_phone_rate_limit("15557654321", limit=2) is True
        assert await limiter.check_phone_rate_limit("15557654321", limit=2) is False
        redis.expire.assert_awaited_once_with("rate_limit:phone:15557654321", 60)

    @pytest.mark.asyncio
    async def test_redis_failure_allows_request(self):
        redis = AsyncMock()
        redis.incr.side_effect = ConnectionError("redis down")

        assert await AdvancedRateLimiter(redis).check_phone_rate_limit("15557654321") is True
