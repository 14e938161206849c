# backend/tests/unit/test_template_service.py
import pytest
from unittest.mock import AsyncMock

from queuebot.config import strings
from queuebot.services.template_service import TemplateService, get_fallback_message, render_template


def test_render_template_substitutes_both_brace_styles():
    template = "Hi {{customer_name}}, ticket {ticket_number}"
    assert render_template(template, {"customer_name": "Ana", "ticket_number": "BAK-001"}) == "Hi Ana, ticket BAK-001"


def test_render_template_removes_unknown_placeholders():
    assert render_template("A {{missing}}B {other} C", {}) == "A B  C"


def test_render_template_skips_none_and_stringifies_values():
    assert render_template("{position}/{name}", {"position": 3, "name": None}) == "3/"


def test_render_template_empty_template():
    assert render_template("", {"a": "b"}) == ""


def test_fallback_applies_defaults_for_missing_and_empty_values():
    message = get_fallback_message("your_turn", {"ticket_number": "TAX-007", "organization_name": ""})
    assert "*TAX-007*" in message
    assert "Thank you for choosing Our Organization!" in message
    assert "Please proceed to: Department" in message


def test_fallback_invalid_number_defaults_to_ten():
    assert get_fallback_message("invalid_service_number") == (
        "Invalid service number. Please choose a number between 1 and 10."
    )


def test_fallback_unknown_type_uses_default_update():
    assert get_fallback_message("status_update", {"ticket_number": "A-1"}) == "Update for ticket A-1 at Our Organization"


@pytest.mark.asyncio
async def test_get_message_prefers_organization_template(fake_db):
    fake_db.templates["org-1"] = {"ticketConfirmation": "Go now, {{ticketNumber}}!"}
    service = TemplateService(fake_db, cache=None)

    assert await service.get_message("org-1", "ticket_confirmation", {"ticketNumber": "BAK-002"}) == "Go now, BAK-002!"


@pytest.mark.asyncio
async def test_get_message_ignores_blank_organization_template(fake_db):
    fake_db.templates["org-1"] = {"branchSelection": {"whatsapp": ""}}
    service = TemplateService(fake_db, cache=None)

    message = await service.get_message("org-1", "branch_selection", {"branches_list": "1️⃣ Downtown"})

    assert message.startswith("🏢 *Please select your preferred branch:*")
    assert "1️⃣ Downtown" in message


@pytest.mark.asyncio
async def test_error_types_never_read_organization_templates(fake_db, mocker):
    spy = mocker.patch.object(fake_db, "get_message_templates", new_callable=AsyncMock)
    service = TemplateService(fake_db, cache=None)

    assert await service.get_message("org-1", "branch_selection_error") == strings.BRANCH_SELECTION_ERROR
    spy.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_message_falls_back_when_store_fails(fake_db, mocker):
    mocker.patch.object(fake_db, "get_message_templates", new_callable=AsyncMock, side_effect=RuntimeError("down"))
    service = TemplateService(fake_db, cache=None)

    message = await service.get_message("org-1", "branch_selection", {"branches_list": "1️⃣ Downtown"})

    assert message.startswith("🏢 *Please select your preferred branch:*")


@pytest.mark.asyncio
async def test_templates_are_loaded_through_the_cache(fake_db):
    cache = AsyncMock()
    cache.get_or_set.return_value = {"branchSelection": "Cached hello"}
    service = TemplateService(fake_db, cache=cache, cache_ttl=60)

    assert await service.get_message("org-1", "branch_selection") == "Cached hello"
    key = cache.get_or_set.await_args.args[0]
    assert key == "message_templates:org-1"
    assert cache.get_or_set.await_args.kwargs["ttl"] == 60
