# /queuebot/services/template_service.py

import logging
import re
from typing import Any, Dict, Mapping, Optional

from queuebot.config import strings
from queuebot.config.settings import settings
from queuebot.services.cache_service import cache_service

logger = logging.getLogger(__name__)

# Two template generations are in circulation: {{name}} and {name}.
_DOUBLE_BRACE_LEFTOVER = re.compile(r"\{\{[^}]+\}\}")
_SINGLE_BRACE_LEFTOVER = re.compile(r"\{[^}]+\}")

# Template type -> key inside an organisation's stored `templates` map.
# Types without a key are always rendered from the built-in texts.
TEMPLATE_KEYS: Dict[str, str] = {
    "branch_selection": "branchSelection",
    "department_selection": "departmentSelection",
    "service_selection": "serviceSelection",
    "ticket_confirmation": "ticketConfirmation",
}

FALLBACK_TEMPLATES: Dict[str, str] = {
    "branch_selection": strings.BRANCH_SELECTION,
    "department_selection": strings.DEPARTMENT_SELECTION,
    "service_selection": strings.SERVICE_SELECTION,
    "ticket_confirmation": strings.TICKET_CONFIRMATION,
    "almost_your_turn": strings.ALMOST_YOUR_TURN,
    "your_turn": strings.YOUR_TURN,
    "branch_selection_error": strings.BRANCH_SELECTION_ERROR,
    "department_selection_error": strings.DEPARTMENT_SELECTION_ERROR,
    "service_selection_error": strings.SERVICE_SELECTION_ERROR,
    "invalid_branch_number": strings.INVALID_BRANCH_NUMBER,
    "invalid_department_number": strings.INVALID_DEPARTMENT_NUMBER,
    "invalid_service_number": strings.INVALID_SERVICE_NUMBER,
    "department_selection_error_restart": strings.DEPARTMENT_SELECTION_ERROR_RESTART,
}

# Applied to fallback rendering whenever a variable is missing or empty.
FALLBACK_DEFAULTS: Dict[str, str] = {
    "customer_name": "Customer",
    "organization_name": "Our Organization",
    "branch_name": "Main Branch",
    "department_name": "Department",
    "service_name": "Service",
    "ticket_number": "000",
    "queue_position": "0",
    "estimated_wait": "15 minutes",
    "current_serving": "000",
    "waiting_count": "0",
    "branches_list": "1️⃣ Main Branch",
    "departments_list": "1️⃣ General Service",
    "services_list": "1️⃣ General Service",
    "max_number": "10",
}


def render_template(template: str, variables: Optional[Mapping[str, Any]] = None) -> str:
    """
    Substitutes {{key}} and {key} placeholders, then strips whatever
    placeholders are left so customers never see raw template syntax.
    """
    if not template:
        return ""
    message = template
    for key, value in (variables or {}).items():
        if value is None:
            continue
        text = str(value)
        message = message.replace(f"{{{{{key}}}}}", text)
        message = message.replace(f"{{{key}}}", text)
    message = _DOUBLE_BRACE_LEFTOVER.sub("", message)
    message = _SINGLE_BRACE_LEFTOVER.sub("", message)
    return message


def get_fallback_message(template_type: str, variables: Optional[Mapping[str, Any]] = None) -> str:
    """Renders the built-in text for a template type."""
    merged: Dict[str, Any] = dict(FALLBACK_DEFAULTS)
    for key, value in (variables or {}).items():
        if value not in (None, ""):
            merged[key] = value
    template = FALLBACK_TEMPLATES.get(template_type, strings.DEFAULT_UPDATE)
    return render_template(template, merged)


def _extract_whatsapp_text(entry: Any) -> Optional[str]:
    """A stored template is either a plain string or {"whatsapp": "..."}."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        text = entry.get("whatsapp")
        return text if isinstance(text, str) and text else None
    return None


class TemplateService:
    """Organisation-specific message templates with built-in fallbacks."""

    def __init__(self, db, cache=cache_service, cache_ttl: int = settings.template_cache_ttl):
        self.db = db
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def load_templates(self, organization_id: str) -> Dict[str, Any]:
        """The organisation's stored templates (cached), or an empty map."""
        async def _fetch():
            return await self.db.get_message_templates(organization_id) or {}

        if self.cache is None:
            return await _fetch()
        templates = await self.cache.get_or_set(
            f"message_templates:{organization_id}", _fetch, ttl=self.cache_ttl
        )
        return templates or {}

    async def get_message(
        self,
        organization_id: Optional[str],
        template_type: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Renders `template_type` for an organisation.

        The organisation's own template wins when one is stored under the
        type's key; a missing template or any failure while loading it falls
        back to the built-in text. Never raises.
        """
        template_key = TEMPLATE_KEYS.get(template_type)
        if organization_id and template_key:
            try:
                templates = await self.load_templates(organization_id)
                custom = _extract_whatsapp_text(templates.get(template_key))
                if custom:
                    return render_template(custom, variables)
            except Exception as e:
                logger.warning(
                    f"Template '{template_type}' unavailable for organization {organization_id}, using fallback: {e}"
                )
        return get_fallback_message(template_type, variables)
