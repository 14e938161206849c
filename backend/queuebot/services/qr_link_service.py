# /queuebot/services/qr_link_service.py

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import quote

from queuebot.config import strings
from queuebot.models.api import QRLink
from queuebot.models.directory import Organization

logger = logging.getLogger(__name__)

# Location-scoped QR codes open WhatsApp with a prefilled first message. The
# message ends with a reference line naming the branch (and department) so
# the conversation can start further down the selection funnel.
_REFERENCE_PATTERN = re.compile(
    r"\bRef:\s*B-(?P<branch>[A-Za-z0-9_-]+?)(?:\s+D-(?P<department>[A-Za-z0-9_-]+))?\s*$",
    re.MULTILINE,
)


def build_deep_link(business_number: str, message: str) -> str:
    """https://wa.me/<number>?text=<message> for a business number."""
    clean_number = business_number.lstrip("+")
    return f"https://wa.me/{clean_number}?text={quote(message, safe='')}"


def build_message(context_name: str, template: Optional[str] = None, reference: Optional[str] = None) -> str:
    message = (template or strings.DEFAULT_QR_MESSAGE)
    message = message.replace("{{organization_name}}", context_name).replace("{{context}}", context_name)
    if reference:
        message = f"{message}\n\nRef: {reference}"
    return message


def extract_qr_context(body: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """(branch_id, department_id) carried by a QR-prefilled message, if any."""
    if not body:
        return None, None
    match = _REFERENCE_PATTERN.search(body)
    if not match:
        return None, None
    return match.group("branch"), match.group("department")


class QRLinkService:
    def __init__(self, db):
        self.db = db

    def _link(self, organization: Organization, scope: str, record_id: str, context_name: str, reference: Optional[str]) -> QRLink:
        message = build_message(context_name, organization.qr_code_message_template, reference)
        return QRLink(
            scope=scope,
            id=record_id,
            name=context_name,
            message=message,
            url=build_deep_link(organization.whatsapp_business_number, message),
        )

    async def links_for_organization(self, organization_id: str) -> Optional[List[QRLink]]:
        """
        Deep links for the organisation, each of its branches and each of their
        departments. None when the organisation is unknown or has no WhatsApp
        business number.
        """
        organization = await self.db.get_organization(organization_id)
        if not organization or not organization.whatsapp_business_number:
            logger.warning(f"No WhatsApp business number configured for organization {organization_id}")
            return None

        links = [self._link(organization, "organization", organization.id, organization.name, None)]
        for branch in await self.db.list_branches(organization.id):
            branch_name = f"{organization.name} - {branch.name}"
            links.append(self._link(organization, "branch", branch.id, branch_name, f"B-{branch.id}"))
            for department in await self.db.list_departments(branch.id):
                links.append(self._link(
                    organization, "department", department.id,
                    f"{branch_name} - {department.name}", f"B-{branch.id} D-{department.id}",
                ))
        return links
