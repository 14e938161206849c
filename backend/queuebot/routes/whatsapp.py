# /queuebot/routes/whatsapp.py

import structlog
from fastapi import APIRouter, Depends, HTTPException

from queuebot.models.api import QRLinksResponse
from queuebot.services.qr_link_service import QRLinkService
from queuebot.utils.dependencies import get_qr_link_service, verify_api_key

router = APIRouter(
    tags=["WhatsApp"],
    dependencies=[Depends(verify_api_key)]
)

log = structlog.get_logger(__name__)


@router.get("/qr-links/{organization_id}", response_model=QRLinksResponse)
async def get_qr_links(organization_id: str, qr_links: QRLinkService = Depends(get_qr_link_service)):
    """wa.me deep links for printing organisation, branch and department QR codes."""
    links = await qr_links.links_for_organization(organization_id)
    if links is None:
        raise HTTPException(status_code=404, detail="Organization not found or WhatsApp number not configured")
    log.info("QR links generated", organization_id=organization_id, count=len(links))
    return QRLinksResponse(organization_id=organization_id, links=links)
