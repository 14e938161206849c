# /queuebot/models/api.py

from pydantic import BaseModel, Field, ConfigDict
from typing import ClassVar, List, Optional, Literal, Tuple

# Request and response bodies of the HTTP endpoints.


class InboundMessageData(BaseModel):
    """The `data` object of an UltraMsg webhook event."""
    id: Optional[str] = None
    from_: str = Field(default="", alias="from")
    to: str = ""
    body: str = ""
    type: str = "chat"
    fromMe: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InboundWebhookPayload(BaseModel):
    event_type: Optional[str] = None
    token: Optional[str] = None
    instanceId: Optional[str] = None
    data: Optional[InboundMessageData] = None

    model_config = ConfigDict(extra="ignore")


NotificationType = Literal["ticket_created", "almost_your_turn", "your_turn"]


class NotificationRequest(BaseModel):
    """Direct WhatsApp notification about a ticket."""
    phone: Optional[str] = None
    ticketNumber: Optional[str] = None
    departmentName: Optional[str] = None
    organizationName: Optional[str] = None
    type: Optional[NotificationType] = None
    currentServing: Optional[str] = None
    waitingCount: Optional[int] = None

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("phone", "ticketNumber", "departmentName", "organizationName", "type")

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]


class QRLink(BaseModel):
    scope: Literal["organization", "branch", "department"]
    id: str
    name: str
    message: str
    url: str


class QRLinksResponse(BaseModel):
    organization_id: str
    links: List[QRLink]

