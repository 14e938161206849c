# /queuebot/models/ticket.py

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


class TicketStatus(str, Enum):
    WAITING = "waiting"
    SERVING = "serving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that still occupy a place in the queue
ACTIVE_TICKET_STATUSES = (TicketStatus.WAITING.value, TicketStatus.SERVING.value)


class Ticket(BaseModel):
    """A queue entry for one service."""
    id: str = Field(..., alias="_id")
    service_id: str
    department_id: Optional[str] = None
    ticket_number: str = Field(..., description="Service prefix and counter, e.g. BAK-001")
    customer_phone: str
    status: TicketStatus = TicketStatus.WAITING
    created_via: str = "whatsapp"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    called_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="python") | {"status": self.status.value}


class IssuedTicket(BaseModel):
    """A freshly created ticket joined with the names used in customer messages."""
    ticket: Ticket
    service_name: str = "Service"
    department_name: str = "Department"
    branch_name: str = "Main Branch"
    organization_name: str = "Our Organization"
    estimated_time: Optional[float] = None
    queue_position: int = 1

    @property
    def ticket_number(self) -> str:
        return self.ticket.ticket_number
