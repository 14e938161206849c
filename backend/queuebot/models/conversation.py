# /queuebot/models/conversation.py

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


class ConversationState(str, Enum):
    """Steps of the WhatsApp queue dialogue. Values are persisted as-is."""
    INITIAL_CONTACT = "initial_contact"
    AWAITING_BRANCH_SELECTION = "awaiting_branch_selection"
    AWAITING_DEPARTMENT_SELECTION = "awaiting_department_selection"
    AWAITING_SERVICE_SELECTION = "awaiting_service_selection"
    # Deprecated: customers used to type their phone number before the sender
    # number was trusted. Never entered any more, kept for stored rows.
    AWAITING_PHONE_NUMBER = "awaiting_phone_number"
    TICKET_CONFIRMED = "ticket_confirmed"


class Conversation(BaseModel):
    """One dialogue between a phone number and an organisation."""
    id: str = Field(..., alias="_id", description="Conversation identifier")
    phone_number: str = Field(..., description="Customer's WhatsApp number")
    organization_id: str = Field(..., description="Organisation the customer is talking to")
    branch_id: Optional[str] = Field(default=None, description="Selected or QR-seeded branch")
    department_id: Optional[str] = Field(default=None, description="Selected or QR-seeded department")
    conversation_state: ConversationState = Field(default=ConversationState.INITIAL_CONTACT)
    selected_service_id: Optional[str] = Field(default=None)
    ticket_id: Optional[str] = Field(default=None, description="Ticket issued at the end of the funnel")
    customer_name: Optional[str] = Field(default=None)
    context_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """MongoDB representation (state stored by value, id under _id)."""
        return self.model_dump(by_alias=True, mode="python") | {
            "conversation_state": self.conversation_state.value
        }
