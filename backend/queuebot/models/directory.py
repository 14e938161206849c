# /queuebot/models/directory.py

from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

# Read-only reference entities owned by the admin side. Only the fields the
# conversation engine consumes are modelled; extra stored fields are ignored.


class _DirectoryRecord(BaseModel):
    id: str = Field(..., alias="_id")
    name: str

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Organization(_DirectoryRecord):
    whatsapp_business_number: Optional[str] = None
    qr_code_message_template: Optional[str] = None


class Branch(_DirectoryRecord):
    organization_id: str
    address: Optional[str] = None


class Department(_DirectoryRecord):
    branch_id: str
    description: Optional[str] = None


class Service(_DirectoryRecord):
    department_id: str
    description: Optional[str] = None
    estimated_time: Optional[float] = None
    is_active: bool = True


class MenuItem(BaseModel):
    """A 1-based numbered entry of a WhatsApp text menu."""
    number: int
    id: str
    name: str
    description: Optional[str] = None
    address: Optional[str] = None
    estimated_wait_time: Optional[str] = None
