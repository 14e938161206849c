# backend/tests/conftest.py

import asyncio
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Environment variables must be loaded before any queuebot import: the
# settings object is built at import time.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env.test"))

from pymongo.errors import DuplicateKeyError  # noqa: E402

from queuebot.main import app  # noqa: E402
from queuebot.models.conversation import Conversation, ConversationState  # noqa: E402
from queuebot.models.directory import Branch, Department, Organization, Service  # noqa: E402
from queuebot.models.ticket import ACTIVE_TICKET_STATUSES, Ticket  # noqa: E402
from queuebot.services.conversation_engine import ConversationEngine  # noqa: E402
from queuebot.services.template_service import TemplateService  # noqa: E402
from queuebot.utils.dependencies import get_conversation_engine, get_notification_service  # noqa: E402

ORG_ID = "org-1"
BUSINESS_NUMBER = "15550001111"
CUSTOMER_PHONE = "15557654321"


class FakeDatabase:
    """
    In-memory stand-in for DatabaseService. Same coroutine methods, documents
    stored as dicts so every read returns a fresh model like MongoDB would.
    """

    def __init__(self):
        self.conversations: List[Dict[str, Any]] = []
        self.organizations: Dict[str, Organization] = {}
        self.branches: Dict[str, Branch] = {}
        self.departments: Dict[str, Department] = {}
        self.services: Dict[str, Service] = {}
        self.service_analytics: Dict[str, Dict[str, Any]] = {}
        self.daily_analytics: List[Dict[str, Any]] = []
        self.templates: Dict[str, Dict[str, Any]] = {}
        self.tickets: Dict[str, Dict[str, Any]] = {}
        self.counters: Dict[str, int] = {}
        self.inbound_messages: List[Dict[str, Any]] = []

    # --- seeding helpers ---

    def add_organization(self, org_id, name, whatsapp_business_number=None, qr_code_message_template=None):
        self.organizations[org_id] = Organization(
            _id=org_id, name=name, whatsapp_business_number=whatsapp_business_number,
            qr_code_message_template=qr_code_message_template,
        )

    def add_branch(self, branch_id, organization_id, name, address=None):
        self.branches[branch_id] = Branch(_id=branch_id, organization_id=organization_id, name=name, address=address)

    def add_department(self, department_id, branch_id, name, description=None):
        self.departments[department_id] = Department(
            _id=department_id, branch_id=branch_id, name=name, description=description
        )

    def add_service(self, service_id, department_id, name, estimated_time=None, description=None, is_active=True):
        self.services[service_id] = Service(
            _id=service_id, department_id=department_id, name=name,
            estimated_time=estimated_time, description=description, is_active=is_active,
        )

    def add_ticket(self, service_id, ticket_number, status="waiting", department_id=None, created_at=None):
        ticket = Ticket(
            _id=str(uuid.uuid4()), service_id=service_id, department_id=department_id,
            ticket_number=ticket_number, customer_phone="+15550000000", status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.tickets[ticket.id] = ticket.to_document()
        return ticket

    def conversation_rows(self, phone_number, organization_id=ORG_ID):
        return [
            row for row in self.conversations
            if row["phone_number"] == phone_number and row["organization_id"] == organization_id
        ]

    # --- conversation store ---

    async def get_latest_conversation(self, phone_number, organization_id):
        rows = self.conversation_rows(phone_number, organization_id)
        return Conversation.model_validate(rows[-1]) if rows else None

    async def create_conversation(self, phone_number, organization_id, branch_id=None, department_id=None):
        conversation = Conversation(
            _id=str(uuid.uuid4()), phone_number=phone_number, organization_id=organization_id,
            branch_id=branch_id, department_id=department_id,
            conversation_state=ConversationState.INITIAL_CONTACT,
        )
        self.conversations.append(conversation.to_document())
        return conversation

    async def update_conversation(self, conversation_id, updates):
        for row in self.conversations:
            if row["_id"] == conversation_id:
                for key, value in updates.items():
                    row[key] = value.value if isinstance(value, ConversationState) else value
                row["updated_at"] = datetime.now(timezone.utc)

    async def delete_conversations(self, phone_number, organization_id):
        before = len(self.conversations)
        self.conversations = [
            row for row in self.conversations
            if not (row["phone_number"] == phone_number and row["organization_id"] == organization_id)
        ]
        return before - len(self.conversations)

    # --- directory ---

    async def get_organization(self, organization_id):
        return self.organizations.get(organization_id)

    async def get_organization_by_whatsapp_number(self, whatsapp_number):
        bare = whatsapp_number.lstrip("+")
        for organization in self.organizations.values():
            if organization.whatsapp_business_number in (bare, f"+{bare}"):
                return organization
        return None

    async def list_branches(self, organization_id):
        return sorted((b for b in self.branches.values() if b.organization_id == organization_id), key=lambda b: b.name)

    async def get_branch(self, branch_id):
        return self.branches.get(branch_id)

    async def list_departments(self, branch_id):
        return sorted((d for d in self.departments.values() if d.branch_id == branch_id), key=lambda d: d.name)

    async def get_department(self, department_id):
        return self.departments.get(department_id)

    async def list_active_services(self, department_id):
        return sorted(
            (s for s in self.services.values() if s.department_id == department_id and s.is_active),
            key=lambda s: s.name,
        )

    async def get_service(self, service_id):
        return self.services.get(service_id)

    # --- analytics and templates ---

    async def get_service_analytics(self, service_id):
        return self.service_analytics.get(service_id)

    async def get_daily_analytics(self, service_id, department_id, since_date):
        rows = [
            row for row in self.daily_analytics
            if row["service_id"] == service_id and row["department_id"] == department_id and row["date"] >= since_date
        ]
        return sorted(rows, key=lambda row: row["date"], reverse=True)

    async def get_message_templates(self, organization_id):
        return self.templates.get(organization_id) or None

    # --- tickets ---

    async def next_ticket_sequence(self, service_id):
        await asyncio.sleep(0)
        self.counters[service_id] = self.counters.get(service_id, 0) + 1
        return self.counters[service_id]

    async def highest_ticket_sequence(self, service_id, prefix):
        pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
        sequences = [
            int(match.group(1)) for match in (
                pattern.match(row["ticket_number"]) for row in self.tickets.values()
                if row["service_id"] == service_id
            ) if match
        ]
        return max(sequences, default=0)

    async def raise_ticket_counter(self, service_id, sequence):
        self.counters[service_id] = max(self.counters.get(service_id, 0), sequence)

    async def insert_ticket(self, ticket):
        await asyncio.sleep(0)
        for row in self.tickets.values():
            if row["service_id"] == ticket.service_id and row["ticket_number"] == ticket.ticket_number:
                raise DuplicateKeyError(f"duplicate ticket number {ticket.ticket_number}")
        self.tickets[ticket.id] = ticket.to_document()
        return ticket

    async def get_ticket(self, ticket_id):
        row = self.tickets.get(ticket_id)
        return Ticket.model_validate(row) if row else None

    async def count_tickets_ahead(self, service_id, created_before):
        return sum(
            1 for row in self.tickets.values()
            if row["service_id"] == service_id
            and row["status"] in ACTIVE_TICKET_STATUSES
            and row["created_at"] < created_before
        )

    async def update_ticket(self, ticket_id, updates):
        row = self.tickets.get(ticket_id)
        if row is None:
            return False
        row.update(updates)
        return True

    # --- interaction log ---

    async def log_inbound_message(self, record):
        document = dict(record)
        document.setdefault("_id", str(uuid.uuid4()))
        self.inbound_messages = [row for row in self.inbound_messages if row["_id"] != document["_id"]]
        self.inbound_messages.append(document)


@pytest.fixture
def fake_db():
    """Bank with two branches; Downtown has two departments, Loans three services (one inactive)."""
    db = FakeDatabase()
    db.add_organization(ORG_ID, "City Bank", whatsapp_business_number=BUSINESS_NUMBER)
    db.add_branch("b-downtown", ORG_ID, "Downtown", address="1 Main St")
    db.add_branch("b-airport", ORG_ID, "Airport")
    db.add_department("d-loans", "b-downtown", "Loans", description="Personal and business loans")
    db.add_department("d-accounts", "b-downtown", "Accounts")
    db.add_service("s-mortgage", "d-loans", "Mortgage", estimated_time=20)
    db.add_service("s-car", "d-loans", "Car Loan", description="New and used vehicles")
    db.add_service("s-legacy", "d-loans", "Legacy Loans", is_active=False)
    return db


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.enabled = True
    mock.send_message.return_value = True
    mock.notify.return_value = True
    mock.notify_ticket_created.return_value = True
    return mock


@pytest.fixture
def engine(fake_db, notifier):
    return ConversationEngine(fake_db, notifier, templates=TemplateService(fake_db, cache=None))


@pytest.fixture(scope="function")
def test_client(mocker, fake_db, engine, notifier):
    """
    TestClient with MongoDB index creation disabled and the store, engine and
    notifier replaced by the in-memory fixtures.
    """
    mocker.patch("queuebot.utils.lifecycle.db_service.create_indexes", new_callable=AsyncMock)
    mocker.patch("queuebot.routes.webhooks.db_service", fake_db)
    mocker.patch("queuebot.routes.webhooks.rate_limiter.check_phone_rate_limit", new_callable=AsyncMock, return_value=True)

    app.dependency_overrides[get_conversation_engine] = lambda: engine
    app.dependency_overrides[get_notification_service] = lambda: notifier
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
