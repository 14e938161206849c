# /queuebot/services/db_service.py

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from queuebot.config.settings import settings
from queuebot.models.conversation import Conversation, ConversationState
from queuebot.models.directory import Branch, Department, Organization, Service
from queuebot.models.ticket import ACTIVE_TICKET_STATUSES, Ticket
from queuebot.services.cache_service import cache_service
from queuebot.utils.circuit_breaker import RedisCircuitBreaker
from queuebot.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

# Collections
CONVERSATIONS = "whatsapp_conversations"
INBOUND_MESSAGES = "whatsapp_inbound_messages"
TICKETS = "tickets"
TICKET_COUNTERS = "ticket_counters"
ORGANIZATIONS = "organizations"
BRANCHES = "branches"
DEPARTMENTS = "departments"
SERVICES = "services"
SERVICE_ANALYTICS = "service_analytics"
DAILY_ANALYTICS = "daily_analytics"
MESSAGE_TEMPLATES = "message_templates"

# Constants
DIRECTORY_QUERY_LIMIT = 100
DAILY_ANALYTICS_LIMIT = 30


class DatabaseService:
    """
    Persistent store of the queue service: conversation records, tickets and
    their counters, read-only directory/analytics lookups and the inbound
    interaction log.

    Reads degrade to an empty result when MongoDB is unavailable. Writes whose
    outcome the conversation engine has to know about raise instead.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                tz_aware=True,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client[settings.mongo_database]
            self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "database")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    # ==================== Helper Methods ====================

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def _new_id(self) -> str:
        return str(uuid.uuid4())

    async def _safe_db_operation(self, operation, default_return: Any = None) -> Any:
        """
        Execute a read through the circuit breaker, returning `default_return`
        on any failure.
        """
        try:
            return await self.circuit_breaker.call(operation)
        except Exception as e:
            logger.exception(f"Database operation failed: {type(e).__name__}")
            database_operations_counter.labels(operation="db_error", status="failed").inc()
            return default_return

    async def _guarded(self, operation_name: str, operation) -> Any:
        """Execute a write through the circuit breaker and re-raise failures."""
        try:
            result = await self.circuit_breaker.call(operation)
        except Exception:
            database_operations_counter.labels(operation=operation_name, status="failed").inc()
            raise
        database_operations_counter.labels(operation=operation_name, status="success").inc()
        return result

    async def _find_many(self, collection: str, query: Dict[str, Any], sort_field: str = "name") -> List[Dict[str, Any]]:
        async def _op():
            cursor = self.db[collection].find(query).sort(sort_field, 1)
            return await cursor.to_list(length=DIRECTORY_QUERY_LIMIT)
        return await self._safe_db_operation(_op, default_return=[])

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            (CONVERSATIONS, [("phone_number", 1), ("organization_id", 1), ("created_at", -1)], {}),
            (TICKETS, [("service_id", 1), ("ticket_number", 1)], {"unique": True}),
            (TICKETS, [("service_id", 1), ("status", 1), ("created_at", 1)], {}),
            (ORGANIZATIONS, [("whatsapp_business_number", 1)], {}),
            (BRANCHES, [("organization_id", 1), ("name", 1)], {}),
            (DEPARTMENTS, [("branch_id", 1), ("name", 1)], {}),
            (SERVICES, [("department_id", 1), ("is_active", 1), ("name", 1)], {}),
            (SERVICE_ANALYTICS, [("service_id", 1)], {}),
            (DAILY_ANALYTICS, [("service_id", 1), ("department_id", 1), ("date", -1)], {}),
            (MESSAGE_TEMPLATES, [("organization_id", 1)], {"unique": True}),
            (INBOUND_MESSAGES, [("organization_id", 1), ("phone_number", 1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.db.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB health check failed: {e}")
            return False

    # ==================== Conversation Store ====================

    async def get_latest_conversation(self, phone_number: str, organization_id: str) -> Optional[Conversation]:
        """Most recently created conversation for (phone, organisation)."""
        async def _op():
            return await self.db[CONVERSATIONS].find_one(
                {"phone_number": phone_number, "organization_id": organization_id},
                sort=[("created_at", -1)],
            )
        document = await self._safe_db_operation(_op)
        return Conversation.model_validate(document) if document else None

    async def create_conversation(
        self,
        phone_number: str,
        organization_id: str,
        branch_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> Conversation:
        now = self._now_utc()
        conversation = Conversation(
            _id=self._new_id(),
            phone_number=phone_number,
            organization_id=organization_id,
            branch_id=branch_id,
            department_id=department_id,
            conversation_state=ConversationState.INITIAL_CONTACT,
            created_at=now,
            updated_at=now,
        )
        await self._guarded(
            "create_conversation",
            lambda: self.db[CONVERSATIONS].insert_one(conversation.to_document()),
        )
        return conversation

    async def update_conversation(self, conversation_id: str, updates: Dict[str, Any]) -> None:
        """Partial update; `updated_at` is always refreshed."""
        fields = {
            key: value.value if isinstance(value, ConversationState) else value
            for key, value in updates.items()
        }
        fields["updated_at"] = self._now_utc()
        await self._guarded(
            "update_conversation",
            lambda: self.db[CONVERSATIONS].update_one({"_id": conversation_id}, {"$set": fields}),
        )

    async def delete_conversations(self, phone_number: str, organization_id: str) -> int:
        """Removes every conversation row of (phone, organisation). Failures are logged only."""
        async def _op():
            result = await self.db[CONVERSATIONS].delete_many(
                {"phone_number": phone_number, "organization_id": organization_id}
            )
            return result.deleted_count
        return await self._safe_db_operation(_op, default_return=0)

    # ==================== Organization Directory ====================

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        document = await self._safe_db_operation(lambda: self.db[ORGANIZATIONS].find_one({"_id": organization_id}))
        return Organization.model_validate(document) if document else None

    async def get_organization_by_whatsapp_number(self, whatsapp_number: str) -> Optional[Organization]:
        """Resolves the organisation that owns a WhatsApp business number (with or without '+')."""
        bare = whatsapp_number.lstrip("+")
        candidates = [bare, f"+{bare}"]
        document = await self._safe_db_operation(
            lambda: self.db[ORGANIZATIONS].find_one({"whatsapp_business_number": {"$in": candidates}})
        )
        return Organization.model_validate(document) if document else None

    async def list_branches(self, organization_id: str) -> List[Branch]:
        documents = await self._find_many(BRANCHES, {"organization_id": organization_id})
        return [Branch.model_validate(doc) for doc in documents]

    async def get_branch(self, branch_id: str) -> Optional[Branch]:
        document = await self._safe_db_operation(lambda: self.db[BRANCHES].find_one({"_id": branch_id}))
        return Branch.model_validate(document) if document else None

    async def list_departments(self, branch_id: str) -> List[Department]:
        documents = await self._find_many(DEPARTMENTS, {"branch_id": branch_id})
        return [Department.model_validate(doc) for doc in documents]

    async def get_department(self, department_id: str) -> Optional[Department]:
        document = await self._safe_db_operation(lambda: self.db[DEPARTMENTS].find_one({"_id": department_id}))
        return Department.model_validate(document) if document else None

    async def list_active_services(self, department_id: str) -> List[Service]:
        documents = await self._find_many(SERVICES, {"department_id": department_id, "is_active": True})
        return [Service.model_validate(doc) for doc in documents]

    async def get_service(self, service_id: str) -> Optional[Service]:
        document = await self._safe_db_operation(lambda: self.db[SERVICES].find_one({"_id": service_id}))
        return Service.model_validate(document) if document else None

    # ==================== Analytics ====================

    async def get_service_analytics(self, service_id: str) -> Optional[Dict[str, Any]]:
        return await self._safe_db_operation(
            lambda: self.db[SERVICE_ANALYTICS].find_one({"service_id": service_id})
        )

    async def get_daily_analytics(self, service_id: str, department_id: str, since_date: str) -> List[Dict[str, Any]]:
        """Daily aggregates on or after `since_date` (YYYY-MM-DD), newest first."""
        async def _op():
            cursor = self.db[DAILY_ANALYTICS].find(
                {"service_id": service_id, "department_id": department_id, "date": {"$gte": since_date}},
                {"avg_wait_time": 1, "avg_service_time": 1, "hourly_wait_times": 1, "date": 1},
            ).sort("date", -1)
            return await cursor.to_list(length=DAILY_ANALYTICS_LIMIT)
        return await self._safe_db_operation(_op, default_return=[])

    # ==================== Message Templates ====================

    async def get_message_templates(self, organization_id: str) -> Optional[Dict[str, Any]]:
        """The organisation's `templates` map, or None when it has none."""
        document = await self._safe_db_operation(
            lambda: self.db[MESSAGE_TEMPLATES].find_one({"organization_id": organization_id}, {"templates": 1})
        )
        if not document:
            return None
        return document.get("templates") or None

    # ==================== Tickets ====================

    async def next_ticket_sequence(self, service_id: str) -> int:
        """Atomically increments and returns the service's ticket counter."""
        document = await self._guarded(
            "ticket_sequence",
            lambda: self.db[TICKET_COUNTERS].find_one_and_update(
                {"_id": service_id},
                {"$inc": {"seq": 1}, "$set": {"updated_at": self._now_utc()}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            ),
        )
        return int(document["seq"])

    async def highest_ticket_sequence(self, service_id: str, prefix: str) -> int:
        """Largest numeric suffix among the service's `PREFIX-NNN` tickets, 0 when none."""
        pipeline = [
            {"$match": {"service_id": service_id, "ticket_number": {"$regex": f"^{re.escape(prefix)}-\\d+$"}}},
            {"$group": {
                "_id": None,
                "max_seq": {"$max": {"$toInt": {"$arrayElemAt": [{"$split": ["$ticket_number", "-"]}, 1]}}},
            }},
        ]

        async def _op():
            return await self.db[TICKETS].aggregate(pipeline).to_list(length=1)
        rows = await self._guarded("highest_ticket_sequence", _op)
        return int(rows[0]["max_seq"]) if rows and rows[0].get("max_seq") is not None else 0

    async def raise_ticket_counter(self, service_id: str, sequence: int) -> None:
        """Moves the service's counter up to `sequence`; never lowers it."""
        await self._guarded(
            "raise_ticket_counter",
            lambda: self.db[TICKET_COUNTERS].update_one(
                {"_id": service_id},
                {"$max": {"seq": sequence}, "$set": {"updated_at": self._now_utc()}},
                upsert=True,
            ),
        )

    async def insert_ticket(self, ticket: Ticket) -> Ticket:
        """Inserts a ticket; raises DuplicateKeyError if the number is taken."""
        await self._guarded("insert_ticket", lambda: self.db[TICKETS].insert_one(ticket.to_document()))
        return ticket

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        document = await self._safe_db_operation(lambda: self.db[TICKETS].find_one({"_id": ticket_id}))
        return Ticket.model_validate(document) if document else None

    async def count_tickets_ahead(self, service_id: str, created_before: datetime) -> int:
        """Active tickets of the service created before the given instant."""
        return await self._guarded(
            "count_tickets_ahead",
            lambda: self.db[TICKETS].count_documents({
                "service_id": service_id,
                "status": {"$in": list(ACTIVE_TICKET_STATUSES)},
                "created_at": {"$lt": created_before},
            }),
        )

    async def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> bool:
        result = await self._guarded(
            "update_ticket",
            lambda: self.db[TICKETS].update_one({"_id": ticket_id}, {"$set": updates}),
        )
        return result.matched_count > 0

    # ==================== Interaction Log ====================

    async def log_inbound_message(self, record: Dict[str, Any]) -> None:
        """Stores one processed inbound message with the reply that was sent."""
        document = dict(record)
        document.setdefault("_id", self._new_id())
        document.setdefault("created_at", self._now_utc())

        async def _op():
            await self.db[INBOUND_MESSAGES].replace_one({"_id": document["_id"]}, document, upsert=True)
        await self._safe_db_operation(_op)


# Globally accessible instance
db_service = DatabaseService(settings.mongo_atlas_uri)
