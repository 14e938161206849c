# /queuebot/services/ticket_service.py

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional

import tenacity
from pymongo.errors import DuplicateKeyError

from queuebot.models.ticket import IssuedTicket, Ticket, TicketStatus
from queuebot.services.security_service import EnhancedSecurityService
from queuebot.utils.metrics import tickets_created_counter

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 3
PREFIX_FILLER = "X"


def ticket_prefix(service_name: str) -> str:
    """
    First three characters of the upper-cased service name, letters only,
    padded with 'X': 'Bakery' -> 'BAK', 'Tax 2' -> 'TAX', 'A1' -> 'AXX'.
    """
    head = (service_name or "").upper()[:PREFIX_LENGTH]
    return re.sub(r"[^A-Z]", "", head).ljust(PREFIX_LENGTH, PREFIX_FILLER)


def format_ticket_number(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:03d}"


class TicketService:
    """
    Issues queue tickets. Numbers come from a per-service counter that the
    database increments atomically, so concurrent issuers never share a
    number; the unique index on (service_id, ticket_number) catches counters
    that have fallen behind existing tickets, which are then resynced to the
    highest stored number before the next attempt.
    """

    def __init__(self, db):
        self.db = db

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type(DuplicateKeyError),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_random(min=0.01, max=0.05),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _allocate_and_insert(self, service_id: str, department_id: str, prefix: str, customer_phone: str) -> Ticket:
        sequence = await self.db.next_ticket_sequence(service_id)
        ticket = Ticket(
            _id=str(uuid.uuid4()),
            service_id=service_id,
            department_id=department_id,
            ticket_number=format_ticket_number(prefix, sequence),
            customer_phone=customer_phone,
            status=TicketStatus.WAITING,
            created_via="whatsapp",
            created_at=datetime.now(timezone.utc),
        )
        try:
            return await self.db.insert_ticket(ticket)
        except DuplicateKeyError:
            await self._resync_counter(service_id, prefix)
            raise

    async def _resync_counter(self, service_id: str, prefix: str) -> None:
        """
        Tickets issued outside this counter (kiosk, web form, imported rows)
        leave it behind the stored numbers; lift it to the highest one so the
        next draw is free.
        """
        try:
            highest = await self.db.highest_ticket_sequence(service_id, prefix)
            if highest:
                await self.db.raise_ticket_counter(service_id, highest)
                logger.warning(f"Ticket counter for service {service_id} resynced to {highest}")
        except Exception as e:
            logger.error(f"Could not resync ticket counter for service {service_id}: {e}")

    async def create_ticket(self, service_id: str, customer_phone: str) -> Optional[IssuedTicket]:
        """
        Creates a waiting ticket for the service and returns it together with
        the names used in customer messages and its queue position.
        Returns None on any failure.
        """
        try:
            service = await self.db.get_service(service_id)
            if not service:
                logger.error(f"Cannot create ticket: service {service_id} not found")
                tickets_created_counter.labels(status="service_not_found").inc()
                return None

            phone = EnhancedSecurityService.ensure_plus_prefix(customer_phone)
            ticket = await self._allocate_and_insert(
                service.id, service.department_id, ticket_prefix(service.name), phone
            )

            department = await self.db.get_department(service.department_id)
            branch = await self.db.get_branch(department.branch_id) if department else None
            organization = await self.db.get_organization(branch.organization_id) if branch else None
            position = await self.get_queue_position(ticket)

            tickets_created_counter.labels(status="success").inc()
            logger.info(f"Ticket {ticket.ticket_number} created for service {service.id} at position {position}")
            return IssuedTicket(
                ticket=ticket,
                service_name=service.name,
                department_name=department.name if department else "Department",
                branch_name=branch.name if branch else "Main Branch",
                organization_name=organization.name if organization else "Our Organization",
                estimated_time=service.estimated_time,
                queue_position=position,
            )
        except Exception as e:
            tickets_created_counter.labels(status="failed").inc()
            logger.error(f"Error creating ticket for service {service_id}: {e}", exc_info=True)
            return None

    async def get_queue_position(self, ticket: Ticket) -> int:
        """Active tickets of the same service created earlier, plus one."""
        try:
            ahead = await self.db.count_tickets_ahead(ticket.service_id, ticket.created_at)
        except Exception as e:
            logger.error(f"Error getting queue position for ticket {ticket.id}: {e}")
            return 1
        return (ahead or 0) + 1

    async def get_ticket(self, ticket_id: Optional[str]) -> Optional[Ticket]:
        if not ticket_id:
            return None
        return await self.db.get_ticket(ticket_id)

    async def cancel_ticket(self, ticket_id: str) -> bool:
        """Marks the ticket cancelled. Raises if the store rejects the write."""
        return await self.db.update_ticket(
            ticket_id,
            {"status": TicketStatus.CANCELLED.value, "cancelled_at": datetime.now(timezone.utc)},
        )
