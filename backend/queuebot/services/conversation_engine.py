# /queuebot/services/conversation_engine.py

"""
WhatsApp queue dialogue.

One inbound message in, one reply out. The conversation record stored per
(phone, organisation) carries the state between webhook deliveries:

    INITIAL_CONTACT
        -> AWAITING_BRANCH_SELECTION      (no QR context)
        -> AWAITING_DEPARTMENT_SELECTION  (branch QR, or after a branch pick)
        -> AWAITING_SERVICE_SELECTION     (department QR, or after a department pick)
        -> TICKET_CONFIRMED               (ticket issued)

Sending a restart keyword from any state throws the old records away and
starts again. `process_message` never raises; every failure is turned into a
message the customer can act on.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

from queuebot.config import strings
from queuebot.config.settings import settings
from queuebot.models.conversation import Conversation, ConversationState
from queuebot.models.ticket import IssuedTicket
from queuebot.services.directory_service import (
    DirectoryService,
    find_item,
    format_branch_list,
    format_department_list,
    format_service_list,
)
from queuebot.services.template_service import TemplateService, render_template
from queuebot.services.ticket_service import TicketService
from queuebot.services.wait_time_service import WaitTimeService, format_wait_time
from queuebot.utils.logging import mask_phone
from queuebot.utils.metrics import conversation_messages_counter

logger = logging.getLogger(__name__)

RESTART_KEYWORDS = frozenset({"hello", "start", "restart", "new"})
NEW_TICKET_KEYWORDS = frozenset({"new", "restart"})
NEW_TICKET_PHRASES = ("new ticket", "another")

_LEADING_INTEGER = re.compile(r"[+-]?\d+")


def parse_menu_number(body: str) -> Optional[int]:
    """Leading integer of the reply ('2', ' 2 ', '2.' -> 2), or None."""
    match = _LEADING_INTEGER.match((body or "").strip())
    return int(match.group()) if match else None


class ConversationEngine:
    def __init__(
        self,
        db,
        notifier,
        templates: Optional[TemplateService] = None,
        tickets: Optional[TicketService] = None,
        wait_times: Optional[WaitTimeService] = None,
        directory: Optional[DirectoryService] = None,
        notify_ticket_created: bool = settings.send_ticket_created_notification,
    ):
        self.db = db
        self.notifier = notifier
        self.templates = templates or TemplateService(db)
        self.tickets = tickets or TicketService(db)
        self.wait_times = wait_times or WaitTimeService(db)
        self.directory = directory or DirectoryService(db, self.wait_times)
        self.notify_ticket_created = notify_ticket_created

    # ==================== Entry point ====================

    async def process_message(
        self,
        phone_number: str,
        message_body: str,
        organization_id: str,
        branch_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> str:
        """Handles one customer message and returns the reply text."""
        try:
            branch_id, department_id = await self._scoped_qr_context(organization_id, branch_id, department_id)

            if (message_body or "").strip().lower() in RESTART_KEYWORDS:
                deleted = await self.db.delete_conversations(phone_number, organization_id)
                logger.info(f"Conversation restart for {mask_phone(phone_number)} ({deleted} previous records)")
                conversation = await self.db.create_conversation(
                    phone_number, organization_id, branch_id, department_id
                )
                conversation_messages_counter.labels(state="restart").inc()
                return await self._handle_initial_contact(conversation)

            conversation = await self.db.get_latest_conversation(phone_number, organization_id)
            if conversation is None:
                conversation = await self.db.create_conversation(
                    phone_number, organization_id, branch_id, department_id
                )

            return await self._dispatch(conversation, message_body or "")
        except Exception as e:
            logger.error(f"WhatsApp conversation error for {mask_phone(phone_number)}: {e}", exc_info=True)
            conversation_messages_counter.labels(state="error").inc()
            return strings.PROCESSING_ERROR

    async def _scoped_qr_context(
        self, organization_id: str, branch_id: Optional[str], department_id: Optional[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        QR ids arrive as free text, so they are only kept when the department
        sits in the branch and the branch belongs to the organisation being
        messaged. Anything else falls back to the full branch menu.
        """
        if not branch_id and not department_id:
            return None, None

        if department_id:
            department = await self.db.get_department(department_id)
            if department is None or (branch_id and department.branch_id != branch_id):
                logger.warning(f"Ignoring QR department {department_id} outside branch {branch_id}")
                return None, None
            branch_id = department.branch_id

        branch = await self.db.get_branch(branch_id)
        if branch is None or branch.organization_id != organization_id:
            logger.warning(f"Ignoring QR branch {branch_id} outside organization {organization_id}")
            return None, None
        return branch_id, department_id

    async def _dispatch(self, conversation: Conversation, message_body: str) -> str:
        state = conversation.conversation_state
        conversation_messages_counter.labels(state=getattr(state, "value", str(state))).inc()

        if state == ConversationState.INITIAL_CONTACT:
            return await self._handle_initial_contact(conversation)
        if state == ConversationState.AWAITING_BRANCH_SELECTION:
            return await self._handle_branch_selection(conversation, message_body)
        if state == ConversationState.AWAITING_DEPARTMENT_SELECTION:
            return await self._handle_department_selection(conversation, message_body)
        if state == ConversationState.AWAITING_SERVICE_SELECTION:
            return await self._handle_service_selection(conversation, message_body)
        if state == ConversationState.AWAITING_PHONE_NUMBER:
            # Deprecated step: the sender number is used directly now.
            return strings.PHONE_NUMBER_NOT_NEEDED
        if state == ConversationState.TICKET_CONFIRMED:
            return await self._handle_ticket_confirmed(conversation, message_body)

        logger.warning(f"Unhandled conversation state {state!r} for conversation {conversation.id}")
        return strings.GENERIC_STATE_ERROR

    # ==================== State handlers ====================

    async def _handle_initial_contact(self, conversation: Conversation) -> str:
        if conversation.department_id:
            return await self._show_services(conversation, conversation.department_id)
        if conversation.branch_id:
            return await self._show_departments(conversation, conversation.branch_id)
        return await self._show_branches(conversation)

    async def _handle_branch_selection(self, conversation: Conversation, message_body: str) -> str:
        number = parse_menu_number(message_body)
        if number is None:
            return await self.templates.get_message(conversation.organization_id, "branch_selection_error", {})

        branches = await self.directory.branch_menu(conversation.organization_id)
        selected = find_item(branches, number)
        if not selected:
            return await self.templates.get_message(
                conversation.organization_id, "invalid_branch_number", {"max_number": str(len(branches))}
            )

        await self.db.update_conversation(conversation.id, {"branch_id": selected.id})
        conversation.branch_id = selected.id
        return await self._show_departments(conversation, selected.id)

    async def _handle_department_selection(self, conversation: Conversation, message_body: str) -> str:
        number = parse_menu_number(message_body)
        if number is None:
            return await self.templates.get_message(conversation.organization_id, "department_selection_error", {})

        departments = await self.directory.department_menu(conversation.branch_id) if conversation.branch_id else []
        selected = find_item(departments, number)
        if not selected:
            return await self.templates.get_message(
                conversation.organization_id, "invalid_department_number", {"max_number": str(len(departments))}
            )

        await self.db.update_conversation(conversation.id, {"department_id": selected.id})
        conversation.department_id = selected.id
        return await self._show_services(conversation, selected.id)

    async def _handle_service_selection(self, conversation: Conversation, message_body: str) -> str:
        number = parse_menu_number(message_body)
        if number is None:
            return await self.templates.get_message(conversation.organization_id, "service_selection_error", {})

        if not conversation.department_id:
            return await self.templates.get_message(
                conversation.organization_id, "department_selection_error_restart", {}
            )

        services = await self.directory.service_menu(conversation.department_id)
        selected = find_item(services, number)
        if not selected:
            return await self.templates.get_message(
                conversation.organization_id, "invalid_service_number", {"max_number": str(len(services))}
            )

        logger.info(f"Creating ticket for service {selected.name} ({selected.id}) for {mask_phone(conversation.phone_number)}")
        try:
            issued = await self.tickets.create_ticket(selected.id, conversation.phone_number)
            if issued is None:
                return strings.TICKET_CREATION_FAILED

            # The ticket exists from here on; later failures only cost polish.
            if self.notify_ticket_created:
                await self._send_ticket_created_notification(issued)

            try:
                await self.db.update_conversation(conversation.id, {
                    "selected_service_id": selected.id,
                    "ticket_id": issued.ticket.id,
                    "conversation_state": ConversationState.TICKET_CONFIRMED,
                    "context_data": {"customer_phone": conversation.phone_number},
                })
            except Exception as e:
                logger.error(f"Error updating conversation {conversation.id} after ticket {issued.ticket_number}: {e}")

            try:
                return await self._render_confirmation(issued, conversation.organization_id)
            except Exception as e:
                logger.error(f"Error generating confirmation for ticket {issued.ticket_number}: {e}")
                return render_template(strings.TICKET_CREATED_SHORT, {
                    "ticket_number": issued.ticket_number or "Created",
                    "service_name": selected.name,
                })
        except Exception as e:
            logger.error(f"Error in service selection: {e}", exc_info=True)
            return strings.TICKET_CREATION_ERROR

    async def _handle_ticket_confirmed(self, conversation: Conversation, message_body: str) -> str:
        text = message_body.strip().lower()

        if "status" in text or "position" in text:
            return await self._ticket_status(conversation.ticket_id)
        if "cancel" in text:
            return await self._cancel_ticket(conversation.ticket_id)
        if text in NEW_TICKET_KEYWORDS or any(phrase in text for phrase in NEW_TICKET_PHRASES):
            return strings.START_NEW_REQUEST
        return strings.TICKET_CONFIRMED_HELP

    # ==================== Menus ====================

    async def _show_branches(self, conversation: Conversation) -> str:
        branches = await self.directory.branch_menu(conversation.organization_id)
        if not branches:
            return strings.NO_BRANCHES_AVAILABLE

        await self.db.update_conversation(
            conversation.id, {"conversation_state": ConversationState.AWAITING_BRANCH_SELECTION}
        )
        conversation.conversation_state = ConversationState.AWAITING_BRANCH_SELECTION

        organization = await self.db.get_organization(conversation.organization_id)
        organization_name = organization.name if organization else "Our Organization"
        branches_list = format_branch_list(branches)
        return await self.templates.get_message(conversation.organization_id, "branch_selection", {
            "organization_name": organization_name,
            "organizationName": organization_name,
            "branches_list": branches_list,
            "branchList": branches_list,
        })

    async def _show_departments(self, conversation: Conversation, branch_id: str) -> str:
        departments = await self.directory.department_menu(branch_id)
        if not departments:
            return strings.NO_DEPARTMENTS_AVAILABLE

        await self.db.update_conversation(
            conversation.id, {"conversation_state": ConversationState.AWAITING_DEPARTMENT_SELECTION}
        )
        conversation.conversation_state = ConversationState.AWAITING_DEPARTMENT_SELECTION

        branch = await self.db.get_branch(branch_id)
        branch_name = branch.name if branch else "Branch"
        departments_list = format_department_list(departments)
        return await self.templates.get_message(conversation.organization_id, "department_selection", {
            "branch_name": branch_name,
            "branchName": branch_name,
            "departments_list": departments_list,
            "departmentsList": departments_list,
            "departmentList": departments_list,
        })

    async def _show_services(self, conversation: Conversation, department_id: str) -> str:
        services = await self.directory.service_menu(department_id)
        if not services:
            return strings.NO_SERVICES_AVAILABLE

        await self.db.update_conversation(
            conversation.id, {"conversation_state": ConversationState.AWAITING_SERVICE_SELECTION}
        )
        conversation.conversation_state = ConversationState.AWAITING_SERVICE_SELECTION

        department = await self.db.get_department(department_id)
        branch = await self.db.get_branch(department.branch_id) if department else None
        department_name = department.name if department else "Department"
        branch_name = branch.name if branch else "Branch"
        services_list = format_service_list(services)
        return await self.templates.get_message(conversation.organization_id, "service_selection", {
            "department_name": department_name,
            "departmentName": department_name,
            "branch_name": branch_name,
            "branchName": branch_name,
            "services_list": services_list,
            "servicesList": services_list,
            "serviceList": services_list,
        })

    # ==================== Tickets ====================

    async def _render_confirmation(self, issued: IssuedTicket, organization_id: str) -> str:
        estimated_wait = format_wait_time(settings.default_service_minutes)
        try:
            estimated_wait = await self.wait_times.estimate_wait(
                issued.ticket.service_id,
                issued.ticket.department_id,
                issued.estimated_time or settings.default_service_minutes,
            )
        except Exception as e:
            logger.error(f"Error calculating wait time for confirmation: {e}")

        variables: Dict[str, Any] = {}
        for snake, camel, value in (
            ("customer_name", "customerName", "Customer"),
            ("organization_name", "organizationName", issued.organization_name),
            ("branch_name", "branchName", issued.branch_name),
            ("department_name", "departmentName", issued.department_name),
            ("service_name", "serviceName", issued.service_name),
            ("ticket_number", "ticketNumber", issued.ticket_number),
            ("queue_position", "queuePosition", str(issued.queue_position)),
            ("estimated_wait", "estimatedWait", estimated_wait),
        ):
            variables[snake] = variables[camel] = value
        variables["estimatedWaitTime"] = estimated_wait

        return await self.templates.get_message(organization_id, "ticket_confirmation", variables)

    async def _send_ticket_created_notification(self, issued: IssuedTicket) -> None:
        try:
            await self.notifier.notify_ticket_created(
                issued.ticket.customer_phone,
                issued.ticket_number,
                issued.department_name,
                issued.organization_name,
                waiting_count=issued.queue_position - 1,
            )
        except Exception as e:
            logger.error(f"Ticket created notification failed for {issued.ticket_number}: {e}")

    async def _ticket_status(self, ticket_id: Optional[str]) -> str:
        ticket = await self.tickets.get_ticket(ticket_id)
        if not ticket:
            return strings.TICKET_NOT_FOUND

        service = await self.db.get_service(ticket.service_id)
        position = await self.tickets.get_queue_position(ticket)
        minutes = await self.wait_times.analytics_wait_minutes(ticket.service_id, ticket.department_id, position - 1)
        if minutes <= 0:
            minutes = position * settings.default_service_minutes

        return render_template(strings.TICKET_STATUS, {
            "ticket_number": ticket.ticket_number,
            "service_name": service.name if service else "Service",
            "position": position,
            "estimated_wait": format_wait_time(minutes),
            "status": ticket.status.value.capitalize(),
        })

    async def _cancel_ticket(self, ticket_id: Optional[str]) -> str:
        if not ticket_id:
            return strings.TICKET_CANCEL_FAILED
        try:
            cancelled = await self.tickets.cancel_ticket(ticket_id)
        except Exception as e:
            logger.error(f"Error cancelling ticket {ticket_id}: {e}")
            return strings.TICKET_CANCEL_FAILED
        if not cancelled:
            logger.warning(f"Ticket {ticket_id} not found for cancellation")
            return strings.TICKET_CANCEL_FAILED
        logger.info(f"Ticket {ticket_id} cancelled by customer")
        return strings.TICKET_CANCELLED
