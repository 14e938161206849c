# /queuebot/config/strings.py

# Built-in customer-facing texts. Organisation templates stored in the
# database take precedence for the template types that have a storage key;
# everything else is always rendered from here.

# --- Fallback templates (rendered with {placeholder} variables) ---

BRANCH_SELECTION = (
    "🏢 *Please select your preferred branch:*\n\n"
    "{branches_list}\n\n"
    "Reply with the number of your choice."
)

DEPARTMENT_SELECTION = (
    "🏪 *{branch_name}*\n\n"
    "Please select a department:\n\n"
    "{departments_list}\n\n"
    "Reply with the number of your choice."
)

SERVICE_SELECTION = (
    "🛍️ *{department_name}*\n\n"
    "Please select your service:\n\n"
    "{services_list}\n\n"
    "Reply with the number of your choice."
)

TICKET_CONFIRMATION = (
    "✅ *Ticket Confirmed!*\n\n"
    "🎟️ **Ticket:** {ticket_number}\n"
    "🏬 **Location:** {branch_name} - {department_name}\n"
    "🛍️ **Service:** {service_name}\n"
    "👥 **Position in Queue:** {queue_position}\n"
    "⏱️ **Estimated Wait:** {estimated_wait}\n\n"
    "📱 You'll receive automatic updates as your turn approaches!\n\n"
    "💡 Reply 'status' to check your current position anytime."
)

ALMOST_YOUR_TURN = (
    "⏰ Almost your turn at {organization_name}!\n\n"
    "Your ticket: *{ticket_number}*\n"
    "Currently serving: {current_serving}\n\n"
    "You're next! Please be ready at the {department_name} counter.\n\n"
    "Thank you for your patience! 🙏"
)

YOUR_TURN = (
    "🔔 It's your turn!\n\n"
    "Ticket: *{ticket_number}*\n"
    "Please proceed to: {department_name}\n\n"
    "Thank you for choosing {organization_name}! 🙏"
)

BRANCH_SELECTION_ERROR = "Please reply with the number of your desired branch (e.g., '1', '2', '3')."
DEPARTMENT_SELECTION_ERROR = "Please reply with the number of your desired department (e.g., '1', '2', '3')."
SERVICE_SELECTION_ERROR = "Please reply with the number of your desired service (e.g., '1', '2', '3')."

INVALID_BRANCH_NUMBER = "Invalid branch number. Please choose a number between 1 and {max_number}."
INVALID_DEPARTMENT_NUMBER = "Invalid department number. Please choose a number between 1 and {max_number}."
INVALID_SERVICE_NUMBER = "Invalid service number. Please choose a number between 1 and {max_number}."

DEPARTMENT_SELECTION_ERROR_RESTART = (
    "I'm sorry, there was an error with your department selection. "
    "Please start over by sending 'hello'."
)

DEFAULT_UPDATE = "Update for ticket {ticket_number} at {organization_name}"

# --- Ticket created notification (sent outside the conversation) ---

TICKET_CREATED_NOTIFICATION = (
    "🎫 Welcome to {organization_name}!\n\n"
    "Your ticket number: *{ticket_number}*\n"
    "Department: {department_name}\n\n"
    "{queue_hint}\n\n"
    "Please keep this message for reference. We'll notify you when it's almost your turn.\n\n"
    "Thank you for choosing {organization_name}! 🙏"
)
CUSTOMERS_AHEAD_HINT = "There are {waiting_count} customers ahead of you."
CALLED_SOON_HINT = "You'll be called soon!"

# --- Conversation engine replies ---

GENERIC_STATE_ERROR = "I'm sorry, something went wrong. Please start over by sending 'hello'."
PROCESSING_ERROR = "I'm sorry, there was an error processing your request. Please try again."

NO_BRANCHES_AVAILABLE = "I'm sorry, no branches are currently available. Please contact the organization directly."
NO_DEPARTMENTS_AVAILABLE = "I'm sorry, no departments are currently available in this branch. Please contact us directly."
NO_SERVICES_AVAILABLE = "I'm sorry, no services are currently available in this department. Please contact us directly."

TICKET_CREATION_FAILED = "Sorry, there was an error creating your ticket. Please try again."
TICKET_CREATION_ERROR = "Sorry, there was an error creating your ticket. Please try again or restart the conversation."
TICKET_CREATED_SHORT = (
    "✅ **Ticket Created!**\n\n"
    "🎟️ Ticket: {ticket_number}\n"
    "📋 Service: {service_name}\n\n"
    "📱 You'll receive updates as your turn approaches!"
)

TICKET_STATUS = (
    "📊 **Ticket Status**\n\n"
    "🎟️ **Ticket:** #{ticket_number}\n"
    "📍 **Service:** {service_name}\n"
    "👥 **Current Position:** {position}\n"
    "⏱️ **Estimated Wait:** {estimated_wait}\n"
    "📅 **Status:** {status}"
)
TICKET_NOT_FOUND = "Sorry, I couldn't find your ticket. Please contact support."

TICKET_CANCELLED = (
    "❌ **Ticket Cancelled**\n\n"
    "Your ticket has been successfully cancelled.\n\n"
    "Thank you for using our queue system!"
)
TICKET_CANCEL_FAILED = "Sorry, there was an error cancelling your ticket. Please contact support."

START_NEW_REQUEST = "To start a new queue request, please send 'hello' or 'restart'."
TICKET_CONFIRMED_HELP = (
    "Your ticket is confirmed! You'll receive automatic updates as your turn approaches.\n\n"
    "Reply 'status' to check your position, 'cancel' to cancel your ticket, "
    "or 'restart' to create a new ticket."
)

PHONE_NUMBER_NOT_NEEDED = (
    "We no longer need your phone number, we use the number you are messaging from. "
    "Send 'hello' to start again and choose your service."
)

# --- Webhook ingress ---

ORGANIZATION_NOT_FOUND = (
    "Sorry, this WhatsApp number is not associated with any organization. "
    "Please check the number and try again."
)

# --- QR deep links ---

DEFAULT_QR_MESSAGE = "Hello! I would like to join the queue."
