# /queuebot/utils/metrics.py

from prometheus_client import Counter, Histogram

# Prometheus metrics for the queue service, kept in one place so routes and
# services share the same collectors.

# Business Logic Metrics
webhook_events_counter = Counter('whatsapp_webhook_events_total', 'Inbound webhook events', ['outcome'])
conversation_messages_counter = Counter('conversation_messages_total', 'Messages handled by the conversation engine', ['state'])
tickets_created_counter = Counter('tickets_created_total', 'Ticket creation attempts', ['status'])
notifications_counter = Counter('whatsapp_notifications_total', 'Outbound WhatsApp notifications', ['type', 'status'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])

# Performance Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
cache_operations = Counter('cache_operations_total', 'Cache operations', ['operation', 'status'])
