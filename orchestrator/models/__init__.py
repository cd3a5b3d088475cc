from .org import Organization
from .tenancy import Event, Edition, TicketType
from .order import Order
from .edition_sponsor import EditionSponsor
from .api_key import ApiKey
from .billing_event import ProcessedPaymentEvent
from .invoice_counter import InvoiceCounter
from .email_log import EmailLog
from .webhook import Webhook, WebhookDelivery

# Payment-driven entities, in lookup order
PAYMENTABLE_MODELS = (Order, EditionSponsor)

__all__ = [
    "Organization",
    "Event",
    "Edition",
    "TicketType",
    "Order",
    "EditionSponsor",
    "ApiKey",
    "ProcessedPaymentEvent",
    "InvoiceCounter",
    "EmailLog",
    "Webhook",
    "WebhookDelivery",
    "PAYMENTABLE_MODELS",
]
