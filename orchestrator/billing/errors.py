"""
Payment webhook error taxonomy.

Only InvalidSignature, MalformedPayload and TransientStorageError reach the
webhook route; the others are absorbed by the processor and turned into a
successful acknowledgement so provider retries stop.
"""


class WebhookError(Exception):
    """Base class for payment webhook failures."""
    status_code = 400
    code = "webhook_error"


class InvalidSignature(WebhookError):
    code = "invalid_signature"


class MalformedPayload(WebhookError):
    code = "malformed_event"


class UnknownProvider(WebhookError):
    status_code = 404
    code = "unknown_provider"


class ProviderNotConfigured(WebhookError):
    status_code = 500
    code = "provider_not_configured"


class TransientStorageError(WebhookError):
    status_code = 503
    code = "retry_later"


class DuplicateEvent(WebhookError):
    status_code = 200
    code = "duplicate"

    def __init__(self, event_id):
        super().__init__(f"event {event_id} already processed")
        self.event_id = event_id


class EntityNotFound(WebhookError):
    status_code = 200
    code = "entity_not_found"


class AlreadyTerminal(WebhookError):
    status_code = 200
    code = "already_terminal"

    def __init__(self, entity):
        super().__init__(f"{entity.entity_kind} {entity.id} is {entity.status}")
        self.entity = entity
