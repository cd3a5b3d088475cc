"""
Payment webhook processing.

handle_webhook() is the single entry point for provider deliveries:

    verify -> parse -> ledger check -> ledger insert -> resolve entity
           -> transition (+ document numbering) -> commit -> publish documents
           -> notify outgoing webhooks

The ledger row, the counter increment and the entity mutation are one
transaction. Only the delivery that wins the ledger insert mutates the
entity, and a storage failure rolls all three back so the provider can
safely retry. PDF rendering, email and outgoing webhooks happen after the
commit and never change the acknowledgement.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from orchestrator.extensions import db
from orchestrator.models import Order, EditionSponsor, PAYMENTABLE_MODELS
from orchestrator.billing import documents, ledger
from orchestrator.billing.counters import format_document_number, next_number
from orchestrator.billing.errors import (
    AlreadyTerminal,
    DuplicateEvent,
    EntityNotFound,
    InvalidSignature,
    TransientStorageError,
)
from orchestrator.billing.providers import (
    KIND_EXPIRED,
    KIND_FAILED,
    KIND_IGNORED,
    KIND_PARTIALLY_REFUNDED,
    KIND_REFUNDED,
    KIND_SUCCEEDED,
    PaymentEvent,
    get_provider,
)
from orchestrator.services import webhook_dispatch
from orchestrator.utils.helpers import safe_int, utcnow

OUTCOME_PAID = "paid"
OUTCOME_ALREADY_PAID = "already_paid"
OUTCOME_PAYMENT_FAILED = "payment_failed"
OUTCOME_REFUNDED = "refunded"
OUTCOME_PARTIALLY_REFUNDED = "partially_refunded"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_STALE = "stale"
OUTCOME_IGNORED = "ignored"
OUTCOME_ALREADY_TERMINAL = "already_terminal"
OUTCOME_ENTITY_NOT_FOUND = "entity_not_found"
OUTCOME_DUPLICATE = "duplicate"

# Metadata keys set at checkout time (snake_case here, camelCase from older integrations)
_METADATA_KEYS = {
    Order: ("order_id", "orderId"),
    EditionSponsor: ("edition_sponsor_id", "editionSponsorId"),
}

# Outgoing webhook event per (entity kind, outcome)
_NOTIFY_EVENTS = {
    ("order", OUTCOME_PAID): "order.completed",
    ("order", OUTCOME_REFUNDED): "order.refunded",
    ("edition_sponsor", OUTCOME_PAID): "sponsor.paid",
    ("edition_sponsor", OUTCOME_REFUNDED): "sponsor.refunded",
}


@dataclass
class WebhookResult:
    event_id: str
    provider: str
    outcome: str
    entity_kind: Optional[str] = None
    entity_id: Optional[int] = None
    documents: List[str] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return self.outcome == OUTCOME_DUPLICATE

    def to_dict(self) -> dict:
        body = {"ok": True, "eventId": self.event_id, "outcome": self.outcome}
        if self.duplicate:
            body["duplicate"] = True
        if self.documents:
            body["documents"] = list(self.documents)
        return body


def _log(level: str, event: str, **fields):
    getattr(current_app.logger, level)(json.dumps({"event": event, **fields}, default=str))


def _lock_first(model, *conditions):
    q = db.select(model).where(*conditions).with_for_update(of=model)
    return db.session.execute(q).scalars().first()


def resolve_entity(event: PaymentEvent):
    """Locate the Order or EditionSponsor an event refers to, row-locked."""
    if event.reference:
        for model in PAYMENTABLE_MODELS:
            entity = _lock_first(model, model.payment_reference == event.reference)
            if entity is not None:
                return entity

    for model in PAYMENTABLE_MODELS:
        for key in _METADATA_KEYS[model]:
            entity_id = safe_int(event.metadata.get(key))
            if entity_id is None:
                continue
            entity = _lock_first(model, model.id == entity_id)
            if entity is not None:
                return entity

    raise EntityNotFound(f"no order or sponsorship for {event.provider} reference {event.reference!r}")


def _issue_document(entity, prefix: str, number_attr: str) -> str:
    number = next_number(entity.organization_id, prefix)
    value = format_document_number(prefix, number, utcnow().year)
    setattr(entity, number_attr, value)
    return value


def apply_transition(entity, event: PaymentEvent) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Mutate entity for event.kind. Returns (outcome, issued) where issued is a
    list of (document_kind, number) pairs to publish after commit.
    """
    if entity.is_terminal:
        raise AlreadyTerminal(entity)

    cfg = current_app.config
    issued = []

    if event.kind == KIND_SUCCEEDED:
        if entity.is_paid:
            return OUTCOME_ALREADY_PAID, issued
        entity.mark_paid(provider=event.provider, reference=event.reference, at=event.occurred_at)
        if (entity.amount or 0) > 0 and not entity.invoice_number:
            number = _issue_document(entity, cfg.get("INVOICE_PREFIX", "F"), "invoice_number")
            issued.append((documents.DOC_INVOICE, number))
        return OUTCOME_PAID, issued

    if event.kind == KIND_FAILED:
        return OUTCOME_PAYMENT_FAILED, issued

    if event.kind == KIND_REFUNDED:
        entity.mark_refunded(at=event.occurred_at)
        if entity.invoice_number and not entity.credit_note_number:
            number = _issue_document(entity, cfg.get("CREDIT_NOTE_PREFIX", "AV"), "credit_note_number")
            issued.append((documents.DOC_CREDIT_NOTE, number))
        return OUTCOME_REFUNDED, issued

    if event.kind == KIND_PARTIALLY_REFUNDED:
        # Still paid; the invoice stands until the charge is fully refunded
        return OUTCOME_PARTIALLY_REFUNDED, issued

    if event.kind == KIND_EXPIRED:
        if entity.is_paid:
            return OUTCOME_STALE, issued
        entity.mark_cancelled(at=event.occurred_at)
        return OUTCOME_CANCELLED, issued

    return OUTCOME_IGNORED, issued


def handle_webhook(raw_payload: bytes, signature_header: str, provider: str) -> WebhookResult:
    """
    Process one provider delivery.

    Raises InvalidSignature / MalformedPayload (reject, 4xx),
    ProviderNotConfigured (500) or TransientStorageError (retry, 503).
    Everything else ends in a WebhookResult the caller acknowledges with 2xx.
    """
    adapter = get_provider(provider)
    try:
        adapter.verify(raw_payload or b"", signature_header)
    except InvalidSignature as e:
        _log("warning", "webhook_signature_invalid", provider=adapter.name, reason=str(e))
        raise

    event = adapter.parse(raw_payload)
    result = WebhookResult(event_id=event.event_id, provider=event.provider, outcome=OUTCOME_IGNORED)
    issued = []

    try:
        if ledger.has_processed(event.event_id):
            result.outcome = OUTCOME_DUPLICATE
            db.session.rollback()
        else:
            entry = ledger.mark_processed(event.event_id, event.provider, event_type=event.event_type)

            if event.kind != KIND_IGNORED:
                try:
                    entity = resolve_entity(event)
                    result.entity_kind, result.entity_id = entity.entity_kind, entity.id
                    result.outcome, issued = apply_transition(entity, event)
                except EntityNotFound as e:
                    result.outcome = OUTCOME_ENTITY_NOT_FOUND
                    _log("warning", "webhook_entity_not_found", provider=event.provider,
                         event_id=event.event_id, event_type=event.event_type, reason=str(e))
                except AlreadyTerminal as e:
                    result.outcome = OUTCOME_ALREADY_TERMINAL
                    _log("info", "webhook_already_terminal", provider=event.provider,
                         event_id=event.event_id, reason=str(e))

            entry.outcome = result.outcome
            db.session.commit()
    except DuplicateEvent:
        result.outcome = OUTCOME_DUPLICATE
    except SQLAlchemyError as e:
        db.session.rollback()
        _log("error", "webhook_storage_error", provider=event.provider, event_id=event.event_id,
             error=type(e).__name__)
        raise TransientStorageError(f"storage failure while processing {event.event_id}") from e

    result.documents = [number for _, number in issued]
    _log("info", "payment_webhook", provider=event.provider, event_id=event.event_id,
         event_type=event.event_type, outcome=result.outcome,
         entity=result.entity_kind, entity_id=result.entity_id, documents=result.documents)

    if issued:
        model = type(entity)
        documents.publish_documents([(model, result.entity_id, kind) for kind, _ in issued])

    notify_event = _NOTIFY_EVENTS.get((result.entity_kind, result.outcome))
    if notify_event:
        webhook_dispatch.notify([(notify_event, entity.to_api(), entity.lineage())])

    return result
