from sqlalchemy.exc import IntegrityError
from orchestrator.extensions import db
from orchestrator.models import ProcessedPaymentEvent
from orchestrator.billing.errors import DuplicateEvent


def has_processed(event_id: str, *, session=None) -> bool:
    session = session or db.session
    q = db.select(ProcessedPaymentEvent.id).where(ProcessedPaymentEvent.event_id == event_id)
    return session.execute(q).first() is not None


def mark_processed(event_id: str, provider: str, *, event_type=None, at=None, session=None) -> ProcessedPaymentEvent:
    """
    Record event_id as handled, inside the caller's unit of work.

    Must be the first write of the transaction: on a unique-constraint
    conflict the session is rolled back and DuplicateEvent raised. The row is
    only durable once the caller commits together with the effects it guards.
    """
    session = session or db.session
    entry = ProcessedPaymentEvent(event_id=event_id, provider=provider, event_type=event_type)
    if at is not None:
        entry.processed_at = at
    session.add(entry)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise DuplicateEvent(event_id)
    return entry
