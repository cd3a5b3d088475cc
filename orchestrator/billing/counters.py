from typing import Optional
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from orchestrator.extensions import db
from orchestrator.models import InvoiceCounter

DOCUMENT_NUMBER_WIDTH = 6

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def next_number(organization_id: int, prefix: str, *, session=None) -> int:
    """
    Reserve the next sequence number for (organization_id, prefix).

    Single-statement atomic upsert: the row is created at 1 on first use,
    otherwise incremented in place and the new value returned. Two callers can
    never read the same value. The increment joins the caller's transaction;
    the caller commits (a rollback releases the number, so no gaps).
    """
    session = session or db.session
    dialect = session.get_bind().dialect.name
    insert_fn = _UPSERT_DIALECTS.get(dialect)
    if insert_fn is None:
        return _next_number_locked(session, organization_id, prefix)

    stmt = insert_fn(InvoiceCounter).values(organization_id=organization_id, prefix=prefix, value=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[InvoiceCounter.organization_id, InvoiceCounter.prefix],
        set_={"value": InvoiceCounter.value + 1, "updated_at": func.now()},
    ).returning(InvoiceCounter.value)
    return int(session.execute(stmt).scalar_one())


def _next_number_locked(session, organization_id: int, prefix: str) -> int:
    # Dialects without ON CONFLICT: row lock, then increment
    row = session.execute(
        db.select(InvoiceCounter)
        .where(InvoiceCounter.organization_id == organization_id, InvoiceCounter.prefix == prefix)
        .with_for_update()
    ).scalar_one_or_none()
    if row is None:
        row = InvoiceCounter(organization_id=organization_id, prefix=prefix, value=0)
        session.add(row)
    row.value = (row.value or 0) + 1
    session.flush()
    return row.value


def current_value(organization_id: int, prefix: str, *, session=None) -> int:
    session = session or db.session
    value = session.execute(
        db.select(InvoiceCounter.value)
        .where(InvoiceCounter.organization_id == organization_id, InvoiceCounter.prefix == prefix)
    ).scalar_one_or_none()
    return int(value or 0)


def format_document_number(prefix: str, number: int, year: Optional[int] = None) -> str:
    """('F', 42, 2025) -> 'F-2025-000042'"""
    if year is None:
        from orchestrator.utils.helpers import utcnow
        year = utcnow().year
    return f"{prefix}-{year}-{number:0{DOCUMENT_NUMBER_WIDTH}d}"
