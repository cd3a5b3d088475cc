"""
Fiscal document publication: render the invoice / credit-note PDF, store it
under DOCUMENTS_DIR and email it to the billing contact.

Runs after the webhook transaction committed. The document number already
exists; a failure here only leaves the PDF reference empty, which
`flask documents regenerate` repairs.
"""
import json
import os
import threading
from typing import Iterable, Tuple

from flask import current_app, render_template

from orchestrator.extensions import db
from orchestrator.models import PAYMENTABLE_MODELS
from orchestrator.utils.helpers import as_utc, format_amount, utcnow

DOC_INVOICE = "invoice"
DOC_CREDIT_NOTE = "credit_note"

# kind -> (number attribute, pdf attribute, email subject)
DOCUMENT_FIELDS = {
    DOC_INVOICE: ("invoice_number", "invoice_pdf", "Your invoice {number}"),
    DOC_CREDIT_NOTE: ("credit_note_number", "credit_note_pdf", "Your credit note {number}"),
}


def render_pdf(html: str) -> bytes:
    # imported lazily: WeasyPrint pulls in Pango/cairo at import time
    from weasyprint import HTML
    return HTML(string=html, base_url=current_app.root_path).write_pdf()


def _document_context(entity, kind: str) -> dict:
    cfg = current_app.config
    number_attr = DOCUMENT_FIELDS[kind][0]
    total = entity.amount or 0
    rate = float(cfg.get("VAT_RATE", 0) or 0)
    net = int(round(total / (1 + rate / 100))) if rate else total
    issued_at = as_utc(entity.refunded_at if kind == DOC_CREDIT_NOTE else entity.paid_at) or utcnow()
    return {
        "kind": kind,
        "number": getattr(entity, number_attr),
        "invoice_number": entity.invoice_number,
        "entity": entity,
        "customer_name": entity.display_name,
        "billing_address": entity.billing_address or {},
        "issued_at": issued_at,
        "seller": {
            "name": cfg.get("SELLER_NAME"),
            "address": cfg.get("SELLER_ADDRESS"),
            "vat_number": cfg.get("SELLER_VAT_NUMBER"),
        },
        "vat_rate": rate,
        "total": format_amount(total, entity.currency),
        "net": format_amount(net, entity.currency),
        "vat": format_amount(total - net, entity.currency),
    }


def render_document(entity, kind: str) -> bytes:
    html = render_template(f"documents/{kind}.html", **_document_context(entity, kind))
    return render_pdf(html)


def document_path(organization_id: int, number: str) -> str:
    """Path relative to DOCUMENTS_DIR."""
    return f"{organization_id}/{number}.pdf"


def store_document(organization_id: int, number: str, pdf_bytes: bytes) -> str:
    root = current_app.config["DOCUMENTS_DIR"]
    rel = document_path(organization_id, number)
    full = os.path.join(root, rel)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    tmp = full + ".tmp"
    with open(tmp, "wb") as fh:
        fh.write(pdf_bytes)
    os.replace(tmp, full)
    return rel


def publish_document(entity, kind: str, *, send=True) -> str:
    """Render, store and (optionally) email one document. Commits the PDF reference."""
    from orchestrator.services.email import send_document_email

    number_attr, pdf_attr, subject = DOCUMENT_FIELDS[kind]
    number = getattr(entity, number_attr)
    if not number:
        raise ValueError(f"{entity.entity_kind} {entity.id} has no {number_attr}")

    pdf_bytes = render_document(entity, kind)
    rel = store_document(entity.organization_id, number, pdf_bytes)
    setattr(entity, pdf_attr, rel)
    db.session.commit()

    current_app.logger.info(json.dumps({
        "event": "document_published",
        "kind": kind,
        "number": number,
        "entity": entity.entity_kind,
        "entity_id": entity.id,
        "path": rel,
    }))

    recipient = entity.billing_email or getattr(entity, "email", None)
    if send and recipient:
        send_document_email(
            to_email=recipient,
            subject=subject.format(number=number),
            document_kind=kind,
            document_number=number,
            pdf_bytes=pdf_bytes,
            organization_id=entity.organization_id,
            context={"customer_name": entity.display_name, "total": format_amount(entity.amount, entity.currency)},
        )
    return rel


def _publish_all(items: Iterable[Tuple[type, int, str]]) -> int:
    published = 0
    for model, entity_id, kind in items:
        try:
            entity = db.session.get(model, entity_id)
            if entity is None:
                continue
            publish_document(entity, kind)
            published += 1
        except Exception:
            db.session.rollback()
            current_app.logger.exception(json.dumps({
                "event": "document_publish_failed",
                "kind": kind,
                "entity": getattr(model, "entity_kind", model.__name__),
                "entity_id": entity_id,
            }))
    return published


def publish_documents(items) -> None:
    """
    Publish documents issued by a committed webhook. With
    DOCUMENTS_RENDER_ASYNC the work moves to a daemon thread so the provider
    gets its acknowledgement without waiting on PDF rendering.
    """
    items = list(items)
    if not items:
        return
    if not current_app.config.get("DOCUMENTS_RENDER_ASYNC"):
        _publish_all(items)
        return

    app = current_app._get_current_object()

    def _run():
        with app.app_context():
            _publish_all(items)
            db.session.remove()

    threading.Thread(target=_run, name="document-publisher", daemon=True).start()


def missing_documents():
    """(model, id, kind) for every issued number whose PDF is absent."""
    root = current_app.config["DOCUMENTS_DIR"]
    for model in PAYMENTABLE_MODELS:
        for kind, (number_attr, pdf_attr, _) in DOCUMENT_FIELDS.items():
            number_col = getattr(model, number_attr)
            q = db.select(model).where(number_col.isnot(None)).order_by(model.id)
            for entity in db.session.execute(q).scalars():
                pdf = getattr(entity, pdf_attr)
                if not pdf or not os.path.exists(os.path.join(root, pdf)):
                    yield model, entity.id, kind


def regenerate_missing(*, send=False) -> int:
    items = list(missing_documents())
    count = 0
    for model, entity_id, kind in items:
        entity = db.session.get(model, entity_id)
        try:
            publish_document(entity, kind, send=send)
            count += 1
        except Exception:
            db.session.rollback()
            current_app.logger.exception(json.dumps({
                "event": "document_regenerate_failed",
                "kind": kind,
                "entity_id": entity_id,
            }))
    return count
