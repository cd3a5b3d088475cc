from typing import Optional, Dict, Any
from flask import current_app, render_template
from flask_mail import Message
from orchestrator.extensions import db, mail
from orchestrator.models import EmailLog
import json
import time

DOCUMENT_TEMPLATE = "document"


def _log_structured(event: str, level: str = "info", **fields):
    """One JSON object per line; recipient email is the only PII."""
    payload = {"event": event, **fields}
    getattr(current_app.logger, level)(json.dumps(payload))


def send_email(
    to_email: str,
    subject: str,
    template: str,
    context: Optional[Dict[str, Any]] = None,
    attachments=None,
    organization_id: Optional[int] = None,
    document_number: Optional[str] = None,
) -> Optional[EmailLog]:
    """
    template: basename under templates/email/ without extension.
    attachments: iterable of (filename, content_type, bytes).
    Renders HTML and plaintext, sends via Flask-Mail and records an EmailLog row.
    """
    context = context or {}
    to_email = to_email.strip().lower()
    html_body = render_template(f"email/{template}.html", **context)
    text_body = render_template(f"email/{template}.txt", **context)

    msg = Message(recipients=[to_email], subject=subject)
    msg.body = text_body
    msg.html = html_body
    for filename, content_type, data in attachments or ():
        msg.attach(filename, content_type, data)

    elog = EmailLog(
        organization_id=organization_id,
        to_email=to_email,
        template=template,
        subject=subject,
        document_number=document_number,
        status="queued",
        meta={},
    )
    db.session.add(elog)
    db.session.commit()

    start = time.perf_counter()
    try:
        mail.send(msg)  # Flask-Mail returns None; no provider id over SMTP
    except Exception as ex:
        latency_ms = int((time.perf_counter() - start) * 1000)
        elog.status = "failed"
        elog.meta = {"error": str(ex)}
        db.session.commit()
        _log_structured("mail_send", "warning", template=template, to=to_email, subject=subject,
                        outcome="smtp_error", latency_ms=latency_ms, smtp_error=str(ex))
        return elog

    latency_ms = int((time.perf_counter() - start) * 1000)
    elog.status = "sent"
    db.session.commit()
    _log_structured("mail_send", template=template, to=to_email, subject=subject,
                    outcome="sent", document_number=document_number, latency_ms=latency_ms)
    return elog


def send_document_email(*, to_email, subject, document_kind, document_number, pdf_bytes,
                        organization_id=None, context=None):
    ctx = {
        "document_kind": document_kind,
        "document_number": document_number,
        "seller_name": current_app.config.get("SELLER_NAME"),
        **(context or {}),
    }
    return send_email(
        to_email=to_email,
        subject=subject,
        template=DOCUMENT_TEMPLATE,
        context=ctx,
        attachments=[(f"{document_number}.pdf", "application/pdf", pdf_bytes)],
        organization_id=organization_id,
        document_number=document_number,
    )
