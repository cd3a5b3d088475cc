"""
Outgoing webhooks.

Subscribers register a URL, a shared secret and the event names they want.
dispatch() records one WebhookDelivery per matching active subscription,
then POSTs the payload. A failed delivery is rescheduled with backoff
(1 min, 5 min, 30 min) until the subscription's retry_count is spent;
process_pending_retries() sends the ones that are due.

Every request carries:

    X-OEO-Signature: sha256=<hex HMAC-SHA256 of the raw body, keyed by the secret>
    X-OEO-Event:     order.completed
    X-OEO-Timestamp: ISO-8601 UTC, same value as payload["timestamp"]

Deliveries run after the payment transaction has committed; a dead
receiver never changes what the payment provider is told.
"""
import hashlib
import hmac
import json
import secrets
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import httpx
from flask import current_app

from orchestrator.extensions import db
from orchestrator.models import Webhook, WebhookDelivery
from orchestrator.models.webhook import (
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_RETRYING,
    DELIVERY_SUCCESS,
    DEFAULT_RETRY_COUNT,
    MAX_RETRY_COUNT,
    WEBHOOK_EVENTS,
)
from orchestrator.utils.helpers import isoformat, utcnow

SIGNATURE_HEADER = "X-OEO-Signature"
EVENT_HEADER = "X-OEO-Event"
TIMESTAMP_HEADER = "X-OEO-Timestamp"

SECRET_BYTES = 24  # 32 url-safe characters
MAX_RESPONSE_BODY_LENGTH = 10_000
RETRY_DELAYS = (60, 300, 1800)  # seconds
SCOPE_FIELDS = ("organization_id", "event_id", "edition_id")


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None


def _log(level: str, event: str, **fields):
    getattr(current_app.logger, level)(json.dumps({"event": event, **fields}, default=str))


def generate_secret() -> str:
    return secrets.token_urlsafe(SECRET_BYTES)


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def next_retry_delay(attempt: int) -> timedelta:
    """Delay before the send that follows failed attempt number `attempt` (1-based)."""
    return timedelta(seconds=RETRY_DELAYS[min(max(attempt, 1), len(RETRY_DELAYS)) - 1])


def http_client() -> httpx.Client:
    return httpx.Client(timeout=current_app.config.get("WEBHOOK_TIMEOUT", 30), follow_redirects=False)


# ---------- subscriptions ----------

def _validate(name, url, events, retry_count, headers):
    if not (name or "").strip() or len(name.strip()) > 100:
        raise ValueError("name is required (max 100 characters)")
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    events = list(dict.fromkeys(events or ()))
    if not events:
        raise ValueError("at least one event is required")
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValueError(f"unknown event(s): {', '.join(unknown)}")
    if not 0 <= retry_count <= MAX_RETRY_COUNT:
        raise ValueError(f"retry_count must be between 0 and {MAX_RETRY_COUNT}")
    if headers and not all(isinstance(k, str) and isinstance(v, str) for k, v in headers.items()):
        raise ValueError("headers must map strings to strings")
    return events


def create_webhook(
    *,
    name: str,
    url: str,
    events: Iterable[str],
    organization_id: Optional[int] = None,
    event_id: Optional[int] = None,
    edition_id: Optional[int] = None,
    headers: Optional[dict] = None,
    retry_count: int = DEFAULT_RETRY_COUNT,
    secret: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Webhook:
    events = _validate(name, url, events, retry_count, headers)
    webhook = Webhook(
        name=name.strip(),
        url=url,
        secret=secret or generate_secret(),
        organization_id=organization_id,
        event_id=event_id,
        edition_id=edition_id,
        events=events,
        headers=dict(headers or {}),
        retry_count=retry_count,
        is_active=True,
        created_by=created_by,
    )
    db.session.add(webhook)
    db.session.commit()
    return webhook


def _get(webhook_id: int) -> Webhook:
    webhook = db.session.get(Webhook, webhook_id)
    if webhook is None:
        raise LookupError(f"Webhook {webhook_id} not found")
    return webhook


def set_active(webhook_id: int, active: bool) -> Webhook:
    webhook = _get(webhook_id)
    webhook.is_active = active
    db.session.commit()
    return webhook


def delete_webhook(webhook_id: int) -> None:
    db.session.delete(_get(webhook_id))
    db.session.commit()


def list_webhooks(*, organization_id=None):
    q = db.select(Webhook).order_by(Webhook.id)
    if organization_id is not None:
        q = q.where(Webhook.organization_id == organization_id)
    return db.session.execute(q).scalars().all()


def subscribers(event: str, lineage: dict) -> List[Webhook]:
    """Active webhooks listening for event whose scope covers lineage. Unset scope levels match anything."""
    q = db.select(Webhook).where(Webhook.is_active.is_(True)).order_by(Webhook.id)
    for f in SCOPE_FIELDS:
        value = lineage.get(f)
        if value is not None:
            col = getattr(Webhook, f)
            q = q.where(db.or_(col.is_(None), col == value))
    return [w for w in db.session.execute(q).scalars() if w.matches_event(event)]


# ---------- delivery ----------

def send(webhook: Webhook, payload: dict) -> DeliveryResult:
    """POST one signed payload. Transport errors become a failed result."""
    body = json.dumps(payload, default=str).encode("utf-8")
    headers = dict(webhook.headers or {})
    headers.update({
        "Content-Type": "application/json",
        SIGNATURE_HEADER: f"sha256={sign_payload(body, webhook.secret)}",
        EVENT_HEADER: payload["event"],
        TIMESTAMP_HEADER: payload["timestamp"],
    })
    try:
        with http_client() as client:
            resp = client.post(webhook.url, content=body, headers=headers)
    except httpx.HTTPError as e:
        return DeliveryResult(success=False, error=str(e) or type(e).__name__)

    text = resp.text
    if len(text) > MAX_RESPONSE_BODY_LENGTH:
        text = text[:MAX_RESPONSE_BODY_LENGTH] + "... (truncated)"
    if resp.is_success:
        return DeliveryResult(success=True, status_code=resp.status_code, response_body=text)
    return DeliveryResult(
        success=False,
        status_code=resp.status_code,
        response_body=text,
        error=f"HTTP {resp.status_code}: {resp.reason_phrase}",
    )


def _record(delivery: WebhookDelivery, webhook: Webhook, result: DeliveryResult, now=None) -> None:
    now = now or utcnow()
    delivery.status_code = result.status_code
    delivery.response_body = result.response_body
    if result.success:
        delivery.status = DELIVERY_SUCCESS
        delivery.delivered_at = now
        delivery.error = None
        delivery.next_retry_at = None
        return

    delivery.error = result.error or "Delivery failed"
    # retry_count counts sends after the first one
    if delivery.attempt <= (webhook.retry_count or 0):
        delivery.status = DELIVERY_RETRYING
        delivery.next_retry_at = now + next_retry_delay(delivery.attempt)
    else:
        delivery.status = DELIVERY_FAILED
        delivery.next_retry_at = None


def _deliver(delivery: WebhookDelivery, webhook: Webhook, now=None) -> WebhookDelivery:
    result = send(webhook, delivery.payload)
    _record(delivery, webhook, result, now)
    db.session.commit()
    _log("info" if result.success else "warning", "webhook_delivery",
         webhook_id=webhook.id, delivery_id=delivery.id, webhook_event=delivery.event,
         attempt=delivery.attempt, status=delivery.status, status_code=result.status_code,
         error=result.error)
    return delivery


def dispatch(event: str, data: dict, lineage: dict, *, now=None) -> List[WebhookDelivery]:
    """Deliver event to every matching subscription; one delivery row each."""
    if event not in WEBHOOK_EVENTS:
        raise ValueError(f"unknown webhook event {event!r}")
    payload = {"event": event, "timestamp": isoformat(now or utcnow()), "data": data}

    deliveries = []
    for webhook in subscribers(event, lineage):
        delivery = WebhookDelivery(webhook_id=webhook.id, event=event, payload=payload,
                                   status=DELIVERY_PENDING, attempt=1)
        db.session.add(delivery)
        # Row exists before the request goes out
        db.session.commit()
        deliveries.append(_deliver(delivery, webhook, now))
    return deliveries


def process_delivery(delivery_id: int, *, now=None) -> WebhookDelivery:
    """Send a stored delivery again. Delivered ones are left alone."""
    delivery = db.session.get(WebhookDelivery, delivery_id)
    if delivery is None:
        raise LookupError(f"Webhook delivery {delivery_id} not found")
    if delivery.delivered_at is not None:
        return delivery

    webhook = delivery.webhook
    if not webhook.is_active:
        delivery.status = DELIVERY_FAILED
        delivery.error = "Webhook is inactive"
        delivery.next_retry_at = None
        db.session.commit()
        return delivery

    delivery.attempt = (delivery.attempt or 0) + 1
    return _deliver(delivery, webhook, now)


def due_retries(now=None) -> List[WebhookDelivery]:
    q = (
        db.select(WebhookDelivery)
        .where(
            WebhookDelivery.status == DELIVERY_RETRYING,
            WebhookDelivery.next_retry_at <= (now or utcnow()),
        )
        .order_by(WebhookDelivery.next_retry_at, WebhookDelivery.id)
    )
    return db.session.execute(q).scalars().all()


def process_pending_retries(*, now=None) -> List[WebhookDelivery]:
    return [process_delivery(d.id, now=now) for d in due_retries(now)]


def retry_delivery(delivery_id: int, *, now=None) -> WebhookDelivery:
    """Manual retry: restart the attempt count, then send at once."""
    delivery = db.session.get(WebhookDelivery, delivery_id)
    if delivery is None:
        raise LookupError(f"Webhook delivery {delivery_id} not found")
    if delivery.delivered_at is None:
        delivery.attempt = 0
        delivery.error = None
        delivery.next_retry_at = None
        delivery.status = DELIVERY_PENDING
    return process_delivery(delivery_id, now=now)


def delivery_history(webhook_id: int, *, page: int = 1, per_page: int = 50):
    q = (
        db.select(WebhookDelivery)
        .where(WebhookDelivery.webhook_id == webhook_id)
        .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
    )
    return db.paginate(q, page=page, per_page=per_page, error_out=False)


def delivery_stats(webhook_id: int) -> dict:
    rows = db.session.execute(
        db.select(WebhookDelivery.status, db.func.count())
        .where(WebhookDelivery.webhook_id == webhook_id)
        .group_by(WebhookDelivery.status)
    ).all()
    counts = {status: n for status, n in rows}
    return {
        "total": sum(counts.values()),
        "delivered": counts.get(DELIVERY_SUCCESS, 0),
        "failed": counts.get(DELIVERY_FAILED, 0),
        "retrying": counts.get(DELIVERY_RETRYING, 0),
    }


# ---------- after-commit hook ----------

def _dispatch_all(notifications) -> int:
    sent = 0
    for event, data, lineage in notifications:
        try:
            sent += len(dispatch(event, data, lineage))
        except Exception:
            db.session.rollback()
            current_app.logger.exception(json.dumps({"event": "webhook_dispatch_failed", "webhook_event": event}))
    return sent


def notify(notifications) -> None:
    """
    Fan out (event, data, lineage) triples once the triggering transaction
    has committed. With WEBHOOKS_DISPATCH_ASYNC the HTTP calls move to a
    daemon thread, like document publishing.
    """
    notifications = list(notifications)
    if not notifications:
        return
    if not current_app.config.get("WEBHOOKS_DISPATCH_ASYNC"):
        _dispatch_all(notifications)
        return

    app = current_app._get_current_object()

    def _run():
        with app.app_context():
            _dispatch_all(notifications)
            db.session.remove()

    threading.Thread(target=_run, name="webhook-dispatcher", daemon=True).start()
