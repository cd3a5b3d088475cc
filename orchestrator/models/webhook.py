from sqlalchemy import func
from orchestrator.extensions import db
from orchestrator.models.mixins import JSONType
from orchestrator.utils.helpers import utcnow

WEBHOOK_EVENTS = (
    "order.created",
    "order.completed",
    "order.refunded",
    "sponsor.paid",
    "sponsor.refunded",
)

DEFAULT_RETRY_COUNT = 3
MAX_RETRY_COUNT = 10

DELIVERY_PENDING = "pending"
DELIVERY_SUCCESS = "success"
DELIVERY_RETRYING = "retrying"
DELIVERY_FAILED = "failed"


class Webhook(db.Model):
    """Outgoing subscription: signed POSTs to url for the listed events."""
    __tablename__ = "webhooks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    url = db.Column(db.String(2048), nullable=False)
    secret = db.Column(db.String(128), nullable=False)

    # Same narrowing scope as API keys; unset levels match everything
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    edition_id = db.Column(db.Integer, db.ForeignKey("editions.id", ondelete="CASCADE"), nullable=True, index=True)

    events = db.Column(JSONType, nullable=False, default=list)
    headers = db.Column(JSONType, nullable=False, default=dict)
    retry_count = db.Column(db.Integer, nullable=False, default=DEFAULT_RETRY_COUNT, server_default=db.text(str(DEFAULT_RETRY_COUNT)))
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"), index=True)
    created_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    deliveries = db.relationship("WebhookDelivery", back_populates="webhook", cascade="all, delete-orphan")

    def matches_event(self, event: str) -> bool:
        return event in (self.events or [])

    def __repr__(self) -> str:
        return f"<Webhook id={self.id} url={self.url!r} active={self.is_active}>"


class WebhookDelivery(db.Model):
    __tablename__ = "webhook_deliveries"

    id = db.Column(db.Integer, primary_key=True)
    webhook_id = db.Column(db.Integer, db.ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    event = db.Column(db.String(40), nullable=False)
    payload = db.Column(JSONType, nullable=False, default=dict)

    status = db.Column(db.String(20), nullable=False, default=DELIVERY_PENDING, index=True)  # pending|success|retrying|failed
    status_code = db.Column(db.Integer, nullable=True)
    response_body = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)
    attempt = db.Column(db.Integer, nullable=False, default=1)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    webhook = db.relationship("Webhook", back_populates="deliveries")

    def __repr__(self) -> str:
        return f"<WebhookDelivery id={self.id} event={self.event} status={self.status} attempt={self.attempt}>"
