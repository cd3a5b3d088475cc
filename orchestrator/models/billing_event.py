from sqlalchemy import func
from orchestrator.extensions import db

class ProcessedPaymentEvent(db.Model):
    """Append-only idempotency ledger: one row per provider delivery id."""
    __tablename__ = "processed_payment_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    provider = db.Column(db.String(20), nullable=False, index=True)
    event_type = db.Column(db.String(80), nullable=True)
    outcome = db.Column(db.String(40), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<ProcessedPaymentEvent {self.provider}:{self.event_id} outcome={self.outcome!r}>"
