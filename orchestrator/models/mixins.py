"""
Shared column sets for models.

JSONType maps to JSONB on PostgreSQL and plain JSON elsewhere (tests run on SQLite).

PaymentableMixin is the capability set the payment processor relies on:
a status with terminal values, a provider payment reference, billing
details and the fiscal document references (invoice / credit note).
Order and EditionSponsor both mix it in, so numbering and idempotency
rules are written once.
"""
from sqlalchemy import func, text
from sqlalchemy.dialects.postgresql import JSONB

from orchestrator.extensions import db
from orchestrator.utils.helpers import utcnow

JSONType = db.JSON().with_variant(JSONB(), "postgresql")

STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PAID = "paid"
STATUS_REFUNDED = "refunded"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({STATUS_REFUNDED, STATUS_CANCELLED})

PROVIDER_STRIPE = "stripe"
PROVIDER_HELLOASSO = "helloasso"


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class PaymentableMixin(TimestampMixin):
    # Tag used in document paths, logs and metadata ("order", "edition_sponsor")
    entity_kind = None

    status = db.Column(db.String(32), nullable=False, index=True, default=STATUS_PENDING_PAYMENT, server_default=text(f"'{STATUS_PENDING_PAYMENT}'"))

    payment_provider = db.Column(db.String(20), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True, index=True)

    amount = db.Column(db.Integer, nullable=False, default=0, server_default=text("0"))  # minor units
    currency = db.Column(db.String(3), nullable=False, default="EUR", server_default=text("'EUR'"))

    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(JSONType, nullable=False, default=dict)

    invoice_number = db.Column(db.String(40), nullable=True, unique=True)
    invoice_pdf = db.Column(db.String(512), nullable=True)
    credit_note_number = db.Column(db.String(40), nullable=True, unique=True)
    credit_note_pdf = db.Column(db.String(512), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.status == STATUS_PAID

    @property
    def display_name(self) -> str:
        raise NotImplementedError

    def mark_paid(self, *, provider=None, reference=None, at=None):
        self.status = STATUS_PAID
        self.paid_at = at or utcnow()
        if provider:
            self.payment_provider = provider
        if reference and not self.payment_reference:
            self.payment_reference = reference

    def mark_refunded(self, *, at=None):
        self.status = STATUS_REFUNDED
        self.refunded_at = at or utcnow()

    def mark_cancelled(self, *, at=None):
        self.status = STATUS_CANCELLED
        self.cancelled_at = at or utcnow()

    def lineage(self) -> dict:
        edition = getattr(self, "edition", None)
        return {
            "organization_id": self.organization_id,
            "event_id": edition.event_id if edition is not None else None,
            "edition_id": self.edition_id,
        }

    @classmethod
    def scope_conditions(cls, scope):
        from orchestrator.models.tenancy import Edition
        conds = []
        if scope.organization_id is not None:
            conds.append(cls.organization_id == scope.organization_id)
        if scope.event_id is not None:
            conds.append(cls.edition_id.in_(db.select(Edition.id).where(Edition.event_id == scope.event_id)))
        if scope.edition_id is not None:
            conds.append(cls.edition_id == scope.edition_id)
        return conds
