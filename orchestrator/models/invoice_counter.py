from sqlalchemy import func, text, UniqueConstraint
from orchestrator.extensions import db

class InvoiceCounter(db.Model):
    __tablename__ = "invoice_counters"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    prefix = db.Column(db.String(8), nullable=False)
    # last issued number for (organization_id, prefix)
    value = db.Column(db.Integer, nullable=False, default=0, server_default=text("0"))

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("organization_id", "prefix", name="uq_invoice_counters_org_prefix"),
    )

    def __repr__(self) -> str:
        return f"<InvoiceCounter org={self.organization_id} prefix={self.prefix!r} value={self.value}>"
