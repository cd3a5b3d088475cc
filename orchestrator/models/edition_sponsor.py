from sqlalchemy import text
from orchestrator.extensions import db
from orchestrator.models.mixins import PaymentableMixin

# prospect → negotiating → confirmed are admin steps; payment events drive the rest
class EditionSponsor(PaymentableMixin, db.Model):
    __tablename__ = "edition_sponsors"

    entity_kind = "edition_sponsor"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    edition_id = db.Column(db.Integer, db.ForeignKey("editions.id", ondelete="RESTRICT"), nullable=False, index=True)

    company_name = db.Column(db.String(255), nullable=False)
    legal_name = db.Column(db.String(255), nullable=True)
    vat_number = db.Column(db.String(40), nullable=True)
    package_name = db.Column(db.String(120), nullable=True)
    website = db.Column(db.String(255), nullable=True)

    # sponsors start in the CRM pipeline, not at checkout
    status = db.Column(db.String(32), nullable=False, index=True, default="prospect", server_default=text("'prospect'"))

    edition = db.relationship("Edition", lazy="joined")

    @property
    def display_name(self) -> str:
        return self.legal_name or self.company_name

    def to_api(self) -> dict:
        # Public view: no billing details
        return {
            "id": self.id,
            "editionId": self.edition_id,
            "companyName": self.company_name,
            "packageName": self.package_name,
            "website": self.website,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<EditionSponsor id={self.id} company={self.company_name!r} status={self.status!r}>"
