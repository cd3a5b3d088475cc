from sqlalchemy import false, func, UniqueConstraint
from orchestrator.extensions import db
from orchestrator.utils.helpers import isoformat

class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    organization = db.relationship("Organization", lazy="joined")

    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="uq_events_org_slug"),
    )

    def lineage(self) -> dict:
        return {"organization_id": self.organization_id, "event_id": self.id, "edition_id": None}

    @classmethod
    def scope_conditions(cls, scope):
        if scope.edition_id is not None:
            return [false()]
        conds = []
        if scope.organization_id is not None:
            conds.append(cls.organization_id == scope.organization_id)
        if scope.event_id is not None:
            conds.append(cls.id == scope.event_id)
        return conds

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
        }


# draft → published → archived, set by organizers

class Edition(db.Model):
    __tablename__ = "editions"

    id = db.Column(db.Integer, primary_key=True)
    # denormalised from the parent event so scope filters stay join-free
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(120), nullable=False)
    year = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft", server_default=db.text("'draft'"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    event = db.relationship("Event", lazy="joined")

    __table_args__ = (
        UniqueConstraint("event_id", "slug", name="uq_editions_event_slug"),
    )

    def lineage(self) -> dict:
        return {"organization_id": self.organization_id, "event_id": self.event_id, "edition_id": self.id}

    @classmethod
    def scope_conditions(cls, scope):
        conds = []
        if scope.organization_id is not None:
            conds.append(cls.organization_id == scope.organization_id)
        if scope.event_id is not None:
            conds.append(cls.event_id == scope.event_id)
        if scope.edition_id is not None:
            conds.append(cls.id == scope.edition_id)
        return conds

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "eventId": self.event_id,
            "name": self.name,
            "slug": self.slug,
            "year": self.year,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
        }


class TicketType(db.Model):
    __tablename__ = "ticket_types"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    edition_id = db.Column(db.Integer, db.ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))  # minor units
    currency = db.Column(db.String(3), nullable=False, default="EUR", server_default=db.text("'EUR'"))
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))
    sales_end_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    edition = db.relationship("Edition", lazy="joined")

    def lineage(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "event_id": self.edition.event_id if self.edition is not None else None,
            "edition_id": self.edition_id,
        }

    @classmethod
    def scope_conditions(cls, scope):
        conds = []
        if scope.organization_id is not None:
            conds.append(cls.organization_id == scope.organization_id)
        if scope.event_id is not None:
            conds.append(cls.edition_id.in_(db.select(Edition.id).where(Edition.event_id == scope.event_id)))
        if scope.edition_id is not None:
            conds.append(cls.edition_id == scope.edition_id)
        return conds

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "editionId": self.edition_id,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "isActive": self.is_active,
            "salesEndAt": isoformat(self.sales_end_at),
        }
