from sqlalchemy import false, func
from orchestrator.extensions import db

class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def lineage(self) -> dict:
        return {"organization_id": self.id, "event_id": None, "edition_id": None}

    @classmethod
    def scope_conditions(cls, scope):
        # An organization sits above event/edition scopes: those keys never see it
        if scope.event_id is not None or scope.edition_id is not None:
            return [false()]
        if scope.organization_id is not None:
            return [cls.id == scope.organization_id]
        return []

    def to_api(self) -> dict:
        return {"id": self.id, "name": self.name, "slug": self.slug, "isActive": self.is_active}

    def __repr__(self) -> str:
        return f"<Organization id={self.id} slug={self.slug!r}>"
