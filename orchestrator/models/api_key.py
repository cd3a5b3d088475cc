import math
from sqlalchemy import func
from orchestrator.extensions import db
from orchestrator.models.mixins import JSONType
from orchestrator.utils.helpers import as_utc, utcnow

API_KEY_PREFIX = "oeo_"
API_KEY_LENGTH = 32  # random bytes before url-safe encoding
API_KEY_EXPIRY_DAYS = 365
DEFAULT_RATE_LIMIT = 60  # requests per minute

PERMISSIONS = (
    "read:organizations",
    "read:events",
    "read:editions",
    "read:ticket-types",
    "read:sponsors",
    "write:orders",
)

class ApiKey(db.Model):
    __tablename__ = "api_keys"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    key_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    key_prefix = db.Column(db.String(12), nullable=False, index=True)

    # Optional narrowing scope: Organization → Event → Edition
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    edition_id = db.Column(db.Integer, db.ForeignKey("editions.id", ondelete="CASCADE"), nullable=True, index=True)

    permissions = db.Column(JSONType, nullable=False, default=list)
    rate_limit = db.Column(db.Integer, nullable=False, default=DEFAULT_RATE_LIMIT, server_default=db.text(str(DEFAULT_RATE_LIMIT)))

    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))
    created_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > as_utc(self.expires_at)

    def is_valid(self, now=None) -> bool:
        return bool(self.is_active) and not self.is_expired(now)

    def days_until_expiry(self, now=None):
        if self.expires_at is None:
            return None
        delta = as_utc(self.expires_at) - (now or utcnow())
        return math.ceil(delta.total_seconds() / 86400)

    def is_expiring_soon(self, days: int = 30, now=None) -> bool:
        remaining = self.days_until_expiry(now)
        if remaining is None or self.is_expired(now):
            return False
        return remaining <= days

    def __repr__(self) -> str:
        return f"<ApiKey id={self.id} prefix={self.key_prefix!r} active={self.is_active}>"
