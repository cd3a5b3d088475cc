"""
Public API keys: generation, resolution and scope checks.

Only the sha256 of a key is stored. A resolved key carries an immutable
permission set and an ApiKeyScope; every data access made on its behalf
must AND its filters with the scope (see ApiKeyScope.allows and the models'
scope_conditions()).
"""
import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import FrozenSet, Iterable, Optional

from flask import current_app

from orchestrator.extensions import db
from orchestrator.models import ApiKey
from orchestrator.models.api_key import API_KEY_LENGTH, API_KEY_PREFIX, PERMISSIONS
from orchestrator.utils.helpers import utcnow

KEY_PREFIX_DISPLAY_LENGTH = 12
SCOPE_FIELDS = ("organization_id", "event_id", "edition_id")


class AuthError(Exception):
    status_code = 401


class InvalidKey(AuthError):
    """Missing, malformed, unknown, revoked or expired key."""
    status_code = 401


class AccessDenied(AuthError):
    """Key is valid but lacks the permission or the record is out of scope."""
    status_code = 403


@dataclass(frozen=True)
class ApiKeyScope:
    organization_id: Optional[int] = None
    event_id: Optional[int] = None
    edition_id: Optional[int] = None

    @property
    def is_unrestricted(self) -> bool:
        return all(getattr(self, f) is None for f in SCOPE_FIELDS)

    def allows(self, lineage: dict) -> bool:
        """
        lineage: {"organization_id", "event_id", "edition_id"} of a record.
        Every scope value present must equal the record's value on that axis;
        a record with no value on a scoped axis (above the scoped level) fails.
        """
        for f in SCOPE_FIELDS:
            wanted = getattr(self, f)
            if wanted is not None and lineage.get(f) != wanted:
                return False
        return True


@dataclass(frozen=True)
class ResolvedKey:
    api_key_id: int
    key_prefix: str
    permissions: FrozenSet[str]
    scope: ApiKeyScope
    rate_limit: int


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_plaintext() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(API_KEY_LENGTH)


def generate(
    *,
    name: str,
    permissions: Iterable[str],
    organization_id: Optional[int] = None,
    event_id: Optional[int] = None,
    edition_id: Optional[int] = None,
    rate_limit: Optional[int] = None,
    expires_in_days: Optional[int] = None,
    created_by: Optional[str] = None,
):
    """Create a key. Returns (ApiKey, plaintext); the plaintext is never stored."""
    perms = list(dict.fromkeys(permissions))
    unknown = [p for p in perms if p not in PERMISSIONS]
    if unknown:
        raise ValueError(f"unknown permission(s): {', '.join(unknown)}")
    if not (name or "").strip():
        raise ValueError("name is required")

    cfg = current_app.config
    if expires_in_days is None:
        expires_in_days = cfg.get("API_KEY_EXPIRY_DAYS", 365)
    plaintext = generate_plaintext()
    key = ApiKey(
        name=name.strip(),
        key_hash=hash_key(plaintext),
        key_prefix=plaintext[:KEY_PREFIX_DISPLAY_LENGTH],
        organization_id=organization_id,
        event_id=event_id,
        edition_id=edition_id,
        permissions=perms,
        rate_limit=rate_limit or cfg.get("API_KEY_DEFAULT_RATE_LIMIT", 60),
        expires_at=(utcnow() + timedelta(days=expires_in_days)) if expires_in_days else None,
        is_active=True,
        created_by=created_by,
    )
    db.session.add(key)
    db.session.commit()
    return key, plaintext


def resolve(raw_key: Optional[str], *, touch: bool = True) -> ResolvedKey:
    if not raw_key or not raw_key.startswith(API_KEY_PREFIX):
        raise InvalidKey("missing or malformed API key")

    key = db.session.execute(
        db.select(ApiKey).where(ApiKey.key_hash == hash_key(raw_key))
    ).scalar_one_or_none()
    if key is None:
        raise InvalidKey("unknown API key")
    if not key.is_active:
        raise InvalidKey("API key has been revoked")
    if key.is_expired():
        raise InvalidKey("API key has expired")

    if touch:
        key.last_used_at = utcnow()
        db.session.commit()

    return ResolvedKey(
        api_key_id=key.id,
        key_prefix=key.key_prefix,
        permissions=frozenset(key.permissions or ()),
        scope=ApiKeyScope(key.organization_id, key.event_id, key.edition_id),
        rate_limit=key.rate_limit,
    )


def has_permission(resolved: ResolvedKey, permission: str) -> bool:
    return permission in resolved.permissions


def has_any_permission(resolved: ResolvedKey, permissions: Iterable[str]) -> bool:
    return any(p in resolved.permissions for p in permissions)


def has_all_permissions(resolved: ResolvedKey, permissions: Iterable[str]) -> bool:
    return all(p in resolved.permissions for p in permissions)


def ensure_permission(resolved: ResolvedKey, permission: str) -> None:
    if not has_permission(resolved, permission):
        raise AccessDenied(f"API key lacks permission {permission}")


def ensure_in_scope(resolved: ResolvedKey, record) -> None:
    """Direct-ID fetches bypass query filters; verify the loaded record."""
    if not resolved.scope.allows(record.lineage()):
        raise AccessDenied("resource is outside this API key's scope")


def _get(key_id: int) -> ApiKey:
    key = db.session.get(ApiKey, key_id)
    if key is None:
        raise LookupError(f"API key {key_id} not found")
    return key


def revoke(key_id: int) -> ApiKey:
    key = _get(key_id)
    key.is_active = False
    db.session.commit()
    return key


def reactivate(key_id: int) -> ApiKey:
    key = _get(key_id)
    key.is_active = True
    db.session.commit()
    return key


def delete(key_id: int) -> None:
    db.session.delete(_get(key_id))
    db.session.commit()


def list_keys(*, organization_id=None, event_id=None, edition_id=None):
    q = db.select(ApiKey).order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
    if organization_id is not None:
        q = q.where(ApiKey.organization_id == organization_id)
    if event_id is not None:
        q = q.where(ApiKey.event_id == event_id)
    if edition_id is not None:
        q = q.where(ApiKey.edition_id == edition_id)
    return db.session.execute(q).scalars().all()
