from functools import wraps
from flask import current_app, g, request
from orchestrator.extensions import db
from orchestrator.services.api_keys import (
    AccessDenied,
    InvalidKey,
    ensure_in_scope,
    ensure_permission,
    hash_key,
    resolve,
)

def raw_key_from_request():
    """Authorization: Bearer <key>, else X-API-Key."""
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return (request.headers.get("X-API-Key") or "").strip() or None

def current_key():
    """Resolve the request's key once per request; raises InvalidKey."""
    if "api_key" not in g:
        g.api_key = resolve(raw_key_from_request())
    return g.api_key

def rate_limit_identity():
    # Limiter key; hashed so plaintext keys never reach the limiter storage
    raw = raw_key_from_request()
    return f"apikey:{hash_key(raw)[:32]}" if raw else None

def rate_limit_value() -> str:
    """Per-key limit string for Flask-Limiter; anonymous/invalid keys get the default."""
    default = int(current_app.config.get("API_KEY_DEFAULT_RATE_LIMIT", 60))
    raw = raw_key_from_request()
    if not raw:
        return f"{default}/minute"
    try:
        limit = resolve(raw, touch=False).rate_limit
    except InvalidKey:
        limit = default
    return f"{limit or default}/minute"

def require_api_key(permission=None):
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            resolved = current_key()
            if permission:
                ensure_permission(resolved, permission)
            return fn(*args, **kwargs)
        return _wrap
    return deco

def scoped_select(model, *where):
    """select(model) narrowed by the caller's scope (AND on every present axis)."""
    scope = current_key().scope
    return db.select(model).where(*model.scope_conditions(scope), *where)

def get_scoped_or_none(model, record_id):
    """
    Direct-ID fetch: None when the row does not exist,
    AccessDenied when it exists outside the key's scope.
    """
    record = db.session.get(model, record_id)
    if record is None:
        return None
    ensure_in_scope(current_key(), record)
    return record

__all__ = [
    "AccessDenied",
    "InvalidKey",
    "current_key",
    "get_scoped_or_none",
    "raw_key_from_request",
    "rate_limit_identity",
    "rate_limit_value",
    "require_api_key",
    "scoped_select",
]
