import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

def clean_str(val, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after
    cleaning or if val is not a string.
    """
    if not isinstance(val, str):
        return None
    s = re.sub(r"\s+", " ", val).strip()
    if not s:
        return None
    return s[:max_len]

def is_valid_email(val: str | None) -> bool:
    if not val:
        return True
    return bool(_EMAIL_RE.match(val))

def slugify(val: str | None, max_len: int = 120) -> str | None:
    """'Tech Days 2025!' -> 'tech-days-2025'"""
    s = clean_str(val, max_len=max_len * 2)
    if not s:
        return None
    s = re.sub(r"[^a-z0-9]+", "-", s.lower()).strip("-")
    return s[:max_len].rstrip("-") or None

def is_valid_slug(val: str | None) -> bool:
    return bool(val) and bool(_SLUG_RE.match(val))

def is_valid_currency(val: str | None) -> bool:
    return bool(val) and bool(_CURRENCY_RE.match(val))
