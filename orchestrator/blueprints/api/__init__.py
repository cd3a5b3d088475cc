from flask import Blueprint
from orchestrator.extensions import limiter
from orchestrator.services.policy import rate_limit_value

bp = Blueprint("api", __name__)

# Per-key limit (ApiKey.rate_limit requests/minute), keyed on the key hash
limiter.limit(rate_limit_value)(bp)

from . import errors, routes  # noqa: E402,F401
