from flask import Blueprint
from orchestrator.extensions import limiter

bp = Blueprint("webhooks", __name__)

# Providers retry on 429; never throttle signed deliveries
limiter.exempt(bp)

from . import routes  # noqa: E402,F401
