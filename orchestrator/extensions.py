from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail

db = SQLAlchemy()
migrate = Migrate()

# Key: hashed API key when one is presented; otherwise client IP
def _rate_limit_key():
    # Lazy import avoids circulars during app init
    from orchestrator.services.policy import rate_limit_identity
    return rate_limit_identity() or get_remote_address()

# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)

mail = Mail()
