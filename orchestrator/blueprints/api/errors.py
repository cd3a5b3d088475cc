import stripe
from flask import current_app, jsonify
from . import bp
from orchestrator.services.api_keys import AuthError
from orchestrator.services.orders import OrderValidationError


def api_error(message: str, status: int, **extra):
    """Public API error envelope: {"message": ...}."""
    return jsonify({"message": message, **extra}), status


@bp.errorhandler(AuthError)
def handle_auth_error(e):
    return api_error(str(e), e.status_code)


@bp.errorhandler(OrderValidationError)
def handle_order_validation(e):
    return api_error("Validation failed", 422, errors=e.errors)


@bp.errorhandler(stripe.StripeError)
def handle_stripe_error(e):
    current_app.logger.warning("stripe_error during API call: %s", type(e).__name__)
    return api_error("Payment provider unavailable, please retry", 502)
