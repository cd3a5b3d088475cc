from flask import request, jsonify
from . import bp
from orchestrator.billing.errors import WebhookError
from orchestrator.billing.processor import handle_webhook
from orchestrator.billing.providers import get_provider
from orchestrator.models.mixins import PROVIDER_HELLOASSO, PROVIDER_STRIPE


def _process(provider: str):
    """
    2xx: processed, duplicate or business no-op (provider stops retrying)
    4xx: bad signature / malformed payload (do not retry)
    5xx: transient storage failure (retry) or missing secret
    """
    adapter = get_provider(provider)
    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get(adapter.signature_header, "")

    try:
        result = handle_webhook(raw_bytes, sig_header, provider)
    except WebhookError as e:
        return jsonify({"error": e.code, "message": str(e)}), e.status_code

    return jsonify(result.to_dict()), 200


@bp.post("/stripe")
def stripe_webhook():
    """Stripe -> /webhooks/stripe (Stripe-Signature header)."""
    return _process(PROVIDER_STRIPE)


@bp.post("/helloasso")
def helloasso_webhook():
    """HelloAsso -> /webhooks/helloasso (X-HelloAsso-Signature header)."""
    return _process(PROVIDER_HELLOASSO)
