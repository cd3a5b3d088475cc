from typing import Dict, Any
from urllib.parse import urljoin
from flask import current_app
from stripe import StripeClient
import hashlib, json


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def is_configured() -> bool:
    return bool(current_app.config.get("STRIPE_SECRET_KEY"))


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when fields change
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def build_order_session_params(order) -> Dict[str, Any]:
    ticket = order.ticket_type
    unit_amount = ticket.price if ticket is not None else order.amount // max(order.quantity, 1)
    edition_name = order.edition.name if order.edition is not None else "Event"
    # Webhook resolution falls back to these when the payment intent is unknown
    metadata = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "organization_id": str(order.organization_id),
        "edition_id": str(order.edition_id),
    }
    return {
        "mode": "payment",
        "line_items": [{
            "quantity": order.quantity,
            "price_data": {
                "currency": (order.currency or "EUR").lower(),
                "unit_amount": unit_amount,
                "product_data": {"name": f"{edition_name} - {ticket.name if ticket else 'Ticket'}"},
            },
        }],
        "customer_email": order.email,
        "client_reference_id": order.order_number,
        "success_url": _absolute_url(f"orders/{order.order_number}/success?session_id={{CHECKOUT_SESSION_ID}}"),
        "cancel_url": _absolute_url(f"orders/{order.order_number}/cancelled"),
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }


def create_order_checkout_session(order) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session paying for a pending order.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client()
    params = build_order_session_params(order)
    idem = make_idempotency_key("order", order.id, order.order_number, _params_hash(params))
    session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    return {"id": session.id, "url": getattr(session, "url", None)}
