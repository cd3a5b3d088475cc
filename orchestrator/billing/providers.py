"""
Provider adapters: verify a raw webhook delivery and normalise it into a
PaymentEvent the processor understands.

Stripe deliveries are checked with the SDK's signature helper; HelloAsso
signs the raw body with HMAC-SHA256 (hex) in X-HelloAsso-Signature.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe
from flask import current_app

from orchestrator.billing.errors import (
    InvalidSignature,
    MalformedPayload,
    ProviderNotConfigured,
    UnknownProvider,
)
from orchestrator.models.mixins import PROVIDER_HELLOASSO, PROVIDER_STRIPE

KIND_SUCCEEDED = "succeeded"
KIND_FAILED = "failed"
KIND_REFUNDED = "refunded"
KIND_PARTIALLY_REFUNDED = "partially_refunded"
KIND_EXPIRED = "expired"
KIND_IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentEvent:
    event_id: str
    provider: str
    event_type: str
    kind: str
    reference: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None
    amount: Optional[int] = None


def _decode(raw_payload: bytes) -> dict:
    try:
        data = json.loads(raw_payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise MalformedPayload("payload is not valid JSON")
    if not isinstance(data, dict):
        raise MalformedPayload("payload is not a JSON object")
    return data


def _str_or_id(value) -> Optional[str]:
    # Stripe expands some references into objects
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _fully_refunded(charge: dict) -> bool:
    # charge.refunded also fires for partial refunds, with refunded=false
    if charge.get("refunded") is False:
        return False
    refunded, amount = charge.get("amount_refunded"), charge.get("amount")
    if isinstance(refunded, int) and isinstance(amount, int):
        return refunded >= amount
    return True


class StripeAdapter:
    name = PROVIDER_STRIPE
    signature_header = "Stripe-Signature"

    EVENT_KINDS = {
        "checkout.session.completed": KIND_SUCCEEDED,
        "payment_intent.succeeded": KIND_SUCCEEDED,
        "payment_intent.payment_failed": KIND_FAILED,
        "charge.refunded": KIND_REFUNDED,
        "checkout.session.expired": KIND_EXPIRED,
    }

    def _secret(self) -> str:
        secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
        if not secret:
            raise ProviderNotConfigured("Stripe webhook secret not configured")
        return secret

    def verify(self, raw_payload: bytes, signature_header: str) -> None:
        tolerance = int(current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300))
        try:
            stripe.WebhookSignature.verify_header(
                raw_payload.decode("utf-8"), signature_header or "", self._secret(), tolerance
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise InvalidSignature(str(e))

    def parse(self, raw_payload: bytes) -> PaymentEvent:
        data = _decode(raw_payload)
        ev_id = data.get("id")
        ev_type = data.get("type")
        if not ev_id or not ev_type:
            raise MalformedPayload("missing event id or type")

        obj = (data.get("data") or {}).get("object") or {}
        kind = self.EVENT_KINDS.get(ev_type, KIND_IGNORED)
        if kind == KIND_REFUNDED and not _fully_refunded(obj):
            kind = KIND_PARTIALLY_REFUNDED

        if ev_type.startswith("checkout.session."):
            reference = _str_or_id(obj.get("payment_intent"))
        elif ev_type == "charge.refunded":
            reference = _str_or_id(obj.get("payment_intent"))
        else:
            reference = _str_or_id(obj.get("id"))

        if ev_type == "charge.refunded":
            amount = obj.get("amount_refunded")
        else:
            amount = obj.get("amount_total") or obj.get("amount")

        created = data.get("created")
        return PaymentEvent(
            event_id=str(ev_id),
            provider=self.name,
            event_type=ev_type,
            kind=kind,
            reference=reference,
            metadata=dict(obj.get("metadata") or {}),
            occurred_at=datetime.fromtimestamp(created, tz=timezone.utc) if isinstance(created, (int, float)) else None,
            amount=amount,
        )


class HelloAssoAdapter:
    name = PROVIDER_HELLOASSO
    signature_header = "X-HelloAsso-Signature"

    PAYMENT_STATES = {
        "Authorized": KIND_SUCCEEDED,
        "Refused": KIND_FAILED,
        "Refunded": KIND_REFUNDED,
        "Refunding": KIND_REFUNDED,
    }

    def _secret(self) -> str:
        secret = current_app.config.get("HELLOASSO_WEBHOOK_SECRET")
        if not secret:
            raise ProviderNotConfigured("HelloAsso webhook secret not configured")
        return secret

    def verify(self, raw_payload: bytes, signature_header: str) -> None:
        expected = hmac.new(self._secret().encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()
        if not signature_header or not hmac.compare_digest(expected, signature_header.strip().lower()):
            raise InvalidSignature("HelloAsso signature mismatch")

    def parse(self, raw_payload: bytes) -> PaymentEvent:
        data = _decode(raw_payload)
        ev_type = data.get("eventType")
        body = data.get("data")
        if not ev_type or not isinstance(body, dict) or body.get("id") is None:
            raise MalformedPayload("missing eventType or data.id")

        state = body.get("state") or ""
        kind = self.PAYMENT_STATES.get(state, KIND_IGNORED) if ev_type == "Payment" else KIND_IGNORED

        # HelloAsso has no delivery id; a payment id reaches each state once
        event_id = f"helloasso:{ev_type}:{body['id']}:{state}"

        occurred_at = None
        if body.get("date"):
            try:
                occurred_at = datetime.fromisoformat(str(body["date"]).replace("Z", "+00:00"))
            except ValueError:
                occurred_at = None

        return PaymentEvent(
            event_id=event_id,
            provider=self.name,
            event_type=ev_type,
            kind=kind,
            reference=str(body["id"]),
            metadata=dict(body.get("metadata") or data.get("metadata") or {}),
            occurred_at=occurred_at,
            amount=body.get("amount"),
        )


_ADAPTERS = {
    PROVIDER_STRIPE: StripeAdapter(),
    PROVIDER_HELLOASSO: HelloAssoAdapter(),
}


def get_provider(name: str):
    try:
        return _ADAPTERS[(name or "").lower()]
    except KeyError:
        raise UnknownProvider(f"unknown payment provider {name!r}")
