import json
import secrets
import stripe
from flask import current_app
from orchestrator.extensions import db
from orchestrator.models import Order
from orchestrator.models.mixins import STATUS_PENDING_PAYMENT
from orchestrator.services import checkout, webhook_dispatch
from orchestrator.utils.helpers import as_utc, utcnow
from orchestrator.utils.validators import clean_str, is_valid_email

MAX_QUANTITY = 20


class OrderValidationError(ValueError):
    def __init__(self, errors: dict):
        super().__init__("invalid order")
        self.errors = errors


def new_order_number() -> str:
    return "ORD-" + secrets.token_hex(4).upper()


def validate_order_payload(data: dict, ticket_type, edition) -> dict:
    errors = {}
    email = clean_str(data.get("email"), 255)
    if not email or not is_valid_email(email):
        errors["email"] = "A valid email is required."

    qty = data.get("quantity", 1)
    if not isinstance(qty, int) or isinstance(qty, bool) or not 1 <= qty <= MAX_QUANTITY:
        errors["quantity"] = f"Quantity must be an integer between 1 and {MAX_QUANTITY}."

    if ticket_type is None or ticket_type.edition_id != edition.id:
        errors["ticketTypeId"] = "Unknown ticket type for this edition."
    elif not ticket_type.is_active:
        errors["ticketTypeId"] = "This ticket type is not on sale."
    elif ticket_type.sales_end_at is not None and as_utc(ticket_type.sales_end_at) < utcnow():
        errors["ticketTypeId"] = "Sales for this ticket type have ended."
    return errors


def create_order(edition, ticket_type, data: dict) -> dict:
    """
    Create a pending order and, for paid orders with Stripe configured, a
    Checkout Session. Free orders are marked paid at once, without an invoice.
    Returns {"order": Order, "checkoutUrl": str|None}.
    """
    errors = validate_order_payload(data, ticket_type, edition)
    if errors:
        raise OrderValidationError(errors)

    quantity = data.get("quantity", 1)
    email = clean_str(data.get("email"), 255).lower()
    order = Order(
        organization_id=edition.organization_id,
        edition_id=edition.id,
        ticket_type_id=ticket_type.id,
        order_number=new_order_number(),
        email=email,
        first_name=clean_str(data.get("firstName"), 120),
        last_name=clean_str(data.get("lastName"), 120),
        quantity=quantity,
        amount=(ticket_type.price or 0) * quantity,
        currency=ticket_type.currency,
        billing_email=email,
        billing_address=data.get("billingAddress") if isinstance(data.get("billingAddress"), dict) else {},
        status=STATUS_PENDING_PAYMENT,
    )
    db.session.add(order)
    db.session.flush()

    checkout_url = None
    if order.amount <= 0:
        order.mark_paid()
    elif checkout.is_configured():
        try:
            session = checkout.create_order_checkout_session(order)
        except stripe.StripeError:
            db.session.rollback()
            current_app.logger.exception("stripe_checkout_create_failed")
            raise
        order.checkout_session_id = session["id"]
        checkout_url = session["url"]
    db.session.commit()

    current_app.logger.info(json.dumps({
        "event": "order_created",
        "order_id": order.id,
        "order_number": order.order_number,
        "edition_id": edition.id,
        "amount": order.amount,
        "status": order.status,
    }))

    notifications = [("order.created", order.to_api(), order.lineage())]
    if order.is_paid:
        notifications.append(("order.completed", order.to_api(), order.lineage()))
    webhook_dispatch.notify(notifications)
    return {"order": order, "checkoutUrl": checkout_url}
