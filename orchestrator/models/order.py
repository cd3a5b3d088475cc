from orchestrator.extensions import db
from orchestrator.models.mixins import PaymentableMixin
from orchestrator.utils.helpers import isoformat

# pending_payment → paid → refunded; pending_payment → cancelled
class Order(PaymentableMixin, db.Model):
    __tablename__ = "orders"

    entity_kind = "order"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    edition_id = db.Column(db.Integer, db.ForeignKey("editions.id", ondelete="RESTRICT"), nullable=False, index=True)
    ticket_type_id = db.Column(db.Integer, db.ForeignKey("ticket_types.id", ondelete="SET NULL"), nullable=True)

    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1, server_default=db.text("1"))

    checkout_session_id = db.Column(db.String(255), nullable=True, index=True)

    edition = db.relationship("Edition", lazy="joined")
    ticket_type = db.relationship("TicketType")

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "editionId": self.edition_id,
            "ticketTypeId": self.ticket_type_id,
            "quantity": self.quantity,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "status": self.status,
            "totalAmount": self.amount,
            "currency": self.currency,
            "invoiceNumber": self.invoice_number,
            "paidAt": isoformat(self.paid_at),
        }

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"
