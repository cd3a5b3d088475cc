import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import hashlib
import hmac
import json
import time
from datetime import date
from types import SimpleNamespace

import pytest
from orchestrator import create_app
from orchestrator.billing import documents
from orchestrator.extensions import db, limiter
from orchestrator.models import Organization, Event, Edition, TicketType, Order, EditionSponsor
from orchestrator.services import api_keys

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
HELLOASSO_WEBHOOK_SECRET = "helloasso_test_secret"
FAKE_PDF = b"%PDF-1.4\n% test document\n"

TEST_CONFIG = {
    "TESTING": True,
    "MAIL_SUPPRESS_SEND": True,
    "MAIL_DEFAULT_SENDER": "billing@example.test",
    "APP_BASE_URL": "http://example.test",
    "STRIPE_SECRET_KEY": None,
    "STRIPE_WEBHOOK_SECRET": STRIPE_WEBHOOK_SECRET,
    "HELLOASSO_WEBHOOK_SECRET": HELLOASSO_WEBHOOK_SECRET,
    "DOCUMENTS_RENDER_ASYNC": False,
    "WEBHOOKS_DISPATCH_ASYNC": False,
    "SELLER_NAME": "Test Events SAS",
    "VAT_RATE": 20,
}

@pytest.fixture(scope="session")
def app(tmp_path_factory):
    app = create_app({
        **TEST_CONFIG,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "DOCUMENTS_DIR": str(tmp_path_factory.mktemp("documents")),
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
        limiter.reset()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture(autouse=True)
def _fake_pdf(monkeypatch):
    # WeasyPrint needs native libs; tests only care that bytes get stored
    rendered = []
    def _render(html):
        rendered.append(html)
        return FAKE_PDF
    monkeypatch.setattr(documents, "render_pdf", _render)
    return rendered

@pytest.fixture()
def rendered_pdfs(_fake_pdf):
    return _fake_pdf

# ---------- data helpers ----------

@pytest.fixture()
def tenancy(app):
    """Org A with two events (E1, E2) and one published edition each, plus Org B."""
    with app.app_context():
        org_a = Organization(name="Org A", slug="org-a")
        org_b = Organization(name="Org B", slug="org-b")
        db.session.add_all([org_a, org_b])
        db.session.flush()

        e1 = Event(organization_id=org_a.id, name="DevFest", slug="devfest")
        e2 = Event(organization_id=org_a.id, name="Summit", slug="summit")
        e3 = Event(organization_id=org_b.id, name="Other", slug="other")
        db.session.add_all([e1, e2, e3])
        db.session.flush()

        ed1 = Edition(organization_id=org_a.id, event_id=e1.id, name="DevFest 2025", slug="2025",
                      year=2025, start_date=date(2025, 10, 1), status="published")
        ed2 = Edition(organization_id=org_a.id, event_id=e2.id, name="Summit 2025", slug="2025",
                      year=2025, status="published")
        ed3 = Edition(organization_id=org_b.id, event_id=e3.id, name="Other 2025", slug="2025",
                      year=2025, status="published")
        db.session.add_all([ed1, ed2, ed3])
        db.session.flush()

        tt1 = TicketType(organization_id=org_a.id, edition_id=ed1.id, name="Standard", price=5000, currency="EUR")
        tt_free = TicketType(organization_id=org_a.id, edition_id=ed1.id, name="Community", price=0, currency="EUR")
        tt2 = TicketType(organization_id=org_a.id, edition_id=ed2.id, name="Standard", price=9000, currency="EUR")
        db.session.add_all([tt1, tt_free, tt2])
        db.session.commit()

        return SimpleNamespace(
            org_a=org_a.id, org_b=org_b.id,
            event_1=e1.id, event_2=e2.id, event_3=e3.id,
            edition_1=ed1.id, edition_2=ed2.id, edition_3=ed3.id,
            ticket_1=tt1.id, ticket_free=tt_free.id, ticket_2=tt2.id,
        )

@pytest.fixture()
def make_order(app, tenancy):
    counter = {"n": 0}
    def _make(**kw):
        counter["n"] += 1
        with app.app_context():
            order = Order(
                organization_id=kw.pop("organization_id", tenancy.org_a),
                edition_id=kw.pop("edition_id", tenancy.edition_1),
                ticket_type_id=kw.pop("ticket_type_id", tenancy.ticket_1),
                order_number=kw.pop("order_number", f"ORD-TEST{counter['n']:04d}"),
                email=kw.pop("email", f"buyer{counter['n']}@example.test"),
                first_name="Ada",
                last_name="Lovelace",
                quantity=1,
                amount=kw.pop("amount", 5000),
                currency="EUR",
                billing_email=kw.pop("billing_email", f"buyer{counter['n']}@example.test"),
                status=kw.pop("status", "pending_payment"),
                payment_reference=kw.pop("payment_reference", f"pi_test_{counter['n']}"),
                **kw,
            )
            db.session.add(order)
            db.session.commit()
            return order.id
    return _make

@pytest.fixture()
def make_sponsor(app, tenancy):
    def _make(**kw):
        with app.app_context():
            sponsor = EditionSponsor(
                organization_id=kw.pop("organization_id", tenancy.org_a),
                edition_id=kw.pop("edition_id", tenancy.edition_1),
                company_name=kw.pop("company_name", "Acme Corp"),
                package_name=kw.pop("package_name", "Gold"),
                amount=kw.pop("amount", 300000),
                billing_email=kw.pop("billing_email", "finance@acme.test"),
                status=kw.pop("status", "pending_payment"),
                **kw,
            )
            db.session.add(sponsor)
            db.session.commit()
            return sponsor.id
    return _make

@pytest.fixture()
def make_key(app):
    """Create an API key; returns the plaintext."""
    def _make(permissions=("read:editions",), **kw):
        with app.app_context():
            _, plaintext = api_keys.generate(name=kw.pop("name", "test key"), permissions=permissions, **kw)
            return plaintext
    return _make

# ---------- webhook signing ----------

def _stripe_header(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"

@pytest.fixture()
def post_stripe(client):
    """POST a correctly signed Stripe event; returns the response."""
    def _post(event: dict, *, secret=STRIPE_WEBHOOK_SECRET, timestamp=None, signature=None):
        body = json.dumps(event).encode("utf-8")
        header = signature if signature is not None else _stripe_header(body, secret, timestamp)
        return client.post("/webhooks/stripe", data=body, headers={
            "Stripe-Signature": header,
            "Content-Type": "application/json",
        })
    return _post

@pytest.fixture()
def post_helloasso(client):
    def _post(payload, *, secret=HELLOASSO_WEBHOOK_SECRET, signature=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        sig = signature if signature is not None else hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return client.post("/webhooks/helloasso", data=body, headers={
            "X-HelloAsso-Signature": sig,
            "Content-Type": "application/json",
        })
    return _post

@pytest.fixture()
def app_config():
    return dict(TEST_CONFIG)

@pytest.fixture()
def stripe_signature():
    return _stripe_header

def stripe_event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "created": int(time.time()), "data": {"object": obj}}

@pytest.fixture()
def make_stripe_event():
    return stripe_event
