from orchestrator.extensions import db
from orchestrator.models import Order, Edition, TicketType
from orchestrator.services import checkout

ALL_READ = (
    "read:organizations",
    "read:events",
    "read:editions",
    "read:ticket-types",
    "read:sponsors",
)


def _auth(key):
    return {"Authorization": f"Bearer {key}"}


def test_index_is_public(client):
    resp = client.get("/api/v1")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["version"] == "v1"


def test_missing_key_is_401(client, tenancy):
    resp = client.get("/api/v1/editions")
    assert resp.status_code == 401
    assert "message" in resp.get_json()


def test_invalid_key_is_401(client, tenancy):
    resp = client.get("/api/v1/editions", headers=_auth("oeo_not-a-real-key"))
    assert resp.status_code == 401


def test_x_api_key_header_is_accepted(client, tenancy, make_key):
    key = make_key(permissions=("read:editions",))
    resp = client.get("/api/v1/editions", headers={"X-API-Key": key})
    assert resp.status_code == 200


def test_missing_permission_is_403(client, tenancy, make_key):
    key = make_key(permissions=("read:events",))
    resp = client.get("/api/v1/editions", headers=_auth(key))
    assert resp.status_code == 403
    assert resp.get_json()["message"]


def test_list_envelope_and_pagination_meta(client, tenancy, make_key):
    key = make_key(permissions=("read:editions",))
    resp = client.get("/api/v1/editions?page=1&per_page=2", headers=_auth(key))
    assert resp.status_code == 200
    body = resp.get_json()
    assert len(body["data"]) == 2
    assert body["meta"] == {"page": 1, "perPage": 2, "total": 3, "totalPages": 2}

    resp = client.get("/api/v1/editions?page=2&per_page=2", headers=_auth(key))
    assert len(resp.get_json()["data"]) == 1


def test_per_page_is_capped_and_defaults(client, tenancy, make_key):
    key = make_key(permissions=("read:editions",))
    body = client.get("/api/v1/editions?per_page=500", headers=_auth(key)).get_json()
    assert body["meta"]["perPage"] == 100
    body = client.get("/api/v1/editions", headers=_auth(key)).get_json()
    assert body["meta"]["perPage"] == 20
    body = client.get("/api/v1/editions?page=abc", headers=_auth(key)).get_json()
    assert body["meta"]["page"] == 1


def test_org_scoped_key_only_lists_its_organization(client, tenancy, make_key):
    key = make_key(permissions=ALL_READ, organization_id=tenancy.org_a)
    editions = client.get("/api/v1/editions", headers=_auth(key)).get_json()["data"]
    assert {e["id"] for e in editions} == {tenancy.edition_1, tenancy.edition_2}

    orgs = client.get("/api/v1/organizations", headers=_auth(key)).get_json()["data"]
    assert [o["id"] for o in orgs] == [tenancy.org_a]


def test_event_scoped_key_cannot_fetch_edition_of_another_event(client, tenancy, make_key):
    key = make_key(permissions=ALL_READ, event_id=tenancy.event_1)

    ok = client.get(f"/api/v1/editions/{tenancy.edition_1}", headers=_auth(key))
    assert ok.status_code == 200
    assert ok.get_json()["data"]["eventId"] == tenancy.event_1

    denied = client.get(f"/api/v1/editions/{tenancy.edition_2}", headers=_auth(key))
    assert denied.status_code == 403
    assert "message" in denied.get_json()


def test_event_scoped_key_sees_no_organizations(client, tenancy, make_key):
    key = make_key(permissions=ALL_READ, event_id=tenancy.event_1)
    body = client.get("/api/v1/organizations", headers=_auth(key)).get_json()
    assert body["data"] == []
    assert body["meta"]["total"] == 0
    resp = client.get(f"/api/v1/organizations/{tenancy.org_a}", headers=_auth(key))
    assert resp.status_code == 403


def test_edition_scoped_key_lists_one_edition(client, tenancy, make_key):
    key = make_key(permissions=ALL_READ, edition_id=tenancy.edition_2)
    body = client.get("/api/v1/editions", headers=_auth(key)).get_json()
    assert [e["id"] for e in body["data"]] == [tenancy.edition_2]
    events = client.get("/api/v1/events", headers=_auth(key)).get_json()
    assert events["data"] == []


def test_unknown_id_is_404_envelope(client, tenancy, make_key):
    key = make_key(permissions=ALL_READ)
    resp = client.get("/api/v1/editions/999999", headers=_auth(key))
    assert resp.status_code == 404
    assert resp.get_json() == {"message": "Edition not found"}


def test_unknown_api_path_is_404_envelope(client):
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.get_json() == {"message": "Not found"}


def test_ticket_types_for_edition(client, tenancy, make_key):
    key = make_key(permissions=("read:ticket-types",))
    body = client.get(f"/api/v1/editions/{tenancy.edition_1}/ticket-types", headers=_auth(key)).get_json()
    assert [t["name"] for t in body["data"]] == ["Community", "Standard"]


def test_sponsors_list_hides_pipeline_and_billing(client, tenancy, make_key, make_sponsor):
    make_sponsor(company_name="Paid Co", status="paid")
    make_sponsor(company_name="Prospect Co", status="prospect")
    key = make_key(permissions=("read:sponsors",))
    body = client.get(f"/api/v1/editions/{tenancy.edition_1}/sponsors", headers=_auth(key)).get_json()
    assert [s["companyName"] for s in body["data"]] == ["Paid Co"]
    assert "billingEmail" not in body["data"][0]


def test_rate_limit_per_key(client, tenancy, make_key):
    key = make_key(permissions=("read:editions",), rate_limit=2)
    other = make_key(permissions=("read:editions",))
    assert client.get("/api/v1/editions", headers=_auth(key)).status_code == 200
    assert client.get("/api/v1/editions", headers=_auth(key)).status_code == 200
    limited = client.get("/api/v1/editions", headers=_auth(key))
    assert limited.status_code == 429
    assert "message" in limited.get_json()
    assert "Retry-After" in limited.headers
    # limits are per key
    assert client.get("/api/v1/editions", headers=_auth(other)).status_code == 200


def test_create_free_order_is_paid_immediately(app, client, tenancy, make_key):
    key = make_key(permissions=("write:orders",))
    resp = client.post(
        f"/api/v1/editions/{tenancy.edition_1}/orders",
        json={"ticketTypeId": tenancy.ticket_free, "email": "Guest@Example.test", "firstName": "Grace"},
        headers=_auth(key),
    )
    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["status"] == "paid"
    assert data["orderNumber"].startswith("ORD-")
    assert data["invoiceNumber"] is None
    assert data["checkoutUrl"] is None

    with app.app_context():
        order = db.session.get(Order, data["id"])
        assert order.email == "guest@example.test"
        assert order.amount == 0


def test_create_paid_order_opens_checkout(app, client, tenancy, make_key, monkeypatch):
    key = make_key(permissions=("write:orders",))
    calls = []
    def _fake_session(order):
        calls.append(checkout.build_order_session_params(order))
        return {"id": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}
    monkeypatch.setattr(checkout, "create_order_checkout_session", _fake_session)
    app.config["STRIPE_SECRET_KEY"] = "sk_test_x"
    try:
        resp = client.post(
            f"/api/v1/editions/{tenancy.edition_1}/orders",
            json={"ticketTypeId": tenancy.ticket_1, "email": "buyer@example.test", "quantity": 2},
            headers=_auth(key),
        )
    finally:
        app.config["STRIPE_SECRET_KEY"] = None

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["status"] == "pending_payment"
    assert data["totalAmount"] == 10000
    assert data["checkoutUrl"] == "https://checkout.stripe.test/cs_test_123"

    params = calls[0]
    assert params["metadata"]["order_id"] == str(data["id"])
    assert params["payment_intent_data"]["metadata"]["order_id"] == str(data["id"])
    assert params["line_items"][0]["quantity"] == 2

    with app.app_context():
        assert db.session.get(Order, data["id"]).checkout_session_id == "cs_test_123"


def test_create_order_validation_is_422(client, tenancy, make_key):
    key = make_key(permissions=("write:orders",))
    resp = client.post(
        f"/api/v1/editions/{tenancy.edition_1}/orders",
        json={"ticketTypeId": tenancy.ticket_2, "email": "nope", "quantity": 0},
        headers=_auth(key),
    )
    assert resp.status_code == 422
    errors = resp.get_json()["errors"]
    assert set(errors) == {"email", "quantity", "ticketTypeId"}


def test_create_order_on_unpublished_edition_is_422(app, client, tenancy, make_key):
    with app.app_context():
        db.session.get(Edition, tenancy.edition_1).status = "draft"
        db.session.commit()
    key = make_key(permissions=("write:orders",))
    resp = client.post(
        f"/api/v1/editions/{tenancy.edition_1}/orders",
        json={"ticketTypeId": tenancy.ticket_1, "email": "a@b.test"},
        headers=_auth(key),
    )
    assert resp.status_code == 422


def test_create_order_respects_scope(client, tenancy, make_key):
    key = make_key(permissions=("write:orders",), event_id=tenancy.event_2)
    resp = client.post(
        f"/api/v1/editions/{tenancy.edition_1}/orders",
        json={"ticketTypeId": tenancy.ticket_1, "email": "a@b.test"},
        headers=_auth(key),
    )
    assert resp.status_code == 403


def test_inactive_ticket_type_is_rejected(app, client, tenancy, make_key):
    with app.app_context():
        db.session.get(TicketType, tenancy.ticket_1).is_active = False
        db.session.commit()
    key = make_key(permissions=("write:orders",))
    resp = client.post(
        f"/api/v1/editions/{tenancy.edition_1}/orders",
        json={"ticketTypeId": tenancy.ticket_1, "email": "a@b.test"},
        headers=_auth(key),
    )
    assert resp.status_code == 422
    assert "ticketTypeId" in resp.get_json()["errors"]
