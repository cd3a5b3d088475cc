import os
from sqlalchemy.exc import OperationalError
from orchestrator.billing import processor
from orchestrator.extensions import db, mail
from orchestrator.models import Order, EditionSponsor, ProcessedPaymentEvent, EmailLog
from orchestrator.utils.helpers import utcnow

YEAR = utcnow().year


def _pi_succeeded(event_id, reference, metadata=None):
    return {
        "id": event_id,
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": reference, "object": "payment_intent", "amount": 5000, "metadata": metadata or {}}},
    }


def test_payment_succeeded_marks_paid_and_issues_first_invoice(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_A")

    with mail.record_messages() as outbox:
        resp = post_stripe(_pi_succeeded("evt_1", "pi_A"))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["outcome"] == "paid"
    assert body["documents"] == [f"F-{YEAR}-000001"]

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "paid"
        assert order.payment_provider == "stripe"
        assert order.paid_at is not None
        assert order.invoice_number == f"F-{YEAR}-000001"
        assert order.invoice_pdf == f"{order.organization_id}/F-{YEAR}-000001.pdf"
        assert os.path.exists(os.path.join(app.config["DOCUMENTS_DIR"], order.invoice_pdf))

        entry = ProcessedPaymentEvent.query.filter_by(event_id="evt_1").one()
        assert entry.outcome == "paid"
        assert entry.provider == "stripe"

        log = EmailLog.query.one()
        assert log.status == "sent"
        assert log.document_number == f"F-{YEAR}-000001"

    assert len(rendered_pdfs) == 1
    assert len(outbox) == 1
    assert outbox[0].recipients == ["buyer1@example.test"]
    assert outbox[0].attachments[0].filename == f"F-{YEAR}-000001.pdf"


def test_redelivery_is_acknowledged_without_second_effect(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_A")
    event = _pi_succeeded("evt_dup", "pi_A")

    first = post_stripe(event)
    second = post_stripe(event)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.get_json()["duplicate"] is True
    assert len(rendered_pdfs) == 1

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "paid"
        assert order.invoice_number == f"F-{YEAR}-000001"
        assert ProcessedPaymentEvent.query.count() == 1


def test_three_orders_get_consecutive_invoice_numbers(app, post_stripe, make_order):
    ids = [make_order(payment_reference=f"pi_{i}") for i in range(3)]
    for i in range(3):
        assert post_stripe(_pi_succeeded(f"evt_{i}", f"pi_{i}")).status_code == 200

    with app.app_context():
        numbers = sorted(db.session.get(Order, oid).invoice_number for oid in ids)
    assert numbers == [f"F-{YEAR}-00000{n}" for n in (1, 2, 3)]


def test_checkout_completed_resolves_order_by_metadata(app, post_stripe, make_order):
    order_id = make_order(payment_reference=None)
    event = {
        "id": "evt_cs",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "payment_intent": "pi_from_checkout",
            "metadata": {"order_id": str(order_id)},
        }},
    }
    resp = post_stripe(event)
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "paid"

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "paid"
        assert order.payment_reference == "pi_from_checkout"


def test_sponsor_payment_is_invoiced_like_an_order(app, post_stripe, make_sponsor, make_order):
    make_order(payment_reference="pi_order")
    post_stripe(_pi_succeeded("evt_o", "pi_order"))
    sponsor_id = make_sponsor()

    resp = post_stripe(_pi_succeeded("evt_s", "pi_sponsor", metadata={"edition_sponsor_id": str(sponsor_id)}))
    assert resp.status_code == 200

    with app.app_context():
        sponsor = db.session.get(EditionSponsor, sponsor_id)
        assert sponsor.status == "paid"
        # same organization, same sequence
        assert sponsor.invoice_number == f"F-{YEAR}-000002"


def test_free_order_is_paid_without_invoice(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_free", amount=0)
    resp = post_stripe(_pi_succeeded("evt_free", "pi_free"))
    assert resp.get_json()["outcome"] == "paid"
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "paid"
        assert order.invoice_number is None
    assert rendered_pdfs == []


def test_already_paid_gets_no_second_invoice(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_A")
    post_stripe(_pi_succeeded("evt_1", "pi_A"))

    cs_event = {
        "id": "evt_2",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "payment_intent": "pi_A", "metadata": {}}},
    }
    resp = post_stripe(cs_event)
    assert resp.get_json()["outcome"] == "already_paid"

    with app.app_context():
        assert db.session.get(Order, order_id).invoice_number == f"F-{YEAR}-000001"
        assert db.session.query(db.func.count()).select_from(Order).scalar() == 1


def test_refund_of_paid_order_issues_credit_note(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_A")
    post_stripe(_pi_succeeded("evt_pay", "pi_A"))

    refund = {
        "id": "evt_refund",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": "pi_A",
                            "amount": 5000, "amount_refunded": 5000, "refunded": True}},
    }
    resp = post_stripe(refund)
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "refunded"

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "refunded"
        assert order.refunded_at is not None
        assert order.credit_note_number == f"AV-{YEAR}-000001"
        assert order.credit_note_pdf.endswith(f"AV-{YEAR}-000001.pdf")
    assert len(rendered_pdfs) == 2
    assert "Cancels invoice" in rendered_pdfs[1]


def test_partial_refund_keeps_order_paid(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_P")
    post_stripe(_pi_succeeded("evt_pay_p", "pi_P"))

    partial = {
        "id": "evt_partial",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_p", "object": "charge", "payment_intent": "pi_P",
                            "amount": 5000, "amount_refunded": 1000, "refunded": False}},
    }
    resp = post_stripe(partial)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["outcome"] == "partially_refunded"
    assert "documents" not in body

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "paid"
        assert order.refunded_at is None
        assert order.credit_note_number is None
        assert ProcessedPaymentEvent.query.filter_by(event_id="evt_partial").one().outcome == "partially_refunded"
    assert len(rendered_pdfs) == 1

    # the rest of the charge is refunded later
    full = {
        "id": "evt_full",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_p", "object": "charge", "payment_intent": "pi_P",
                            "amount": 5000, "amount_refunded": 5000, "refunded": True}},
    }
    assert post_stripe(full).get_json()["outcome"] == "refunded"
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "refunded"
        assert order.credit_note_number == f"AV-{YEAR}-000001"


def test_refund_amounts_decide_partial_when_flag_is_absent(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_Q")
    post_stripe(_pi_succeeded("evt_pay_q", "pi_Q"))

    partial = {
        "id": "evt_partial_q",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_q", "payment_intent": "pi_Q", "amount": 5000, "amount_refunded": 4999}},
    }
    assert post_stripe(partial).get_json()["outcome"] == "partially_refunded"
    with app.app_context():
        assert db.session.get(Order, order_id).status == "paid"


def test_refund_of_cancelled_order_is_a_noop(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_C", status="cancelled")
    refund = {
        "id": "evt_refund_c",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_2", "payment_intent": "pi_C"}},
    }
    resp = post_stripe(refund)
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "already_terminal"

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "cancelled"
        assert order.credit_note_number is None
        assert ProcessedPaymentEvent.query.filter_by(event_id="evt_refund_c").one().outcome == "already_terminal"


def test_late_success_on_cancelled_order_changes_nothing(app, post_stripe, make_order, rendered_pdfs):
    order_id = make_order(payment_reference="pi_L", status="cancelled")
    resp = post_stripe(_pi_succeeded("evt_late", "pi_L"))
    assert resp.status_code == 200
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "cancelled"
        assert order.invoice_number is None
    assert rendered_pdfs == []


def test_failed_payment_keeps_status(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_F")
    event = {
        "id": "evt_fail",
        "type": "payment_intent.payment_failed",
        "data": {"object": {"id": "pi_F", "object": "payment_intent"}},
    }
    resp = post_stripe(event)
    assert resp.get_json()["outcome"] == "payment_failed"
    with app.app_context():
        assert db.session.get(Order, order_id).status == "pending_payment"


def test_expired_checkout_cancels_pending_order(app, post_stripe, make_order):
    order_id = make_order(payment_reference=None)
    event = {
        "id": "evt_exp",
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_exp", "payment_intent": None, "metadata": {"order_id": str(order_id)}}},
    }
    resp = post_stripe(event)
    assert resp.get_json()["outcome"] == "cancelled"
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "cancelled"
        assert order.cancelled_at is not None


def test_expired_checkout_after_payment_is_stale(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_S")
    post_stripe(_pi_succeeded("evt_paid", "pi_S"))
    event = {
        "id": "evt_exp_late",
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_x", "payment_intent": "pi_S", "metadata": {}}},
    }
    assert post_stripe(event).get_json()["outcome"] == "stale"
    with app.app_context():
        assert db.session.get(Order, order_id).status == "paid"


def test_unknown_entity_is_acknowledged(app, post_stripe):
    resp = post_stripe(_pi_succeeded("evt_orphan", "pi_nobody"))
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "entity_not_found"
    with app.app_context():
        assert ProcessedPaymentEvent.query.filter_by(event_id="evt_orphan").one().outcome == "entity_not_found"


def test_unhandled_event_type_is_ignored(app, post_stripe):
    event = {"id": "evt_cust", "type": "customer.created", "data": {"object": {"id": "cus_1"}}}
    resp = post_stripe(event)
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "ignored"


def test_invalid_signature_is_rejected_and_not_recorded(app, post_stripe, make_order):
    order_id = make_order(payment_reference="pi_A")
    resp = post_stripe(_pi_succeeded("evt_bad", "pi_A"), secret="whsec_wrong")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_signature"

    with app.app_context():
        assert ProcessedPaymentEvent.query.count() == 0
        assert db.session.get(Order, order_id).status == "pending_payment"


def test_stale_signature_timestamp_is_rejected(post_stripe, make_order):
    make_order(payment_reference="pi_A")
    resp = post_stripe(_pi_succeeded("evt_old", "pi_A"), timestamp=1_000_000)
    assert resp.status_code == 400


def test_missing_signature_header_is_rejected(post_stripe):
    resp = post_stripe(_pi_succeeded("evt_nosig", "pi_A"), signature="")
    assert resp.status_code == 400


def test_malformed_event_is_rejected(post_stripe):
    resp = post_stripe({"type": "payment_intent.succeeded", "data": {"object": {}}})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "malformed_event"


def test_missing_webhook_secret_is_a_server_error(app, post_stripe):
    app.config["STRIPE_WEBHOOK_SECRET"] = None
    try:
        resp = post_stripe(_pi_succeeded("evt_cfg", "pi_A"))
    finally:
        app.config["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
    assert resp.status_code == 500


def test_storage_failure_returns_503_and_leaves_nothing_behind(app, post_stripe, make_order, monkeypatch):
    order_id = make_order(payment_reference="pi_T")
    real_next_number = processor.next_number

    def _boom(*args, **kwargs):
        raise OperationalError("UPDATE invoice_counters", {}, Exception("database is locked"))
    monkeypatch.setattr(processor, "next_number", _boom)

    resp = post_stripe(_pi_succeeded("evt_transient", "pi_T"))
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "retry_later"

    with app.app_context():
        assert ProcessedPaymentEvent.query.count() == 0
        order = db.session.get(Order, order_id)
        assert order.status == "pending_payment"
        assert order.invoice_number is None

    # provider retry succeeds once storage recovers
    monkeypatch.setattr(processor, "next_number", real_next_number)
    resp = post_stripe(_pi_succeeded("evt_transient", "pi_T"))
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.get(Order, order_id).invoice_number == f"F-{YEAR}-000001"
