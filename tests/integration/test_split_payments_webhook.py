import json

from fakes import split_request

WEBHOOK = "/api/v1/split-payments/webhook"


def _create(client, amounts=("300", "200")):
    res = client.post("/api/v1/split-payments", json=split_request(amounts))
    assert res.status_code == 201, res.text
    return res.json()


def _event(event_type, co_payment_id, session_id):
    return json.dumps({
        "type": event_type,
        "data": {"object": {"id": session_id, "metadata": {"co_payment_id": co_payment_id}}},
    })


def _post(client, payload, signature="valid"):
    return client.post(
        WEBHOOK,
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def test_invalid_signature_is_400(client):
    res = _post(client, "{}", signature="forged")
    assert res.status_code == 400


def test_checkout_completed_marks_contributor_paid(client, db):
    created = _create(client)
    link_id = created["links"][0]["paymentLinkId"]

    res = _post(client, _event("checkout.session.completed", created["coPaymentId"], link_id))

    assert res.status_code == 200
    assert res.json() == {"status": "ok", "coPaymentStatus": "partial"}
    paid = [c for c in db.rows("co_payment_contributors") if c["payment_link_id"] == link_id]
    assert paid[0]["status"] == "paid"


def test_redelivered_events_confirm_once(client, db):
    created = _create(client, ("500",))
    payload = _event("checkout.session.completed", created["coPaymentId"], created["links"][0]["paymentLinkId"])

    assert _post(client, payload).json()["coPaymentStatus"] == "completed"
    assert _post(client, payload).json()["coPaymentStatus"] == "completed"

    assert len(db.rows("orders")) == 1
    assert len(db.rows("order_status_history")) == 1


def test_expired_session_marks_contributor_failed(client, db):
    created = _create(client)
    link_id = created["links"][1]["paymentLinkId"]
    res = _post(client, _event("checkout.session.expired", created["coPaymentId"], link_id))
    assert res.status_code == 200
    failed = [c for c in db.rows("co_payment_contributors") if c["payment_link_id"] == link_id]
    assert failed[0]["status"] == "failed"


def test_unknown_link_and_unhandled_events_are_ignored(client, db):
    created = _create(client)
    before = db.rows("co_payment_contributors")

    res = _post(client, _event("checkout.session.completed", created["coPaymentId"], "cs_unknown"))
    assert res.json() == {"status": "ignored"}

    res = _post(client, _event("payment_intent.created", created["coPaymentId"], created["links"][0]["paymentLinkId"]))
    assert res.json() == {"status": "ignored"}

    res = _post(client, json.dumps({"type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}))
    assert res.json() == {"status": "ignored"}

    assert db.rows("co_payment_contributors") == before
