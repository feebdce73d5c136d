import threading

import pytest

from cakecart.errors import NotFoundError, StorageError, ValidationError
from cakecart.split_payments.models import ContributorStatus, SplitPaymentRequest

from fakes import split_request


def _create(orchestrator, *amounts, **kwargs):
    return orchestrator.create(SplitPaymentRequest.model_validate(split_request(amounts or ("300", "200"), **kwargs)))


def _count_confirm_calls(monkeypatch, trigger):
    calls = []
    real_confirm = trigger.confirm

    def _spy(co_payment):
        calls.append(co_payment["id"])
        return real_confirm(co_payment)

    monkeypatch.setattr(trigger, "confirm", _spy)
    return calls


def test_two_contributors_partial_then_completed(orchestrator, service, db):
    created = _create(orchestrator, "300", "200")
    cp_id = created["coPaymentId"]
    link1, link2 = (link["paymentLinkId"] for link in created["links"])

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link1, status="paid")
    assert snap["status"] == "partial"
    assert snap["collectedAmount"] == 300.0
    assert snap["stats"]["completionPercentage"] == 50
    assert "confirmation" not in snap

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link2, status="paid")
    assert snap["status"] == "completed"
    assert snap["collectedAmount"] == 500.0
    assert snap["stats"]["completionPercentage"] == 100
    assert snap["stats"]["allPaid"] is True
    assert snap["completedAt"]
    assert snap["confirmation"]["status"] == "confirmed"
    assert snap["confirmedAt"]

    order = db.rows("orders")[0]
    assert order["id"] == created["orderId"]
    assert order["status"] == "confirmed"
    assert order["payment_status"] == "completed"


def test_replayed_signal_is_a_no_op(orchestrator, service, trigger, db, monkeypatch):
    calls = _count_confirm_calls(monkeypatch, trigger)
    created = _create(orchestrator, "300", "200")
    cp_id = created["coPaymentId"]
    link1, link2 = (link["paymentLinkId"] for link in created["links"])
    service.apply_signal(co_payment_id=cp_id, payment_link_id=link1)
    first = service.apply_signal(co_payment_id=cp_id, payment_link_id=link2)
    paid_at = {c["id"]: c["paid_at"] for c in db.rows("co_payment_contributors")}

    second = service.apply_signal(co_payment_id=cp_id, payment_link_id=link2)

    assert second["status"] == "completed"
    assert second["completedAt"] == first["completedAt"]
    assert "confirmation" not in second
    assert calls == [cp_id]
    assert {c["id"]: c["paid_at"] for c in db.rows("co_payment_contributors")} == paid_at
    assert len(db.rows("order_status_history")) == 1


def test_link_from_another_co_payment_is_not_found(orchestrator, service, db):
    first = _create(orchestrator, "500", order_id="ord-a")
    other = _create(orchestrator, "500", order_id="ord-b")
    before = (db.rows("co_payments"), db.rows("co_payment_contributors"))

    with pytest.raises(NotFoundError):
        service.apply_signal(co_payment_id=first["coPaymentId"], payment_link_id=other["links"][0]["paymentLinkId"])

    assert (db.rows("co_payments"), db.rows("co_payment_contributors")) == before


def test_unknown_co_payment_and_bad_inputs(service):
    with pytest.raises(NotFoundError):
        service.apply_signal(co_payment_id="missing", payment_link_id="cs_x")
    with pytest.raises(ValidationError) as exc:
        service.apply_signal(co_payment_id="missing", payment_link_id="cs_x", status="refunded")
    assert exc.value.code == "invalid_status"
    with pytest.raises(ValidationError):
        service.apply_signal(co_payment_id="missing")
    with pytest.raises(ValidationError):
        service.apply_signal(payment_link_id="cs_x")


def test_signal_by_order_id_and_contributor_id(orchestrator, service):
    created = _create(orchestrator, "500", order_id="ord-7")
    snap = service.apply_signal(order_id="ord-7", contributor_id=created["links"][0]["contributorId"], status="captured")
    assert snap["status"] == "completed"
    assert snap["orderId"] == "ord-7"


def test_all_links_failed_keeps_co_payment_pending(orchestrator, service):
    created = _create(orchestrator, "300", "200")
    cp_id = created["coPaymentId"]
    link1, link2 = (link["paymentLinkId"] for link in created["links"])

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link1, status="expired")
    assert snap["status"] == "pending"
    assert snap["stats"]["failedCount"] == 1

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link2, status="cancelled")
    assert snap["status"] == "pending"
    assert snap["stats"]["failedCount"] == 2


def test_expired_single_link_can_be_reissued_and_paid(orchestrator, service):
    created = _create(orchestrator, "500")
    cp_id = created["coPaymentId"]
    old_link = created["links"][0]["paymentLinkId"]
    contributor_id = created["links"][0]["contributorId"]

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=old_link, status="expired")
    assert snap["status"] == "pending"

    view = orchestrator.reissue_link(cp_id, contributor_id)
    assert view["issued"] is True
    assert view["paymentLinkId"] != old_link

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=view["paymentLinkId"], status="paid")
    assert snap["status"] == "completed"
    assert snap["confirmation"]["status"] == "confirmed"


def test_late_payments_after_failures_complete_co_payment(orchestrator, service):
    created = _create(orchestrator, "300", "200")
    cp_id = created["coPaymentId"]
    link1, link2 = (link["paymentLinkId"] for link in created["links"])
    service.apply_signal(co_payment_id=cp_id, payment_link_id=link1, status="failed")
    service.apply_signal(co_payment_id=cp_id, payment_link_id=link2, status="failed")

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link1, status="paid")
    assert snap["status"] == "partial"
    assert snap["stats"]["paidCount"] == 1

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link2, status="paid")
    assert snap["status"] == "completed"
    assert snap["confirmation"]["status"] == "confirmed"


def test_legacy_failed_row_still_advances(orchestrator, service, db):
    created = _create(orchestrator, "300", "200")
    cp_id = created["coPaymentId"]
    link1 = created["links"][0]["paymentLinkId"]
    db.tables["co_payments"][0]["status"] = "failed"

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link1, status="paid")

    assert snap["status"] == "partial"


def test_confirmed_at_failure_is_reported_not_raised(monkeypatch, orchestrator, service, repository, db):
    created = _create(orchestrator, "500")
    cp_id = created["coPaymentId"]
    link = created["links"][0]["paymentLinkId"]
    real_mark_confirmed = repository.mark_confirmed

    def _denied(co_payment_id, confirmed_at=None):
        db.fail("co_payments", "update", code="42501", times=1)
        return real_mark_confirmed(co_payment_id, confirmed_at)

    monkeypatch.setattr(repository, "mark_confirmed", _denied)

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link, status="paid")

    assert snap["status"] == "completed"
    assert snap["confirmation"]["status"] == "confirmed"
    assert "warning" in snap["confirmation"]
    assert snap["confirmedAt"] is None
    assert db.rows("orders")[0]["status"] == "confirmed"
    assert service.list_unconfirmed()["unconfirmed"] == 1


def test_completed_never_reverts(orchestrator, service):
    created = _create(orchestrator, "500")
    cp_id = created["coPaymentId"]
    link = created["links"][0]["paymentLinkId"]
    service.apply_signal(co_payment_id=cp_id, payment_link_id=link, status="paid")

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=link, status="failed")

    assert snap["status"] == "completed"
    assert snap["contributors"][0]["status"] == "paid"


def test_transient_storage_error_is_retried(orchestrator, service, db):
    created = _create(orchestrator, "500")
    db.fail("co_payment_contributors", "update", code="40001", times=1)

    snap = service.apply_signal(co_payment_id=created["coPaymentId"], payment_link_id=created["links"][0]["paymentLinkId"])

    assert snap["status"] == "completed"


def test_fatal_storage_error_propagates(orchestrator, service, db):
    created = _create(orchestrator, "500")
    db.fail("co_payment_contributors", "update", code="42501", times=1)

    with pytest.raises(StorageError):
        service.apply_signal(co_payment_id=created["coPaymentId"], payment_link_id=created["links"][0]["paymentLinkId"])
    assert db.rows("co_payments")[0]["status"] == "pending"


def test_concurrent_final_signals_confirm_exactly_once(orchestrator, service, trigger, db, monkeypatch):
    calls = _count_confirm_calls(monkeypatch, trigger)
    created = _create(orchestrator, "100", "100", "100", "100", "100")
    cp_id = created["coPaymentId"]
    links = [link["paymentLinkId"] for link in created["links"]]
    barrier = threading.Barrier(len(links) * 2)
    errors = []

    def _pay(link_id):
        barrier.wait()
        try:
            service.apply_signal(co_payment_id=cp_id, payment_link_id=link_id)
        except Exception as e:  # remonté au thread principal
            errors.append(e)

    # chaque lien est signalé deux fois (redirection + webhook)
    threads = [threading.Thread(target=_pay, args=(link,)) for link in links + links]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert calls == [cp_id]
    assert db.rows("co_payments")[0]["status"] == "completed"
    assert len(db.rows("orders")) == 1
    assert len(db.rows("order_status_history")) == 1


def test_sync_with_gateway_folds_remote_statuses(orchestrator, service, gateway):
    created = _create(orchestrator, "300", "200")
    link1, link2 = (link["paymentLinkId"] for link in created["links"])
    gateway.remote_status[link1] = ContributorStatus.PAID

    snap = service.sync_with_gateway(order_id=created["orderId"])
    assert snap["status"] == "partial"

    gateway.remote_status[link2] = ContributorStatus.PAID
    snap = service.sync_with_gateway(co_payment_id=created["coPaymentId"])
    assert snap["status"] == "completed"


def test_confirmation_failure_is_reported_then_rerun(orchestrator, service, db):
    created = _create(orchestrator, "500", vendor_id="vendor-gone")
    cp_id = created["coPaymentId"]

    snap = service.apply_signal(co_payment_id=cp_id, payment_link_id=created["links"][0]["paymentLinkId"])

    assert snap["status"] == "completed"
    assert snap["confirmation"]["status"] == "failed"
    assert "vendor-gone" in snap["confirmation"]["detail"]
    assert snap["confirmedAt"] is None
    assert db.rows("orders") == []
    assert service.list_unconfirmed()["unconfirmed"] == 1

    db.tables["vendors"].append({"id": "vendor-gone"})
    snap = service.retry_confirmation(cp_id)
    assert snap["confirmation"]["status"] == "confirmed"
    assert snap["confirmedAt"]
    assert service.list_unconfirmed()["payments"] == []


def test_retry_confirmation_requires_completed(orchestrator, service):
    created = _create(orchestrator, "500")
    with pytest.raises(ValidationError) as exc:
        service.retry_confirmation(created["coPaymentId"])
    assert exc.value.code == "not_completed"


def test_list_recent_summaries(orchestrator, service):
    created = _create(orchestrator, "300", "200")
    service.apply_signal(co_payment_id=created["coPaymentId"], payment_link_id=created["links"][0]["paymentLinkId"])

    listing = service.list_recent(limit=10)

    assert listing["total"] == 1
    assert listing["pending"] == 1
    assert listing["payments"][0]["summary"]["paymentProgress"] == "1/2"
