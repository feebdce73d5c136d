from decimal import Decimal

import pytest

from cakecart.errors import ValidationError
from cakecart.orders.models import ORDER_SNAPSHOT_VERSION, OrderSnapshot, load_order_snapshot

from fakes import order_payload


def test_to_stored_is_versioned_json():
    stored = OrderSnapshot.model_validate(order_payload()).to_stored()
    assert stored["version"] == ORDER_SNAPSHOT_VERSION
    assert stored["final_amount"] == "500.00"
    assert stored["delivery"]["email"] == "buyer@example.com"


def test_load_current_version():
    snapshot = load_order_snapshot(OrderSnapshot.model_validate(order_payload()).to_stored())
    assert snapshot.final_amount == Decimal("500.00")
    assert snapshot.customer_email == "buyer@example.com"


def test_load_legacy_unversioned_draft():
    snapshot = load_order_snapshot({
        "vendorId": "v-1",
        "items": [{"cakeId": 7, "name": "Mango Cake", "price": 450}],
        "deliveryDetails": {"fullName": "Meera", "address": "Lake Rd", "pincode": "110001"},
        "customer": {"email": "meera@example.com"},
        "subtotal": 450,
        "total": 450,
    })
    assert snapshot.vendor_id == "v-1"
    assert snapshot.items[0].cake_id == "7"
    assert snapshot.items[0].quantity == 1
    assert snapshot.customer_email == "meera@example.com"
    assert snapshot.final_amount == Decimal("450")


@pytest.mark.parametrize("data", [None, {}, {"version": 2, "vendor_id": "v"}, {"version": 1, "vendor_id": "v"}])
def test_invalid_snapshots_are_rejected(data):
    with pytest.raises(ValidationError) as exc:
        load_order_snapshot(data)
    assert exc.value.code == "invalid_order_data"
