from datetime import timedelta

import mongomock
import pytest

import items
from errors import BadRequestError, NotFoundError
from tests.conftest import auth_header, make_account, make_item


@pytest.fixture
def seller(db):
    return make_account(db, role="seller")


@pytest.fixture
def buyer(db):
    return make_account(db)


def stock(db, item):
    return db.get_document_by_id("item", item["_id"])


def test_sale_decrements_stock_and_records_receipt(client, db, signer, seller, buyer):
    item = make_item(db, seller, quantity=10, price=150)
    res = client.post(
        f"/items/{item['_id']}/sell",
        json={"quantitySold": 2.5, "buyerId": str(buyer["_id"]), "notes": "Picked up at the pier"},
        headers=auth_header(signer, seller),
    )
    assert res.status_code == 201
    receipt = res.json()["data"]
    assert receipt["quantitySold"] == 2.5
    assert receipt["totalAmount"] == 375.0
    assert receipt["formattedTotalAmount"] == "₱375.00"
    assert receipt["status"] == "completed"
    assert receipt["timeSinceSale"] == "Just now"
    assert receipt["buyer"]["username"] == buyer["username"]
    assert receipt["seller"]["username"] == seller["username"]

    after = stock(db, item)
    assert after["quantity"] == 7.5
    assert after["isActive"] is True


def test_selling_everything_deactivates_item(db, seller, buyer):
    item = make_item(db, seller, quantity=5, price=150)
    receipt = items.sell(db, str(item["_id"]), seller, 5, str(buyer["_id"]))
    assert receipt["totalAmount"] == 750.0
    after = stock(db, item)
    assert after["quantity"] == 0
    assert after["isActive"] is False

    with pytest.raises(BadRequestError, match="inactive"):
        items.sell(db, str(item["_id"]), seller, 1, str(buyer["_id"]))


def test_overselling_is_rejected_and_stock_unchanged(db, seller, buyer):
    item = make_item(db, seller, quantity=5)
    with pytest.raises(BadRequestError, match="Insufficient quantity"):
        items.sell(db, str(item["_id"]), seller, 6, str(buyer["_id"]))
    assert stock(db, item)["quantity"] == 5
    assert db.count_documents("solditem") == 0


def test_sale_rejects_bad_requests(db, seller, buyer):
    item = make_item(db, seller)
    with pytest.raises(BadRequestError):
        items.sell(db, str(item["_id"]), seller, 0, str(buyer["_id"]))
    with pytest.raises(NotFoundError, match="Buyer not found"):
        items.sell(db, str(item["_id"]), seller, 1, "not-an-id")
    with pytest.raises(NotFoundError, match="Item not found"):
        items.sell(db, "not-an-id", seller, 1, str(buyer["_id"]))


def test_only_owner_can_sell(client, db, signer, seller, buyer):
    item = make_item(db, seller)
    res = client.post(
        f"/items/{item['_id']}/sell",
        json={"quantitySold": 1, "buyerId": str(buyer["_id"])},
        headers=auth_header(signer, buyer),
    )
    assert res.status_code == 403
    assert stock(db, item)["quantity"] == 5


def test_concurrent_sale_cannot_oversell(db, seller, buyer, monkeypatch):
    item = make_item(db, seller, quantity=5)
    lookup = db.get_document_by_id
    raced = []

    def competing_sale_first(collection, _id, projection=None):
        # the other sale lands after our stock check but before our decrement
        if collection == "account" and not raced:
            raced.append(True)
            items.sell(db, str(item["_id"]), seller, 3, str(buyer["_id"]))
        return lookup(collection, _id, projection)

    monkeypatch.setattr(db, "get_document_by_id", competing_sale_first)
    with pytest.raises(BadRequestError, match="Insufficient quantity"):
        items.sell(db, str(item["_id"]), seller, 3, str(buyer["_id"]))

    assert stock(db, item)["quantity"] == 2
    assert db.count_documents("solditem") == 1


def test_failed_receipt_restores_stock(db, seller, buyer, monkeypatch):
    item = make_item(db, seller, quantity=5)
    create = db.create_document

    def failing_receipts(collection, data):
        if collection == "solditem":
            raise RuntimeError("write failed")
        return create(collection, data)

    monkeypatch.setattr(db, "create_document", failing_receipts)
    with pytest.raises(RuntimeError):
        items.sell(db, str(item["_id"]), seller, 5, str(buyer["_id"]))

    after = stock(db, item)
    assert after["quantity"] == 5
    assert after["isActive"] is True


def test_failed_deactivation_restores_stock(db, seller, buyer, monkeypatch):
    item = make_item(db, seller, quantity=5)
    update_one = mongomock.collection.Collection.update_one

    def failing_deactivation(self, filter, update, *args, **kwargs):
        if update.get("$set", {}).get("isActive") is False:
            raise RuntimeError("write failed")
        return update_one(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "update_one", failing_deactivation)
    with pytest.raises(RuntimeError):
        items.sell(db, str(item["_id"]), seller, 5, str(buyer["_id"]))

    after = stock(db, item)
    assert after["quantity"] == 5
    assert after["isActive"] is True
    assert db.count_documents("solditem") == 0


@pytest.mark.parametrize("quantity", [float("nan"), float("inf")])
def test_sale_rejects_non_finite_quantity(db, seller, buyer, quantity):
    item = make_item(db, seller)
    with pytest.raises(BadRequestError):
        items.sell(db, str(item["_id"]), seller, quantity, str(buyer["_id"]))
    assert stock(db, item)["quantity"] == 5


def test_receipt_keeps_snapshot_after_item_changes(db, seller, buyer):
    item = make_item(db, seller, quantity=5, price=100, name="Tuna")
    items.sell(db, str(item["_id"]), seller, 2, str(buyer["_id"]))
    db.update_document("item", item["_id"], {"itemPrice": 999.0, "itemName": "Renamed"})
    items.delete_item(db, FakeHost(), str(item["_id"]), seller)

    receipts, total = items.list_sold(db, "buyer", str(buyer["_id"]))
    assert total == 1
    assert receipts[0]["itemName"] == "Tuna"
    assert receipts[0]["itemPrice"] == 100
    assert receipts[0]["totalAmount"] == 200


class FakeHost:
    def delete(self, public_id):
        return True


def test_sales_history_newest_first(db, seller, buyer, now):
    first = make_item(db, seller, name="Tuna")
    second = make_item(db, seller, name="Squid", item_type="food")
    items.sell(db, str(first["_id"]), seller, 1, str(buyer["_id"]), now=now - timedelta(days=2))
    items.sell(db, str(second["_id"]), seller, 1, str(buyer["_id"]), now=now)

    receipts, total = items.list_sold(db, "seller", str(seller["_id"]))
    assert total == 2
    assert [r["itemName"] for r in receipts] == ["Squid", "Tuna"]
    assert receipts[0]["buyer"]["username"] == buyer["username"]

    receipts, total = items.list_sold(db, "seller", str(seller["_id"]), item_type="food")
    assert [r["itemName"] for r in receipts] == ["Squid"]


def test_sales_history_access(client, db, signer, seller, buyer):
    item = make_item(db, seller)
    items.sell(db, str(item["_id"]), seller, 1, str(buyer["_id"]))
    admin = make_account(db, role="admin")

    url = f"/items/sold/seller/{seller['_id']}"
    assert client.get(url, headers=auth_header(signer, seller)).status_code == 200
    assert client.get(url, headers=auth_header(signer, admin)).status_code == 200
    assert client.get(url, headers=auth_header(signer, buyer)).status_code == 403
    assert client.get(url).status_code == 401

    res = client.get(f"/items/sold/buyer/{buyer['_id']}", headers=auth_header(signer, buyer))
    assert res.status_code == 200
    body = res.json()
    assert body["pagination"]["totalItems"] == 1
    assert body["data"][0]["seller"]["username"] == seller["username"]
