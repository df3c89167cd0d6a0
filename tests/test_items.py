import pytest

import items
from errors import NotFoundError, PayloadTooLargeError, UnauthorizedError, UnsupportedMediaTypeError
from images import ImageUpload
from tests.conftest import auth_header, make_account, make_item

JPEG = ("tuna.jpg", b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")


def item_form(**overrides):
    form = {
        "itemType": "fish",
        "itemName": "Yellowfin Tuna",
        "itemPrice": "320.5",
        "quantity": "12",
        "unit": "kg",
        "description": "Caught this morning off Apo Island",
        "location": "Dumaguete",
    }
    form.update(overrides)
    return form


@pytest.fixture
def seller(db):
    return make_account(db, role="seller")


# ----- create -----

def test_seller_creates_item_with_image(client, db, signer, images, seller):
    res = client.post("/items", data=item_form(), files={"image": JPEG}, headers=auth_header(signer, seller))
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["image"] == "https://img.test/items/1.jpg"
    assert data["imagePublicId"] == "coast2cart/items/1"
    assert data["isActive"] is True
    assert data["formattedPrice"] == "₱320.50"
    assert data["formattedQuantity"] == "12 kg"
    assert data["freshness"] == "Very Fresh"
    assert data["optimizedImageUrl"].endswith("coast2cart/items/1")
    assert data["seller"]["username"] == seller["username"]
    assert "password" not in data["seller"]
    assert db.count_documents("item") == 1


def test_create_requires_image(client, signer, seller):
    res = client.post("/items", data=item_form(), headers=auth_header(signer, seller))
    assert res.status_code == 400
    assert res.json()["message"] == "Item image is required"


def test_create_rejects_non_image_upload(client, signer, images, seller):
    res = client.post(
        "/items",
        data=item_form(),
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=auth_header(signer, seller),
    )
    assert res.status_code == 415
    assert images.uploaded == []


def test_create_rejects_oversized_image(client, signer, images, seller):
    res = client.post(
        "/items",
        data=item_form(),
        files={"image": ("big.jpg", b"x" * 2048, "image/jpeg")},
        headers=auth_header(signer, seller),
    )
    assert res.status_code == 413
    assert images.uploaded == []


def test_create_validates_fields(client, signer, images, seller):
    res = client.post(
        "/items", data=item_form(itemPrice="-1"), files={"image": JPEG}, headers=auth_header(signer, seller)
    )
    assert res.status_code == 400
    assert "itemPrice" in res.json()["message"]
    assert images.uploaded == []


def test_only_sellers_create_items(client, db, signer):
    buyer = make_account(db)
    res = client.post("/items", data=item_form(), files={"image": JPEG}, headers=auth_header(signer, buyer))
    assert res.status_code == 403


def test_failed_insert_discards_uploaded_image(db, images, settings, seller, monkeypatch):
    def broken_insert(collection, data):
        raise RuntimeError("write failed")

    monkeypatch.setattr(db, "create_document", broken_insert)
    upload = ImageUpload(filename="tuna.jpg", content_type="image/jpeg", data=b"jpeg")
    fields = items.ItemCreateRequest(itemType="fish", itemName="Tuna", itemPrice=100, quantity=3, unit="kg")
    with pytest.raises(RuntimeError):
        items.create_item(db, images, settings, seller, fields, upload)
    assert images.deleted == ["coast2cart/items/1"]


# ----- update / status / delete -----

def test_update_replaces_image_and_discards_old(client, db, signer, images, seller):
    item = make_item(db, seller)
    res = client.put(
        f"/items/{item['_id']}",
        data={"itemPrice": "200"},
        files={"image": JPEG},
        headers=auth_header(signer, seller),
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["itemPrice"] == 200
    assert data["image"] == "https://img.test/items/1.jpg"
    assert images.deleted == ["coast2cart/items/seed"]


def test_update_survives_failed_image_cleanup(db, images, settings, seller):
    images.fail_delete = True
    item = make_item(db, seller)
    upload = ImageUpload(filename="new.jpg", content_type="image/jpeg", data=b"jpeg")
    updated = items.update_item(db, images, settings, str(item["_id"]), seller, items.ItemUpdateRequest(), upload)
    assert updated["imagePublicId"] == "coast2cart/items/1"


def test_only_owner_may_modify(client, db, signer, seller):
    item = make_item(db, seller)
    other = make_account(db, role="seller")
    headers = auth_header(signer, other)

    res = client.put(f"/items/{item['_id']}", data={"itemName": "Mine now"}, headers=headers)
    assert res.status_code == 403
    assert res.json()["message"] == "You can only update your own items"
    assert client.delete(f"/items/{item['_id']}", headers=headers).status_code == 403
    assert client.patch(f"/items/{item['_id']}/status", json={"isActive": False}, headers=headers).status_code == 403


def test_status_toggle(client, db, signer, seller):
    item = make_item(db, seller)
    headers = auth_header(signer, seller)
    res = client.patch(f"/items/{item['_id']}/status", json={"isActive": False}, headers=headers)
    assert res.status_code == 200
    assert res.json()["message"] == "Item deactivated successfully"
    assert db.get_document_by_id("item", item["_id"])["isActive"] is False

    res = client.patch(f"/items/{item['_id']}/status", json={"isActive": True}, headers=headers)
    assert res.json()["data"]["isActive"] is True


def test_sold_out_item_cannot_be_activated(client, db, signer, seller):
    item = make_item(db, seller, quantity=0, isActive=False)
    res = client.patch(
        f"/items/{item['_id']}/status", json={"isActive": True}, headers=auth_header(signer, seller)
    )
    assert res.status_code == 400


def test_delete_hides_item_and_discards_image(client, db, signer, images, seller):
    item = make_item(db, seller)
    res = client.delete(f"/items/{item['_id']}", headers=auth_header(signer, seller))
    assert res.status_code == 200
    assert images.deleted == ["coast2cart/items/seed"]

    assert client.get(f"/items/{item['_id']}").status_code == 404
    assert client.get("/items").json()["data"] == []
    stored = db.get_document_by_id("item", item["_id"])
    assert stored["deletedAt"] is not None
    assert stored["isActive"] is False


def test_delete_goes_ahead_when_image_cleanup_fails(db, images, seller):
    images.fail_delete = True
    item = make_item(db, seller)
    items.delete_item(db, images, str(item["_id"]), seller)
    with pytest.raises(NotFoundError):
        items.find_item(db, str(item["_id"]))


def test_find_item_rejects_bad_ids(db):
    with pytest.raises(NotFoundError):
        items.find_item(db, "not-an-id")


# ----- listing -----

def test_listing_filters_and_sorts(client, db, seller):
    other = make_account(db, role="seller")
    make_item(db, seller, name="Tuna", price=300)
    make_item(db, seller, name="Dried Squid", price=120, item_type="food")
    make_item(db, other, name="Shell Necklace", price=80, item_type="souvenirs", unit="pieces")
    make_item(db, seller, name="Hidden", isActive=False)

    data = client.get("/items", params={"sortBy": "price", "sortOrder": "asc"}).json()["data"]
    assert [i["itemName"] for i in data] == ["Shell Necklace", "Dried Squid", "Tuna"]

    data = client.get("/items", params={"itemType": "food"}).json()["data"]
    assert [i["itemName"] for i in data] == ["Dried Squid"]

    data = client.get("/items", params={"seller": str(other["_id"])}).json()["data"]
    assert [i["itemName"] for i in data] == ["Shell Necklace"]

    data = client.get("/items", params={"search": "squid"}).json()["data"]
    assert [i["itemName"] for i in data] == ["Dried Squid"]


def test_listing_paginates(client, db, seller):
    for n in range(5):
        make_item(db, seller, name=f"Catch {n}", price=100 + n)
    body = client.get("/items", params={"page": 2, "limit": 2, "sortBy": "price", "sortOrder": "asc"}).json()
    assert [i["itemName"] for i in body["data"]] == ["Catch 2", "Catch 3"]
    assert body["pagination"] == {
        "currentPage": 2,
        "totalPages": 3,
        "totalItems": 5,
        "itemsPerPage": 2,
        "hasNext": True,
        "hasPrev": True,
    }


def test_listing_rejects_unknown_sort(client):
    assert client.get("/items", params={"sortBy": "color"}).status_code == 400


def test_seller_listing_includes_inactive(client, db, seller):
    make_item(db, seller, name="Live")
    make_item(db, seller, name="Paused", isActive=False)
    data = client.get(f"/items/seller/{seller['_id']}").json()["data"]
    assert sorted(i["itemName"] for i in data) == ["Live", "Paused"]
    data = client.get(f"/items/seller/{seller['_id']}", params={"isActive": "false"}).json()["data"]
    assert [i["itemName"] for i in data] == ["Paused"]


def test_owned_item_lookup_names_the_action(db, seller):
    item = make_item(db, seller)
    other = make_account(db, role="seller")
    with pytest.raises(UnauthorizedError, match="sell your own items"):
        items._owned_item(db, str(item["_id"]), other, "sell")


def test_validate_errors_are_typed(settings):
    from images import validate_image

    with pytest.raises(UnsupportedMediaTypeError):
        validate_image(ImageUpload("a.gif", None, b"gif"), settings.max_image_bytes)
    with pytest.raises(PayloadTooLargeError, match="1KB"):
        validate_image(ImageUpload("a.jpg", "image/jpeg", b"x" * 1025), settings.max_image_bytes)
