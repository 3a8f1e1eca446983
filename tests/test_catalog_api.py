"""Catalog reads and the admin product writer."""

from datetime import datetime

from tests.conftest import JPEG, PNG, insert_product

FORM = {"name": "Kuthu Vilakku", "description": "Traditional brass oil lamp", "price": "2500"}


def create(client, admin, form=FORM, image=("lamp.png", PNG, "image/png")):
    files = {"image": image} if image else None
    return client.post("/admin/products", data=form, files=files, headers=admin)


def test_created_product_round_trips(client, admin, storage):
    resp = create(client, admin)
    assert resp.status_code == 201, resp.text
    created = resp.json()

    fetched = client.get(f"/products/{created['id']}").json()
    assert fetched["name"] == "Kuthu Vilakku"
    assert fetched["description"] == "Traditional brass oil lamp"
    assert fetched["price"] == 2500
    assert fetched["image_url"] == created["image_url"]

    [path] = storage.files
    assert path.startswith("products/") and path.endswith("_lamp.png")
    assert client.get(f"/files/{path}").content == PNG


def test_create_requires_admin(client, storage):
    assert create(client, {}).status_code == 401
    assert create(client, {"Authorization": "Bearer forged"}).status_code == 401
    assert storage.files == {}


def test_field_validation(client, admin, db):
    assert create(client, admin, {**FORM, "name": "ab"}).status_code == 422
    assert create(client, admin, {**FORM, "description": "short"}).status_code == 422
    assert create(client, admin, {**FORM, "price": "-1"}).status_code == 422
    assert db["product"].count_documents({}) == 0


def test_image_validation(client, admin, db, storage):
    assert create(client, admin, image=None).status_code == 422
    assert create(client, admin, image=("lamp.gif", b"GIF89a", "image/gif")).status_code == 422

    resp = create(client, admin, image=("huge.png", PNG * 50, "image/png"))
    assert resp.status_code == 422
    assert resp.json()["detail"][0]["loc"] == ["body", "image"]

    assert db["product"].count_documents({}) == 0
    assert storage.files == {}


def test_free_product_is_allowed(client, admin):
    assert create(client, admin, {**FORM, "price": "0"}).status_code == 201


def test_list_products_newest_first(client, db):
    insert_product(db, name="Older", created_at=datetime(2024, 1, 1))
    insert_product(db, name="Newer", created_at=datetime(2024, 6, 1))

    assert [p["name"] for p in client.get("/products").json()] == ["Newer", "Older"]


def test_product_not_found(client):
    assert client.get("/products/65f000000000000000000000").status_code == 404
    assert client.get("/products/not-an-id").status_code == 400


def test_edit_without_image_keeps_reference(client, admin, storage):
    created = create(client, admin).json()

    resp = client.put(
        f"/admin/products/{created['id']}",
        data={**FORM, "price": "2750"},
        headers=admin,
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["image_url"] == created["image_url"]
    assert client.get(f"/products/{created['id']}").json()["price"] == 2750
    assert len(storage.files) == 1


def test_edit_with_image_replaces_reference(client, admin, storage):
    created = create(client, admin).json()

    resp = client.put(
        f"/admin/products/{created['id']}",
        data=FORM,
        files={"image": ("lamp-v2.jpg", JPEG, "image/jpeg")},
        headers=admin,
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["image_url"] != created["image_url"]
    assert resp.json()["image_url"].endswith("_lamp-v2.jpg")
    assert len(storage.files) == 2


def test_edit_missing_product(client, admin):
    resp = client.put("/admin/products/65f000000000000000000000", data=FORM, headers=admin)
    assert resp.status_code == 404


def test_delete_leaves_stored_image(client, admin, storage):
    created = create(client, admin).json()

    assert client.delete(f"/admin/products/{created['id']}", headers=admin).json() == {"deleted": True}
    assert client.get(f"/products/{created['id']}").status_code == 404
    assert len(storage.files) == 1
    assert client.delete(f"/admin/products/{created['id']}", headers=admin).status_code == 404
