import pytest
from bson import ObjectId

from products import next_product_code


def new_product(**overrides):
    payload = {
        "productCode": "bg101",
        "name": "Catan",
        "price": 45000,
        "category": "strategy",
        "image": "https://img.example.com/catan.png",
        "description": "Trade and build",
    }
    payload.update(overrides)
    return payload


@pytest.mark.parametrize(
    "last, expected",
    [("BG007", "BG008"), (None, "BG001"), ("BG099", "BG100"), ("BG999", "BG1000"), ("PROMO", "BG001")],
)
def test_next_product_code(last, expected):
    assert next_product_code(last) == expected


def test_create_product_uppercases_code(client, admin_headers):
    resp = client.post("/products", json=new_product(productCode="  bg101 "), headers=admin_headers)
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["productCode"] == "BG101"
    assert data["price"] == 45000
    assert data["category"] == "strategy"
    assert "createdAt" in data


def test_create_product_duplicate_code_is_conflict(client, admin_headers):
    assert client.post("/products", json=new_product(), headers=admin_headers).status_code == 201
    resp = client.post("/products", json=new_product(productCode="BG101", name="Other"), headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["message"] == "Product code already exists."


def test_create_product_requires_admin(client, user_headers):
    assert client.post("/products", json=new_product()).status_code == 401
    assert client.post("/products", json=new_product(), headers=user_headers).status_code == 403


@pytest.mark.parametrize(
    "overrides",
    [{"price": -1}, {"category": "puzzle"}, {"name": ""}, {"image": None}],
)
def test_create_product_validation(client, admin_headers, overrides):
    resp = client.post("/products", json=new_product(**overrides), headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_free_product_is_allowed(client, admin_headers):
    resp = client.post("/products", json=new_product(price=0), headers=admin_headers)
    assert resp.status_code == 201


def test_list_products_paginates_and_filters(client, make_product):
    for _ in range(3):
        make_product(category="party")
    make_product(category="family")

    resp = client.get("/products", params={"limit": 2})
    body = resp.json()
    assert resp.status_code == 200
    assert body["count"] == 2
    assert body["total"] == 4
    assert body["totalPages"] == 2
    assert body["page"] == 1

    resp = client.get("/products", params={"category": "family"})
    assert resp.json()["total"] == 1
    assert resp.json()["data"][0]["category"] == "family"


def test_list_products_sort(client, make_product):
    make_product(price=30000)
    make_product(price=10000)
    make_product(price=20000)
    prices = [p["price"] for p in client.get("/products", params={"sort": "price"}).json()["data"]]
    assert prices == [10000, 20000, 30000]
    assert client.get("/products", params={"sort": "-secret"}).status_code == 400


def test_get_product_by_id_and_code(client, make_product):
    product = make_product(code="BG042")
    resp = client.get(f"/products/{product['_id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == str(product["_id"])

    resp = client.get("/products/code/bg042")
    assert resp.status_code == 200
    assert resp.json()["data"]["productCode"] == "BG042"

    assert client.get("/products/code/BG999").status_code == 404
    assert client.get("/products/not-an-id").status_code == 400
    assert client.get(f"/products/{ObjectId()}").status_code == 404


def test_generate_code(client, make_product, admin_headers, user_headers):
    resp = client.get("/products/generate-code", headers=admin_headers)
    assert resp.json()["data"]["productCode"] == "BG001"

    make_product(code="BG003")
    make_product(code="BG007")
    resp = client.get("/products/generate-code", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["productCode"] == "BG008"

    assert client.get("/products/generate-code", headers=user_headers).status_code == 403


def test_generate_code_past_three_digits(client, make_product, admin_headers):
    make_product(code="BG999")
    make_product(code="BG1000")
    make_product(code="PROMO")
    resp = client.get("/products/generate-code", headers=admin_headers)
    assert resp.json()["data"]["productCode"] == "BG1001"


def test_update_product(client, make_product, admin_headers):
    product = make_product(code="BG001", price=10000)
    resp = client.put(f"/products/{product['_id']}", json={"price": 12000, "productCode": "bg010"}, headers=admin_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["price"] == 12000
    assert data["productCode"] == "BG010"
    assert data["name"] == product["name"]


def test_update_product_code_conflict(client, make_product, admin_headers):
    first = make_product(code="BG001")
    make_product(code="BG002")
    resp = client.put(f"/products/{first['_id']}", json={"productCode": "bg002"}, headers=admin_headers)
    assert resp.status_code == 409
    # keeping its own code is fine
    resp = client.put(f"/products/{first['_id']}", json={"productCode": "BG001"}, headers=admin_headers)
    assert resp.status_code == 200


def test_update_missing_product(client, admin_headers):
    resp = client.put(f"/products/{ObjectId()}", json={"name": "Ghost"}, headers=admin_headers)
    assert resp.status_code == 404


def test_delete_product(client, make_product, admin_headers):
    product = make_product()
    resp = client.delete(f"/products/{product['_id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert client.get(f"/products/{product['_id']}").status_code == 404
    assert client.delete(f"/products/{product['_id']}", headers=admin_headers).status_code == 404
