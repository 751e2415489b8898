import pytest
from bson import ObjectId

from conftest import PASSWORD


def signup(client, headers=None, **overrides):
    payload = {"name": "Kim Minji", "email": "Minji@Example.COM", "password": "hunter22"}
    payload.update(overrides)
    return client.post("/users", json=payload, headers=headers or {})


def test_create_user_normalizes_email_and_hides_password(client, db):
    resp = signup(client, phone="010-1234-5678")
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["email"] == "minji@example.com"
    assert data["role"] == "user"
    assert data["phone"] == "010-1234-5678"
    assert "password" not in data

    stored = db["user"].find_one({"_id": ObjectId(data["id"])})
    assert stored["password"] != "hunter22"
    assert stored["password"].startswith("$2")


def test_duplicate_email_is_a_conflict(client):
    assert signup(client).status_code == 201
    resp = signup(client, email="MINJI@example.com")
    assert resp.status_code == 409
    assert resp.json()["message"] == "Email already exists."


def test_create_user_validates_input(client):
    resp = signup(client, password="123")
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert any("password" in err for err in body["errors"])

    assert signup(client, email="not-an-email").status_code == 400
    assert client.post("/users", json={"email": "a@b.co", "password": "hunter22"}).status_code == 400


@pytest.mark.parametrize("email", ["a@@b..c", "minji@", "@example.com", "minji example@example.com"])
def test_malformed_email_is_rejected(client, db, email):
    resp = signup(client, email=email)
    assert resp.status_code == 400
    assert any("email" in err for err in resp.json()["errors"])
    assert db["user"].count_documents({}) == 0


def test_update_rejects_malformed_email(client, user, user_headers):
    resp = client.put(f"/users/{user['_id']}", json={"email": "a@@b..c"}, headers=user_headers)
    assert resp.status_code == 400


def test_public_signup_cannot_grant_admin(client):
    resp = signup(client, role="admin")
    assert resp.status_code == 201
    assert resp.json()["data"]["role"] == "user"


def test_admin_can_create_admin(client, admin_headers):
    resp = signup(client, headers=admin_headers, role="admin")
    assert resp.status_code == 201
    assert resp.json()["data"]["role"] == "admin"


def test_signed_up_user_can_log_in(client):
    signup(client)
    resp = client.post("/auth/login", json={"email": "minji@example.com", "password": "hunter22"})
    assert resp.status_code == 200


def test_list_users_requires_admin(client, user, admin_headers, user_headers):
    assert client.get("/users").status_code == 401
    assert client.get("/users", headers=user_headers).status_code == 403

    resp = client.get("/users", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 2
    assert all("password" not in u for u in body["data"])


def test_get_user_self_or_admin(client, user, make_user, user_headers, admin_headers):
    other = make_user()
    assert client.get(f"/users/{user['_id']}", headers=user_headers).status_code == 200
    assert client.get(f"/users/{other['_id']}", headers=user_headers).status_code == 403
    assert client.get(f"/users/{other['_id']}", headers=admin_headers).status_code == 200


def test_get_user_bad_and_missing_ids(client, admin_headers):
    assert client.get("/users/not-an-id", headers=admin_headers).status_code == 400
    assert client.get(f"/users/{ObjectId()}", headers=admin_headers).status_code == 404


def test_update_user(client, db, user, user_headers):
    resp = client.put(
        f"/users/{user['_id']}",
        json={"name": "New Name", "email": "NEW@Example.com", "address": "Seoul"},
        headers=user_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["name"] == "New Name"
    assert data["email"] == "new@example.com"
    assert data["address"] == "Seoul"
    assert "password" not in data


def test_update_user_password_is_rehashed(client, user, user_headers):
    resp = client.put(f"/users/{user['_id']}", json={"password": "another-secret"}, headers=user_headers)
    assert resp.status_code == 200
    login = client.post("/auth/login", json={"email": user["email"], "password": "another-secret"})
    assert login.status_code == 200
    old = client.post("/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert old.status_code == 401


def test_update_user_email_conflict(client, user, make_user, user_headers):
    other = make_user()
    resp = client.put(f"/users/{user['_id']}", json={"email": other["email"].upper()}, headers=user_headers)
    assert resp.status_code == 409


def test_only_admin_changes_roles(client, user, user_headers, admin_headers):
    resp = client.put(f"/users/{user['_id']}", json={"role": "admin"}, headers=user_headers)
    assert resp.status_code == 403
    resp = client.put(f"/users/{user['_id']}", json={"role": "admin"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "admin"


def test_delete_user(client, user, user_headers, admin_headers):
    assert client.delete(f"/users/{user['_id']}", headers=user_headers).status_code == 403
    resp = client.delete(f"/users/{user['_id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"] == {}
    assert client.delete(f"/users/{user['_id']}", headers=admin_headers).status_code == 404
