"""Integration tests for the HTTP surface via TestClient."""

from datetime import datetime, timedelta, timezone

from schemas import Role

from conftest import PASSWORD


def _register(client, username="carol", headers=None, **overrides):
    body = {
        "username": username,
        "email": f"{username}@example.com",
        "password": "pass123",
        "first": "Carol",
        "last": "Jones",
        "street_address": "3 Elm St",
    }
    body.update(overrides)
    return client.post("/api/auth/register", json=body, headers=headers)


class TestAuthEndpoints:
    def test_register_returns_token_without_password(self, client):
        response = _register(client)
        assert response.status_code == 201
        data = response.json()
        assert data["token"]
        assert data["user"]["username"] == "carol"
        assert data["user"]["role"] == "customer"
        assert "password" not in data["user"]
        assert "password_hash" not in data["user"]

    def test_register_duplicate_username(self, client):
        response = _register(client, username="alice", email="other@example.com")
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_register_duplicate_email(self, client):
        response = _register(client, email="alice@example.com")
        assert response.status_code == 409

    def test_register_missing_fields(self, client):
        response = client.post("/api/auth/register", json={"username": "dave"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_register_short_password(self, client):
        assert _register(client, password="abc").status_code == 400

    def test_customer_registration_ignores_stale_token(self, client, signer):
        stale = signer.issue_session("alice", Role.customer, now=datetime.now(timezone.utc) - timedelta(days=2))
        response = _register(client, headers={"Authorization": f"Bearer {stale}"})
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "customer"

    def test_customer_registration_ignores_garbage_token(self, client):
        response = _register(client, headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 201

    def test_admin_registration_with_bad_token_rejected(self, client):
        response = _register(client, role="admin", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 403

    def test_self_registration_cannot_create_admin(self, client):
        response = _register(client, role="admin")
        assert response.status_code == 403

    def test_admin_can_register_admin(self, client, auth):
        response = _register(client, username="eve", role="admin", headers=auth("root", Role.admin))
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "admin"

    def test_login_json(self, client):
        response = client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == "alice@example.com"
        assert "password_hash" not in data["user"]

    def test_login_form(self, client):
        response = client.post("/api/auth/login", data={"username": "alice", "password": PASSWORD})
        assert response.status_code == 200

    def test_login_wrong_password(self, client):
        response = client.post("/api/auth/login", json={"username": "alice", "password": "wrong1"})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_credentials"

    def test_login_unknown_user(self, client):
        response = client.post("/api/auth/login", json={"username": "nobody", "password": PASSWORD})
        assert response.status_code == 401

    def test_login_missing_fields(self, client):
        response = client.post("/api/auth/login", json={"username": "alice"})
        assert response.status_code == 400

    def test_issued_token_works(self, client):
        token = client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD}).json()["token"]
        response = client.get("/api/orders", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200


class TestAuthentication:
    def test_missing_token_is_401(self, client):
        response = client.get("/api/orders")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_garbage_token_is_403(self, client):
        response = client.get("/api/orders", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 403
        assert response.json()["error"] == "token_rejected"

    def test_expired_token_is_403(self, client, signer):
        token = signer.issue_session("alice", Role.customer, now=datetime.now(timezone.utc) - timedelta(days=2))
        response = client.get("/api/orders", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403


class TestProductEndpoints:
    def test_list_is_public(self, client):
        response = client.get("/api/products")
        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["p1", "p2"]

    def test_search_and_category(self, client):
        assert [p["id"] for p in client.get("/api/products", params={"search": "usb"}).json()] == ["p2"]
        assert [p["id"] for p in client.get("/api/products", params={"category": "GADGETS"}).json()] == ["p1"]

    def test_detail(self, client):
        assert client.get("/api/products/p1").json()["name"] == "Widget Pro"
        assert client.get("/api/products/zzz").status_code == 404

    def test_admin_creates_product(self, client, auth):
        body = {"name": "Stapler", "price": 4.5, "category": "office", "on_hand": 10, "description": "Red"}
        response = client.post("/api/products", json=body, headers=auth("root", Role.admin))
        assert response.status_code == 201
        product_id = response.json()["id"]
        assert client.get(f"/api/products/{product_id}").json()["on_hand"] == 10

    def test_customer_cannot_create_product(self, client, auth):
        body = {"name": "Stapler", "price": 4.5, "category": "office", "on_hand": 10, "description": "Red"}
        response = client.post("/api/products", json=body, headers=auth())
        assert response.status_code == 403

    def test_negative_stock_rejected(self, client, auth):
        response = client.patch("/api/products/p1", json={"on_hand": -1}, headers=auth("root", Role.admin))
        assert response.status_code == 400
        assert client.get("/api/products/p1").json()["on_hand"] == 5

    def test_admin_updates_product(self, client, auth):
        response = client.patch("/api/products/p1", json={"price": 11.0}, headers=auth("root", Role.admin))
        assert response.status_code == 200
        assert response.json()["price"] == 11.0
        assert response.json()["on_hand"] == 5

    def test_infinite_price_rejected_on_update(self, client, auth):
        headers = {**auth("root", Role.admin), "Content-Type": "application/json"}
        response = client.patch("/api/products/p1", content='{"price": Infinity}', headers=headers)
        assert response.status_code == 400
        listing = client.get("/api/products")
        assert listing.status_code == 200
        assert listing.json()[0]["price"] == 9.99

    def test_non_finite_price_rejected_on_create(self, client, auth):
        headers = {**auth("root", Role.admin), "Content-Type": "application/json"}
        body = '{"name": "Void", "price": NaN, "category": "misc", "on_hand": 1, "description": "x"}'
        response = client.post("/api/products", content=body, headers=headers)
        assert response.status_code == 400
        assert [p["id"] for p in client.get("/api/products").json()] == ["p1", "p2"]

    def test_admin_deletes_product(self, client, auth):
        response = client.delete("/api/products/p2", headers=auth("root", Role.admin))
        assert response.status_code == 200
        assert client.get("/api/products/p2").status_code == 404
        assert client.delete("/api/products/p2", headers=auth("root", Role.admin)).status_code == 404


class TestUserEndpoints:
    def test_admin_lists_users_without_passwords(self, client, auth):
        response = client.get("/api/users", headers=auth("root", Role.admin))
        assert response.status_code == 200
        users = response.json()
        assert {u["username"] for u in users} == {"alice", "bob", "root"}
        assert all("password_hash" not in u for u in users)

    def test_customer_cannot_list_users(self, client, auth):
        assert client.get("/api/users", headers=auth()).status_code == 403

    def test_self_fetch(self, client, auth):
        response = client.get("/api/users/alice", headers=auth())
        assert response.status_code == 200
        assert "password_hash" not in response.json()

    def test_fetch_other_user_forbidden(self, client, auth):
        assert client.get("/api/users/bob", headers=auth()).status_code == 403

    def test_admin_fetch_missing_user(self, client, auth):
        assert client.get("/api/users/ghost", headers=auth("root", Role.admin)).status_code == 404

    def test_password_change(self, client, auth):
        response = client.patch("/api/users/alice", json={"password": "newpass1"}, headers=auth())
        assert response.status_code == 200
        assert "password_hash" not in response.json()
        login = client.post("/api/auth/login", json={"username": "alice", "password": "newpass1"})
        assert login.status_code == 200
        old = client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
        assert old.status_code == 401

    def test_customer_cannot_change_role(self, client, auth):
        response = client.patch("/api/users/alice", json={"role": "admin"}, headers=auth())
        assert response.status_code == 403

    def test_admin_changes_role(self, client, auth):
        response = client.patch("/api/users/alice", json={"role": "admin"}, headers=auth("root", Role.admin))
        assert response.json()["role"] == "admin"

    def test_email_must_stay_unique(self, client, auth):
        response = client.patch("/api/users/alice", json={"email": "bob@example.com"}, headers=auth())
        assert response.status_code == 409


class TestCheckoutEndpoint:
    def test_checkout_success(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(("p1", 2)), headers=auth())
        assert response.status_code == 201
        data = response.json()
        assert data["payment_status"] == "processed"
        assert data["order"]["username"] == "alice"
        assert data["order"]["total"] == 19.98
        assert data["order"]["items"] == [{"product_id": "p1", "quantity": 2, "unit_price_at_purchase": 9.99}]
        assert client.get("/api/products/p1").json()["on_hand"] == 3

    def test_username_comes_from_token(self, client, auth, checkout_body):
        body = checkout_body(("p1", 1))
        body["username"] = "bob"
        response = client.post("/api/checkout", json=body, headers=auth())
        assert response.json()["order"]["username"] == "alice"

    def test_checkout_requires_token(self, client, checkout_body):
        assert client.post("/api/checkout", json=checkout_body(("p1", 1))).status_code == 401

    def test_empty_cart(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(), headers=auth())
        assert response.status_code == 400

    def test_missing_address(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(("p1", 1), ship_address=""), headers=auth())
        assert response.status_code == 400

    def test_bad_card(self, client, auth, checkout_body):
        body = checkout_body(("p1", 1))
        body["credit_card"]["number"] = "1234"
        response = client.post("/api/checkout", json=body, headers=auth())
        assert response.status_code == 400
        assert "credit_card.number" in response.json()["detail"]
        assert "1234" not in response.text

    def test_zero_quantity(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(("p1", 0)), headers=auth())
        assert response.status_code == 400

    def test_unknown_product(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(("p1", 1), ("nope", 1)), headers=auth())
        assert response.status_code == 404
        assert response.json()["error"] == "product_not_found"
        assert response.json()["product_id"] == "nope"
        assert client.get("/api/products/p1").json()["on_hand"] == 5

    def test_insufficient_stock(self, client, auth, checkout_body):
        response = client.post("/api/checkout", json=checkout_body(("p2", 3)), headers=auth())
        assert response.status_code == 409
        data = response.json()
        assert (data["product_id"], data["available"], data["requested"]) == ("p2", 2, 3)


class TestOrderEndpoints:
    def _place(self, client, auth, checkout_body, username):
        response = client.post("/api/checkout", json=checkout_body(("p1", 1)), headers=auth(username))
        return response.json()["order"]["id"]

    def test_listing_is_scoped(self, client, auth, checkout_body):
        alice_order = self._place(client, auth, checkout_body, "alice")
        bob_order = self._place(client, auth, checkout_body, "bob")

        assert [o["id"] for o in client.get("/api/orders", headers=auth("alice")).json()] == [alice_order]
        everything = client.get("/api/orders", headers=auth("root", Role.admin)).json()
        assert [o["id"] for o in everything] == [alice_order, bob_order]

    def test_fetch_access(self, client, auth, checkout_body):
        order_id = self._place(client, auth, checkout_body, "alice")
        assert client.get(f"/api/orders/{order_id}", headers=auth("alice")).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=auth("bob")).status_code == 403
        assert client.get(f"/api/orders/{order_id}", headers=auth("root", Role.admin)).status_code == 200
        assert client.get("/api/orders/missing", headers=auth("alice")).status_code == 404

    def test_admin_patch_and_delete(self, client, auth, checkout_body):
        order_id = self._place(client, auth, checkout_body, "alice")
        admin = auth("root", Role.admin)

        response = client.patch(f"/api/orders/{order_id}", json={"status": "shipped"}, headers=admin)
        assert response.status_code == 200
        assert response.json()["status"] == "shipped"
        assert response.json()["total"] == 9.99

        assert client.patch(f"/api/orders/{order_id}", json={"status": "x"}, headers=auth("alice")).status_code == 403
        assert client.delete(f"/api/orders/{order_id}", headers=auth("alice")).status_code == 403

        assert client.delete(f"/api/orders/{order_id}", headers=admin).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=admin).status_code == 404


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"
    assert response.headers["X-Request-ID"]


def test_request_id_echoed(client):
    response = client.get("/api/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"
