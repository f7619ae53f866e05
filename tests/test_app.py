"""Tests for the JSON API: auth, CRUD routes, PDF download and sending."""
from unittest.mock import patch

import pytest

from app import create_app


def login(client, username, password):
    return client.post("/api/auth/login", json={"username": username, "password": password})


# -----------------------------
# Auth
# -----------------------------
def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "data": {"status": "ok"}}


def test_routes_require_token(client):
    resp = client.get("/api/customers")
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "error": "Authentication required"}


def test_bad_token_is_rejected(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_first_register_is_open_and_admin(client, admin_headers):
    resp = client.get("/api/auth/me", headers=admin_headers)
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["username"] == "admin"
    assert data["role"] == "admin"


def test_later_registration_needs_admin(client, admin_headers):
    resp = client.post("/api/auth/register", json={"username": "staff", "password": "secret123"})
    assert resp.status_code == 401

    resp = client.post("/api/auth/register", json={"username": "staff", "password": "secret123"}, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.get_json()["data"]["user"]["role"] == "user"

    staff_token = login(client, "staff", "secret123").get_json()["data"]["token"]
    staff_headers = {"Authorization": f"Bearer {staff_token}"}
    resp = client.post("/api/auth/register", json={"username": "other", "password": "secret123"}, headers=staff_headers)
    assert resp.status_code == 403
    assert client.get("/api/users", headers=staff_headers).status_code == 403


def test_login(client, admin_headers):
    resp = login(client, "admin", "secret123")
    assert resp.status_code == 200
    body = resp.get_json()["data"]
    assert body["user"]["username"] == "admin"
    assert body["token"]

    resp = login(client, "admin", "wrong-password")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Invalid credentials"


def test_user_admin_routes(client, admin_headers):
    resp = client.post("/api/users", json={"username": "staff", "password": "secret123"}, headers=admin_headers)
    assert resp.status_code == 201
    staff_id = resp.get_json()["data"]["id"]

    resp = client.put(f"/api/users/{staff_id}", json={"email": "staff@example.com"}, headers=admin_headers)
    assert resp.get_json()["data"]["email"] == "staff@example.com"

    resp = client.post(f"/api/users/{staff_id}/reset-password", json={"password": "changed1"}, headers=admin_headers)
    assert resp.status_code == 200
    assert login(client, "staff", "changed1").status_code == 200

    assert len(client.get("/api/users", headers=admin_headers).get_json()["data"]) == 2
    assert client.delete(f"/api/users/{staff_id}", headers=admin_headers).status_code == 200
    assert client.delete("/api/users/1", headers=admin_headers).status_code == 400


# -----------------------------
# CRUD
# -----------------------------
def test_customer_routes(client, admin_headers):
    resp = client.post("/api/customers", json={"contactName": "Jane", "email": "jane@example.com"}, headers=admin_headers)
    assert resp.status_code == 201
    cid = resp.get_json()["data"]["id"]

    resp = client.put(f"/api/customers/{cid}", json={"city": "Auckland"}, headers=admin_headers)
    assert resp.get_json()["data"]["city"] == "Auckland"
    assert client.get(f"/api/customers/{cid}", headers=admin_headers).get_json()["data"]["contactName"] == "Jane"
    assert len(client.get("/api/customers", headers=admin_headers).get_json()["data"]) == 1

    assert client.delete(f"/api/customers/{cid}", headers=admin_headers).status_code == 200
    resp = client.get(f"/api/customers/{cid}", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Customer not found"}


def test_validation_errors_are_400(client, admin_headers):
    resp = client.post("/api/customers", json={}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "contactName is required"


def test_product_routes(client, admin_headers):
    resp = client.post("/api/products", json={"name": "Phone Stand", "unitPrice": 20, "sku": "PS-001"}, headers=admin_headers)
    assert resp.status_code == 201
    pid = resp.get_json()["data"]["id"]

    resp = client.get("/api/products/suggest-sku?name=Pen%20Stand", headers=admin_headers)
    assert resp.get_json()["data"] == {"sku": "PS-002"}
    assert client.get("/api/products/suggest-sku", headers=admin_headers).status_code == 400

    resp = client.post("/api/products", json={"name": "Other", "unitPrice": 1, "sku": "PS-001"}, headers=admin_headers)
    assert resp.status_code == 409

    resp = client.put(f"/api/products/{pid}", json={"active": False}, headers=admin_headers)
    assert resp.get_json()["data"]["active"] is False
    assert client.get("/api/products?active=true", headers=admin_headers).get_json()["data"] == []
    assert client.delete(f"/api/products/{pid}", headers=admin_headers).status_code == 200


@pytest.fixture
def invoice_id(client, admin_headers):
    cid = client.post(
        "/api/customers", json={"contactName": "Jane Smith", "email": "jane@example.com"}, headers=admin_headers,
    ).get_json()["data"]["id"]
    resp = client.post("/api/sales-invoices", json={
        "customerId": cid,
        "shippingCost": 5,
        "lineItems": [
            {"productName": "Benchy", "quantity": 2, "unitPrice": 15},
            {"productName": "Phone Stand", "quantity": 1, "unitPrice": 22.5},
        ],
    }, headers=admin_headers)
    assert resp.status_code == 201
    return resp.get_json()["data"]["id"]


def test_invoice_routes(client, admin_headers, invoice_id):
    data = client.get(f"/api/sales-invoices/{invoice_id}", headers=admin_headers).get_json()["data"]
    assert data["invoiceNumber"] == "INV-0001"
    assert data["customer"]["contactName"] == "Jane Smith"
    assert len(data["lineItems"]) == 2

    resp = client.post(f"/api/sales-invoices/{invoice_id}/line-items", json={"productName": "Vase", "unitPrice": 9}, headers=admin_headers)
    assert resp.status_code == 201
    item_id = resp.get_json()["data"]["id"]
    resp = client.put(f"/api/sales-invoices/{invoice_id}/line-items/{item_id}", json={"quantity": 4}, headers=admin_headers)
    assert resp.get_json()["data"]["quantity"] == 4.0
    assert client.delete(f"/api/sales-invoices/{invoice_id}/line-items/{item_id}", headers=admin_headers).status_code == 200

    resp = client.put(f"/api/sales-invoices/{invoice_id}", json={"status": "paid"}, headers=admin_headers)
    assert resp.get_json()["data"]["status"] == "paid"
    resp = client.delete(f"/api/sales-invoices/{invoice_id}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Only draft invoices can be deleted"


def test_invoice_pdf_download(client, admin_headers, invoice_id):
    resp = client.get(f"/api/sales-invoices/{invoice_id}/pdf", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert 'filename="INV-0001.pdf"' in resp.headers["Content-Disposition"]
    assert resp.data.startswith(b"%PDF")

    again = client.get(f"/api/sales-invoices/{invoice_id}/pdf", headers=admin_headers)
    assert again.data == resp.data

    assert client.get("/api/sales-invoices/999/pdf", headers=admin_headers).status_code == 404


def test_send_invoice_marks_sent(client, admin_headers, invoice_id):
    with patch("app.send_invoice_email") as send:
        resp = client.post(f"/api/sales-invoices/{invoice_id}/send", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.get_json()["message"] == "Invoice INV-0001 sent to jane@example.com"
    _mail, _branding, customer, number, pdf_bytes = send.call_args.args
    assert (customer.email, number) == ("jane@example.com", "INV-0001")
    assert pdf_bytes.startswith(b"%PDF")

    data = client.get(f"/api/sales-invoices/{invoice_id}", headers=admin_headers).get_json()["data"]
    assert data["status"] == "sent"
    assert data["sentAt"]


def test_send_invoice_email_failure_is_502(client, admin_headers, invoice_id):
    from email_service import EmailError

    with patch("app.send_invoice_email", side_effect=EmailError("SMTP down")):
        resp = client.post(f"/api/sales-invoices/{invoice_id}/send", headers=admin_headers)
    assert resp.status_code == 502
    data = client.get(f"/api/sales-invoices/{invoice_id}", headers=admin_headers).get_json()["data"]
    assert data["status"] == "draft"


# -----------------------------
# Queue
# -----------------------------
def test_send_to_queue_and_reorder(client, admin_headers, invoice_id):
    resp = client.post(f"/api/sales-invoices/{invoice_id}/send-to-queue", headers=admin_headers)
    assert resp.status_code == 200
    queued = resp.get_json()["data"]
    assert [q["productName"] for q in queued] == ["Benchy", "Phone Stand"]

    extra = client.post("/api/queue", json={"productName": "Spare Gear"}, headers=admin_headers).get_json()["data"]
    assert extra["position"] == 3

    resp = client.patch("/api/queue/reorder", json={"itemId": extra["id"], "newPosition": 1}, headers=admin_headers)
    assert [q["productName"] for q in resp.get_json()["data"]] == ["Spare Gear", "Benchy", "Phone Stand"]
    assert client.patch("/api/queue/reorder", json={}, headers=admin_headers).status_code == 400

    resp = client.patch(f"/api/queue/{extra['id']}/status", json={"status": "printing"}, headers=admin_headers)
    assert resp.get_json()["data"]["status"] == "printing"
    resp = client.patch(f"/api/queue/{extra['id']}/status", json={"status": "melted"}, headers=admin_headers)
    assert resp.status_code == 400

    assert client.delete(f"/api/queue/{extra['id']}", headers=admin_headers).status_code == 200
    assert len(client.get("/api/queue", headers=admin_headers).get_json()["data"]) == 2


def test_queue_batch_is_all_or_nothing(client, admin_headers):
    resp = client.post("/api/queue/batch", json={"items": [{"productName": "A"}, {"productName": ""}]}, headers=admin_headers)
    assert resp.status_code == 400
    assert client.get("/api/queue", headers=admin_headers).get_json()["data"] == []

    resp = client.post("/api/queue/batch", json={"items": [{"productName": "A"}, {"productName": "B", "quantity": 2}]}, headers=admin_headers)
    assert resp.status_code == 201
    queued = client.get("/api/queue", headers=admin_headers).get_json()["data"]
    assert [(q["productName"], q["position"]) for q in queued] == [("A", 1), ("B", 2)]


def test_non_finite_amounts_are_400(client, admin_headers):
    resp = client.post("/api/sales-invoices", json={"shippingCost": "inf"}, headers=admin_headers)
    assert resp.status_code == 400
    resp = client.post("/api/queue", json={"productName": "A", "quantity": "nan"}, headers=admin_headers)
    assert resp.status_code == 400


def test_each_app_checks_tokens_with_its_own_key(client, admin_headers, tmp_path, branding, mail):
    other = create_app(
        overrides={
            "TESTING": True,
            "SECRET_KEY": "other-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'other.db').as_posix()}",
        },
        branding=branding,
        mail=mail,
    )
    assert client.get("/api/auth/me", headers=admin_headers).status_code == 200
    assert other.test_client().get("/api/auth/me", headers=admin_headers).status_code == 401
