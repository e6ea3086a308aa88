import json

from conftest import csrf, login

from app.csrdash.api import SqlAPI
from app.csrdash.db import session_scope
from app.csrdash.entities import RequestStatus, RequestType
from app.csrdash.models import AuditEvent

PROFILE = {
    "first_name": "Alice",
    "last_name": "Johnson",
    "email": "alice.johnson@example.com",
    "phone": "(555) 123-4567",
    "street": "456 New Ave",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62704",
}


def test_customers_list_and_fuzzy_search(client):
    login(client)
    r = client.get("/admin/customers")
    assert r.status_code == 200
    for name in (b"Alice Johnson", b"Bob Martinez", b"Carol Nguyen", b"David Smith"):
        assert name in r.data

    r = client.get("/admin/customers?q=jonhson")
    assert b"Alice Johnson" in r.data
    assert b"David Smith" not in r.data


def test_customer_detail_tabs(client):
    login(client)
    r = client.get("/admin/customers/cust-1001")
    assert r.status_code == 200
    assert b"(555) 123-4567" in r.data
    assert b"1 active subscription" in r.data

    r = client.get("/admin/customers/cust-1001?tab=subscriptions")
    assert b"sub-001" in r.data
    assert b"New subscription" in r.data

    r = client.get("/admin/customers/cust-1001?tab=requests")
    assert b"req-001" in r.data and b"req-006" in r.data
    assert b"Log a request" in r.data

    r = client.get("/admin/customers/cust-9999", follow_redirects=True)
    assert b"Customer not found." in r.data


def test_purchase_history_tab(client):
    login(client)
    r = client.get("/admin/customers/cust-1001?tab=purchases")
    assert r.status_code == 200
    assert b"2019 Honda Accord" in r.data
    assert b"Subscription (3)" in r.data
    assert b"Paid (1)" in r.data
    assert b"Showing 1-4 of 4" in r.data

    r = client.get("/admin/customers/cust-1001?tab=purchases&kind=paid")
    assert b"$24.99" in r.data
    assert b"2018 Toyota Corolla" not in r.data

    # Purchase without a vehicle
    r = client.get("/admin/customers/cust-1002?tab=purchases&sort=amount&dir=desc")
    assert b"Unknown Vehicle" in r.data
    assert r.data.index(b"$15.00") < r.data.index(b"$0.00")


def test_customer_update(client):
    login(client)
    r = client.post(
        "/admin/customers/cust-1001",
        data={**PROFILE, "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert b"Customer details updated." in r.data

    app = client.application
    with session_scope(app) as s:
        c = SqlAPI(s).get_customer_by_id("cust-1001")
        assert c.phone == "5551234567"
        assert c.address.street == "456 New Ave"
        ev = s.query(AuditEvent).filter(AuditEvent.action == "customer.update").one()
        assert json.loads(ev.metadata_json)["changed"] == ["address"]


def test_customer_update_validation(client):
    login(client)
    bad = {**PROFILE, "state": "Illinois", "zip_code": "6270", "email": "nope"}
    r = client.post("/admin/customers/cust-1001", data={**bad, "csrf_token": csrf(client)}, follow_redirects=True)
    assert b"State must be a 2-letter code" in r.data
    assert b"ZIP code must be 12345 or 12345-6789." in r.data
    assert b"Email address is not valid." in r.data

    with session_scope(client.application) as s:
        assert SqlAPI(s).get_customer_by_id("cust-1001").address.street == "123 Main St"


def test_customer_update_duplicate_email(client):
    login(client)
    r = client.post(
        "/admin/customers/cust-1001",
        data={**PROFILE, "email": "bob.martinez@example.com", "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert b"Failed to update user info" in r.data
    with session_scope(client.application) as s:
        assert SqlAPI(s).get_customer_by_id("cust-1001").email == "alice.johnson@example.com"


def test_viewer_cannot_edit_customer(client):
    login(client, "viewer@example.com")
    r = client.get("/admin/customers/cust-1001")
    assert b"disabled" in r.data
    r = client.post("/admin/customers/cust-1001", data={**PROFILE, "csrf_token": csrf(client)})
    assert r.status_code == 403


def test_log_new_request(client):
    login(client)
    r = client.post(
        "/admin/customers/cust-1003/requests/new",
        data={"request_type": "billing_issue", "details": "Annual renewal amount looks wrong", "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Request req-007 logged." in r.data

    with session_scope(client.application) as s:
        req = SqlAPI(s).get_request_by_id("req-007")
        assert req.customer_id == "cust-1003"
        assert req.request_type == RequestType.BILLING_ISSUE
        assert req.status == RequestStatus.PENDING
        assert req.history[0].comment == "Initial request received"
        assert s.query(AuditEvent).filter(AuditEvent.action == "csr_request.create").count() == 1


def test_log_new_request_requires_details(client):
    login(client)
    r = client.post(
        "/admin/customers/cust-1003/requests/new",
        data={"request_type": "other", "details": " ", "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert b"details: Request details are required." in r.data
    with session_scope(client.application) as s:
        assert SqlAPI(s).get_request_by_id("req-007") is None
