from conftest import csrf, login

from app.csrdash.api import SqlAPI
from app.csrdash.db import session_scope
from app.csrdash.entities import RequestStatus
from app.csrdash.models import AuditEvent


def test_requests_list_filters_and_search(client):
    login(client)
    r = client.get("/admin/requests")
    assert r.status_code == 200
    for rid in ("req-001", "req-006"):
        assert rid.encode() in r.data

    r = client.get("/admin/requests?status=completed")
    assert b"req-005" in r.data
    assert b"req-001" not in r.data

    # unknown status falls back to all
    r = client.get("/admin/requests?status=bogus")
    assert b"req-003" in r.data

    r = client.get("/admin/requests?q=charged+twice")
    assert b"req-004" in r.data
    assert b"req-002" not in r.data


def test_request_detail_shows_history(client):
    login(client)
    r = client.get("/admin/requests/req-003")
    assert r.status_code == 200
    assert b"Status history" in r.data
    assert b"Subscription change rejected due to plan restrictions" in r.data

    r = client.get("/admin/requests/req-404", follow_redirects=True)
    assert b"Request not found." in r.data


def test_request_action_completes_pending_request(client):
    login(client)
    app = client.application
    with session_scope(app) as s:
        version = SqlAPI(s).get_request_by_id("req-001").version

    r = client.post(
        "/admin/requests/req-001/action",
        data={"status": "completed", "comment": "Address updated in billing system", "version": str(version), "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Request req-001 marked completed." in r.data

    with session_scope(app) as s:
        req = SqlAPI(s).get_request_by_id("req-001")
        assert req.status == RequestStatus.COMPLETED
        assert req.history[0].comment == "Address updated in billing system"
        assert req.history[0].updated_by == "admin@example.com"
        assert len(req.history) == 2
        ev = s.query(AuditEvent).filter(AuditEvent.action == "csr_request.action").one()
        assert ev.entity_id == "req-001"
        assert ev.reason == "Address updated in billing system"
        assert ev.actor_user_email == "admin@example.com"


def test_request_action_requires_comment(client):
    login(client)
    r = client.post(
        "/admin/requests/req-004/action",
        data={"status": "rejected", "comment": "  ", "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert b"Action description required." in r.data
    with session_scope(client.application) as s:
        assert SqlAPI(s).get_request_by_id("req-004").status == RequestStatus.PENDING


def test_request_action_refuses_closed_request(client):
    login(client)
    r = client.post(
        "/admin/requests/req-005/action",
        data={"status": "pending", "comment": "reopen", "csrf_token": csrf(client)},
        follow_redirects=True,
    )
    assert b"only pending requests can be actioned" in r.data
    with session_scope(client.application) as s:
        assert len(SqlAPI(s).get_request_by_id("req-005").history) == 3


def test_request_action_stale_version(client):
    login(client)
    token = csrf(client)
    client.post(
        "/admin/requests/req-006/action",
        data={"status": "pending", "comment": "Left voicemail", "version": "1", "csrf_token": token},
    )
    r = client.post(
        "/admin/requests/req-006/action",
        data={"status": "completed", "comment": "Sent brochure", "version": "1", "csrf_token": token},
        follow_redirects=True,
    )
    assert b"This record changed, please reload." in r.data
    with session_scope(client.application) as s:
        req = SqlAPI(s).get_request_by_id("req-006")
        assert req.status == RequestStatus.PENDING
        assert [h.comment for h in req.history] == ["Left voicemail", "Initial request received"]


def test_request_action_memory_backend(memory_client):
    login(memory_client)
    r = memory_client.post(
        "/admin/requests/req-004/action",
        data={"status": "rejected", "comment": "Only one charge on statement", "csrf_token": csrf(memory_client)},
        follow_redirects=True,
    )
    assert b"Request req-004 marked rejected." in r.data

    r = memory_client.get("/admin/requests/req-004")
    assert b"Only one charge on statement" in r.data
