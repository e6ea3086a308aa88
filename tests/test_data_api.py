from dataclasses import replace
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.csrdash.api import ConflictError, DataAPIError, MockAPI, SqlAPI, api_from_config
from app.csrdash.db import _sqlite_transactional
from app.csrdash.entities import (
    CardPayment,
    HistoryEntry,
    NewSubscription,
    NewVehicle,
    PlanFeatures,
    PlanType,
    RequestStatus,
    RequestType,
    SubscriptionStatus,
    BillingFrequency,
)
from app.csrdash.models import Base
from app.csrdash.modules.csr_requests.service import apply_action, new_request
from app.csrdash.modules.subscriptions import models as sub_m
from app.csrdash.modules.subscriptions.service import VehicleLimitError
from app.csrdash.seed import seed_data


@pytest.fixture(params=["memory", "sql"])
def api(request, tmp_path):
    if request.param == "memory":
        yield MockAPI()
        return
    engine = create_engine(f"sqlite:///{tmp_path/'api.db'}")
    _sqlite_transactional(engine)
    Base.metadata.create_all(bind=engine)
    s = sessionmaker(bind=engine, expire_on_commit=False)()
    sql_api = SqlAPI(s)
    sql_api.import_seed(seed_data())
    s.commit()
    try:
        yield sql_api
    finally:
        s.close()
        engine.dispose()


def _vehicle(vin: str) -> NewVehicle:
    return NewVehicle(vin=vin, make="Mazda", model="CX-5", year=2022, color="Red", license_plate="MZD0001")


def test_request_lookups(api):
    assert len(api.get_all_requests()) == 6
    assert {r.id for r in api.get_requests_by_status("pending")} == {"req-001", "req-004", "req-006"}
    assert {r.id for r in api.get_requests_by_customer_id("cust-1001")} == {"req-001", "req-006"}
    req = api.get_request_by_id("req-002")
    assert req.status == RequestStatus.APPROVED
    assert [h.timestamp for h in req.history] == sorted((h.timestamp for h in req.history), reverse=True)
    assert api.get_request_by_id("req-404") is None


def test_append_history_entry(api):
    req = api.get_request_by_id("req-001")
    entry = HistoryEntry(
        timestamp=datetime(2025, 7, 1, 9, 30),
        status=RequestStatus.COMPLETED,
        updated_by="csr@example.com",
        comment="Address updated",
    )
    updated = api.append_history_entry("req-001", entry, expected_version=req.version)

    assert updated.status == RequestStatus.COMPLETED
    assert updated.updated_at == entry.timestamp
    assert updated.history[0] == entry
    assert len(updated.history) == len(req.history) + 1
    assert updated.version > req.version

    again = api.get_request_by_id("req-001")
    assert again.history[0].comment == "Address updated"


def test_append_history_entry_stale_version(api):
    req = api.get_request_by_id("req-004")
    entry = HistoryEntry(timestamp=datetime(2025, 7, 1), status=RequestStatus.REJECTED, updated_by="a", comment="x")
    api.append_history_entry("req-004", entry, expected_version=req.version)
    with pytest.raises(ConflictError):
        api.append_history_entry("req-004", entry, expected_version=req.version)


def test_create_request(api):
    req = new_request(
        request_id="req-007",
        customer_id="cust-1003",
        request_type=RequestType.OTHER,
        details="Question about detailing",
        actor_id="csr@example.com",
        now=datetime(2025, 7, 2, 10, 0),
    )
    created = api.create_request(req)
    assert created.id == "req-007"
    assert created.status == RequestStatus.PENDING
    assert len(created.history) == 1
    assert len(api.get_all_requests()) == 7

    with pytest.raises(DataAPIError, match="already exists"):
        api.create_request(req)

    orphan = new_request(
        request_id="req-008",
        customer_id="cust-9999",
        request_type=RequestType.OTHER,
        details="?",
        actor_id="csr",
    )
    with pytest.raises(DataAPIError, match="customer not found"):
        api.create_request(orphan)


def test_customer_lookups(api):
    assert len(api.get_all_customers()) == 4
    assert api.get_customer_by_email("ALICE.JOHNSON@example.com").id == "cust-1001"
    assert api.get_customer_by_email("nobody@example.com") is None
    assert [c.id for c in api.get_customers_by_name("johns")] == ["cust-1001"]
    assert [c.id for c in api.get_customers_by_name("bob martinez")] == ["cust-1002"]
    assert api.get_customers_by_name("   ") == []
    assert [c.id for c in api.get_customers_by_phone("5553456789")] == ["cust-1003"]


def test_update_customer_details(api):
    address = {"street": "456 New Ave", "city": "Springfield", "state": "IL", "zip_code": "62704"}
    updated = api.update_customer_details(
        "cust-1001",
        {"first_name": "Alice", "last_name": "Johnson-Lee", "email": "alice.lee@example.com", "phone": "5550001111"},
        address,
    )
    assert updated.last_name == "Johnson-Lee"
    assert updated.address.street == "456 New Ave"
    assert api.get_customer_by_email("alice.lee@example.com").id == "cust-1001"

    with pytest.raises(DataAPIError, match="Failed to update user info"):
        api.update_customer_details("cust-1002", {"email": "alice.lee@example.com"}, address)

    assert api.update_customer_details("cust-9999", {}, address) is None


def test_customer_with_subscriptions_and_purchases(api):
    found = api.get_customer_with_subscriptions("cust-1001")
    assert [s.id for s in found.subscriptions] == ["sub-001"]
    assert found.customer.subscription_ids == ["sub-001"]
    assert sorted(found.customer.request_ids) == ["req-001", "req-006"]
    assert api.get_customer_with_subscriptions("cust-9999") is None

    purchases = api.get_purchases_by_customer_id("cust-1001")
    assert [p.id for p in purchases] == ["pur-004", "pur-003", "pur-002", "pur-001"]
    assert [v.id for v in api.get_vehicles_by_ids(["veh-002", "veh-404", "veh-001", "veh-002"])] == ["veh-002", "veh-001"]


def test_subscription_status_and_conflict(api):
    sub = api.get_subscription_by_id("sub-001")
    paused = api.update_subscription_status("sub-001", "paused", expected_version=sub.version)
    assert paused.status == SubscriptionStatus.PAUSED
    assert paused.paused_at is not None
    assert paused.version > sub.version

    with pytest.raises(ConflictError):
        api.update_subscription_status("sub-001", "active", expected_version=sub.version)
    assert api.update_subscription_status("sub-404", "active") is None


def test_add_and_remove_vehicle(api):
    with pytest.raises(VehicleLimitError):
        api.add_vehicle_to_subscription("sub-001", _vehicle("JM3KFBCM1N0000001"))
    assert len(api.get_subscription_by_id("sub-001").vehicles) == 2

    # VIN registered on another subscription
    with pytest.raises(DataAPIError, match="already registered"):
        api.add_vehicle_to_subscription("sub-003", _vehicle("1HGCM82633A004352"))

    updated = api.add_vehicle_to_subscription("sub-003", _vehicle("JM3KFBCM1N0000001"))
    assert [v.vin for v in updated.vehicles][-1] == "JM3KFBCM1N0000001"
    new_id = updated.vehicles[-1].id
    assert new_id == "veh-006"

    after = api.remove_vehicle_from_subscription("sub-003", new_id)
    assert [v.id for v in after.vehicles] == ["veh-004"]


def test_update_subscription_transfer(api):
    sub = api.get_subscription_by_id("sub-002")
    sub.customer_id = "cust-1003"
    moved = api.update_subscription(sub, expected_version=sub.version)
    assert moved.customer_id == "cust-1003"
    assert [s.id for s in api.get_subscriptions_by_customer_id("cust-1003")] == ["sub-002", "sub-003"]

    moved.customer_id = "cust-9999"
    with pytest.raises(DataAPIError, match="Customer not found"):
        api.update_subscription(moved)


def test_create_and_delete_subscription(api):
    draft = NewSubscription(
        customer_id="cust-1003",
        plan_type=PlanType.BASIC,
        plan_features=PlanFeatures(1, 4, False),
        status=SubscriptionStatus.ACTIVE,
        start_date=datetime(2025, 7, 1),
        location_ids=("loc-001", "loc-003"),
        amount=Decimal("29.99"),
        currency="USD",
        frequency=BillingFrequency.MONTHLY,
        next_billing_date=datetime(2025, 8, 1),
        payment_method=CardPayment(id="", card_brand="Amex", card_last4="0005"),
    )
    created = api.create_subscription(draft)
    assert created.id == "sub-005"
    assert created.billing_info.payment_method.id == "pm-005"
    assert sorted(loc.id for loc in created.locations) == ["loc-001", "loc-003"]
    assert created.vehicles == []

    assert api.delete_subscription("sub-005").success
    assert api.get_subscription_by_id("sub-005") is None
    result = api.delete_subscription("sub-005")
    assert not result.success
    assert result.error == "Subscription not found"


def test_create_subscription_unknown_location(api):
    draft = NewSubscription(
        customer_id="cust-1003",
        plan_type=PlanType.BASIC,
        plan_features=PlanFeatures(1, 4, False),
        status=SubscriptionStatus.ACTIVE,
        start_date=datetime(2025, 7, 1),
        location_ids=("loc-404",),
        amount=Decimal("29.99"),
        currency="USD",
        frequency=BillingFrequency.MONTHLY,
        next_billing_date=datetime(2025, 8, 1),
        payment_method=CardPayment(id="", card_brand="Amex", card_last4="0005"),
    )
    with pytest.raises(DataAPIError, match="unknown location"):
        api.create_subscription(draft)


def test_dashboard_stats(api):
    stats = api.get_dashboard_stats()
    assert stats.total_requests == 6
    assert stats.pending_requests == 3
    assert stats.completed_requests == 1
    assert stats.total_customers == 4
    assert stats.active_subscriptions == 2
    assert stats.monthly_revenue == Decimal("79.98")


def test_memory_store_hands_out_copies():
    api = MockAPI()
    req = api.get_request_by_id("req-001")
    req.status = RequestStatus.COMPLETED
    assert api.get_request_by_id("req-001").status == RequestStatus.PENDING


def test_api_from_config():
    assert isinstance(api_from_config({"DATA_BACKEND": "memory"}), MockAPI)
    with pytest.raises(ValueError):
        api_from_config({"DATA_BACKEND": "sql"})
    with pytest.raises(ValueError):
        api_from_config({"DATA_BACKEND": "csv"})


def test_update_request_overwrites_status_and_history(api):
    req = api.get_request_by_id("req-004")
    before = len(req.history)
    apply_action(req, RequestStatus.COMPLETED, "csr@example.com", "resolved", now=datetime(2025, 7, 2, 10, 0))

    out = api.update_request(req, expected_version=req.version)
    assert out.status == RequestStatus.COMPLETED
    assert out.updated_at == datetime(2025, 7, 2, 10, 0)
    assert out.history[0].comment == "resolved"
    assert len(out.history) == before + 1
    assert out.version > req.version

    again = api.get_request_by_id("req-004")
    assert again.history == out.history
    assert [h.timestamp for h in again.history] == sorted((h.timestamp for h in again.history), reverse=True)

    with pytest.raises(ConflictError):
        api.update_request(req, expected_version=req.version)
    assert api.update_request(replace(req, id="req-404")) is None


def test_every_request_write_bumps_version(api):
    # no column changes at all
    req = api.get_request_by_id("req-002")
    out = api.update_request(req, expected_version=req.version)
    assert out.version > req.version
    with pytest.raises(ConflictError):
        api.update_request(req, expected_version=req.version)

    # same status and timestamp; only the history grows
    req = api.get_request_by_id("req-006")
    note = HistoryEntry(timestamp=req.updated_at, status=req.status, updated_by="csr@example.com", comment="Left a voicemail")
    out = api.append_history_entry("req-006", note, expected_version=req.version)
    assert out.version > req.version
    with pytest.raises(ConflictError):
        api.append_history_entry("req-006", note, expected_version=req.version)


def test_vehicle_ids_are_not_reused_after_removal(api):
    first = api.add_vehicle_to_subscription("sub-003", _vehicle("JM3KFBCM1N0000001")).vehicles[-1].id
    api.remove_vehicle_from_subscription("sub-003", first)
    second = api.add_vehicle_to_subscription("sub-003", _vehicle("JM3KFBCM1N0000002")).vehicles[-1].id
    assert first == "veh-006"
    assert second == "veh-007"


@pytest.fixture()
def sql_api(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'rollback.db'}")
    _sqlite_transactional(engine)
    Base.metadata.create_all(bind=engine)
    s = sessionmaker(bind=engine, expire_on_commit=False)()
    api = SqlAPI(s)
    api.import_seed(seed_data())
    s.commit()
    try:
        yield api
    finally:
        s.close()
        engine.dispose()


def test_create_subscription_failure_leaves_no_rows(sql_api, monkeypatch):
    s = sql_api.s
    real_add = s.add

    def add(obj, *args, **kwargs):
        if isinstance(obj, sub_m.SubscriptionLocation):
            # earlier steps are written before the link fails
            s.flush()
            raise SQLAlchemyError("location link rejected")
        return real_add(obj, *args, **kwargs)

    draft = NewSubscription(
        customer_id="cust-1003",
        plan_type=PlanType.BASIC,
        plan_features=PlanFeatures(1, 4, False),
        status=SubscriptionStatus.ACTIVE,
        start_date=datetime(2025, 7, 1),
        location_ids=("loc-001",),
        amount=Decimal("29.99"),
        currency="USD",
        frequency=BillingFrequency.MONTHLY,
        next_billing_date=datetime(2025, 8, 1),
        payment_method=CardPayment(id="", card_brand="Amex", card_last4="0005"),
    )
    with monkeypatch.context() as m:
        m.setattr(s, "add", add)
        with pytest.raises(DataAPIError, match="location link rejected"):
            sql_api.create_subscription(draft)

    assert sql_api.get_subscription_by_id("sub-005") is None
    assert s.query(sub_m.BillingInfo).filter_by(subscription_id="sub-005").count() == 0
    assert s.query(sub_m.SubscriptionPlanFeatures).filter_by(subscription_id="sub-005").count() == 0
    assert s.query(sub_m.SubscriptionLocation).filter_by(subscription_id="sub-005").count() == 0
    assert s.get(sub_m.PaymentMethod, "pm-005") is None


class _RejectingDelete:
    def filter_by(self, **kwargs):
        return self

    def delete(self):
        raise SQLAlchemyError("row is locked")


def test_delete_subscription_failure_rolls_back_earlier_steps(sql_api, monkeypatch):
    s = sql_api.s
    real_query = s.query

    def query(*entities, **kwargs):
        if entities and entities[0] is sub_m.SubscriptionLocation:
            return _RejectingDelete()
        return real_query(*entities, **kwargs)

    with monkeypatch.context() as m:
        m.setattr(s, "query", query)
        result = sql_api.delete_subscription("sub-003")

    assert not result.success
    assert result.error.startswith("Failed to delete location links")
    sub = sql_api.get_subscription_by_id("sub-003")
    assert sub is not None
    assert sub.billing_info.discount.percentage == Decimal("10")
    assert sub.billing_info.payment_method.id
    assert sorted(loc.id for loc in sub.locations) == ["loc-002", "loc-003"]
    assert [v.vin for v in sub.vehicles] == ["5YJ3E1EA7KF317000"]
