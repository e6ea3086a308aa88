from datetime import datetime
from decimal import Decimal

import pytest

from app.csrdash.entities import NewVehicle, PlanFeatures, PlanType, SubscriptionStatus
from app.csrdash.modules.subscriptions.service import (
    DuplicateVehicleError,
    VehicleLimitError,
    add_vehicle,
    build_vehicle,
    modify_subscription,
    next_vehicle_id,
    remove_vehicle,
    set_status,
    summarize_customer_subscriptions,
    transfer_subscription,
    validate_modify_payload,
    validate_vehicle_payload,
)
from app.csrdash.seed import seed_data


def _sub(sid: str):
    return next(s for s in seed_data().subscriptions if s.id == sid)


def _new_vehicle(vin: str = "JH4KA8260MC000001") -> NewVehicle:
    return NewVehicle(vin=vin, make="Acura", model="Legend", year=2021, color="Gray", license_plate="NEW0001")


def test_pause_then_resume_clears_paused_at():
    sub = _sub("sub-001")
    t1 = datetime(2025, 7, 1, 9, 0)
    set_status(sub, SubscriptionStatus.PAUSED, now=t1)
    assert sub.status == SubscriptionStatus.PAUSED
    assert sub.paused_at == t1
    assert sub.updated_at == t1

    set_status(sub, "active", now=datetime(2025, 7, 2, 9, 0))
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.paused_at is None


def test_cancel_stamps_end_date():
    sub = _sub("sub-002")
    when = datetime(2025, 7, 3, 10, 0)
    set_status(sub, SubscriptionStatus.CANCELLED, now=when)
    assert sub.cancelled_at == when
    assert sub.end_date == when


def test_cancelled_can_be_reactivated():
    sub = _sub("sub-004")
    set_status(sub, SubscriptionStatus.ACTIVE)
    assert sub.status == SubscriptionStatus.ACTIVE
    # history of the cancellation is kept
    assert sub.cancelled_at is not None


def test_add_vehicle_at_limit_raises_and_leaves_vehicles_alone():
    sub = _sub("sub-001")
    assert len(sub.vehicles) == sub.plan_features.max_vehicles == 2
    with pytest.raises(VehicleLimitError, match=r"Maximum vehicles \(2\) reached for this plan"):
        add_vehicle(sub, _new_vehicle(), vehicle_id="veh-100")
    assert len(sub.vehicles) == 2


def test_single_vehicle_plan_rejects_a_second_vehicle():
    sub = _sub("sub-002")
    sub.plan_features = PlanFeatures(max_vehicles=1, max_washes_per_month=4, detailing_included=False)
    assert len(sub.vehicles) == 1
    with pytest.raises(VehicleLimitError, match=r"Maximum vehicles \(1\) reached for this plan"):
        add_vehicle(sub, _new_vehicle(), vehicle_id="veh-100")
    assert [v.id for v in sub.vehicles] == ["veh-003"]


def test_add_vehicle_duplicate_vin_is_case_insensitive():
    sub = _sub("sub-003")
    with pytest.raises(DuplicateVehicleError, match="Vehicle already exists"):
        add_vehicle(sub, _new_vehicle("5yj3e1ea7kf317000"), vehicle_id="veh-100")
    assert len(sub.vehicles) == 1


def test_add_vehicle_normalizes_vin_and_stamps_times():
    sub = _sub("sub-003")
    when = datetime(2025, 7, 4, 8, 0)
    v = add_vehicle(sub, _new_vehicle("jh4ka8260mc000001"), vehicle_id="veh-100", now=when)
    assert v.vin == "JH4KA8260MC000001"
    assert v.added_at == when
    assert sub.updated_at == when
    assert [x.id for x in sub.vehicles] == ["veh-004", "veh-100"]


def test_remove_vehicle_may_leave_subscription_empty():
    sub = _sub("sub-002")
    removed = remove_vehicle(sub, "veh-003")
    assert removed is not None and removed.id == "veh-003"
    assert sub.vehicles == []
    assert remove_vehicle(sub, "veh-003") is None


def test_next_vehicle_id():
    assert next_vehicle_id(["veh-001", "veh-005"]) == "veh-006"
    assert next_vehicle_id([]) == "veh-001"


def test_validate_vehicle_payload():
    ok = {"vin": "1HGCM82633A004399", "make": "Honda", "model": "Civic", "year": "2020", "color": "Red", "license_plate": "abc123"}
    assert validate_vehicle_payload(ok) == []
    bad = dict(ok, vin="not a vin!", year="1800", make="")
    assert {e.field for e in validate_vehicle_payload(bad)} == {"vin", "year", "make"}

    v = build_vehicle(dict(ok, vin=" 1hgcm82633a004399 "))
    assert v.vin == "1HGCM82633A004399"
    assert v.license_plate == "ABC123"
    assert v.year == 2020


def test_modify_subscription_below_vehicle_count_is_allowed():
    sub = _sub("sub-001")
    when = datetime(2025, 7, 5, 9, 0)
    modify_subscription(
        sub,
        plan_type=PlanType.BASIC,
        plan_features=PlanFeatures(1, 4, False),
        status=SubscriptionStatus.PAUSED,
        amount=Decimal("29.99"),
        now=when,
    )
    assert sub.plan_type == PlanType.BASIC
    assert sub.billing_info.amount == Decimal("29.99")
    assert sub.paused_at == when
    assert len(sub.vehicles) == 2
    with pytest.raises(VehicleLimitError):
        add_vehicle(sub, _new_vehicle(), vehicle_id="veh-100")


def test_validate_modify_payload():
    ok = {"plan_type": "Premium", "status": "active", "max_vehicles": "3", "max_washes_per_month": "12", "amount": "89.99"}
    assert validate_modify_payload(ok) == []
    errs = validate_modify_payload(dict(ok, plan_type="Gold", max_vehicles="0", amount="-1"))
    assert {e.field for e in errs} == {"plan_type", "max_vehicles", "amount"}


def test_transfer_subscription():
    sub = _sub("sub-001")
    transfer_subscription(sub, "cust-1002")
    assert sub.customer_id == "cust-1002"
    with pytest.raises(ValueError, match="already belongs"):
        transfer_subscription(sub, "cust-1002")
    with pytest.raises(ValueError, match="Select a customer"):
        transfer_subscription(sub, "  ")


def test_summarize_customer_subscriptions():
    subs = seed_data().subscriptions
    summary = summarize_customer_subscriptions(subs)
    assert summary.active_count == 2
    assert summary.has_active_subscription
    assert summary.total_vehicles == 5

    none_active = summarize_customer_subscriptions([s for s in subs if s.status != SubscriptionStatus.ACTIVE])
    assert not none_active.has_active_subscription
