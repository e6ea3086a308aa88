from __future__ import annotations

from datetime import date
from typing import Any

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.csrdash.api import ConflictError, DataAPIError, data_api
from app.csrdash.audit import record_event
from app.csrdash.db import db_session
from app.csrdash.entities import BillingFrequency, PlanFeatures, PlanType
from app.csrdash.models import User
from app.csrdash.modules.subscriptions.service import (
    PLAN_PRESETS,
    SELECTABLE_STATUSES,
    build_new_subscription,
    build_vehicle,
    discount_display,
    modify_subscription,
    monthly_amount,
    transfer_subscription,
    validate_modify_payload,
    validate_new_subscription,
    validate_vehicle_payload,
)
from app.csrdash.rbac import require_permission

bp = Blueprint("subscriptions", __name__)

TABS = ("overview", "vehicles", "locations", "billing")

_NEW_FIELDS = (
    "plan_type",
    "max_vehicles",
    "max_washes_per_month",
    "amount",
    "frequency",
    "start_date",
    "payment_type",
    "card_brand",
    "card_last4",
    "paypal_email",
    "bank_account_last4",
    "discount_type",
    "discount_percentage",
    "discount_amount",
    "discount_reason",
    "discount_valid_until",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _flash_errors(errors) -> None:
    flash("; ".join(f"{e.field}: {e.message}" for e in errors), "danger")


def _detail(subscription_id: str, tab: str = "overview"):
    return redirect(url_for("subscriptions.subscription_detail", subscription_id=subscription_id, tab=tab))


def _not_found():
    flash("Subscription not found.", "danger")
    return redirect(url_for("customers.customers_list"))


@bp.get("/subscriptions/<subscription_id>")
@require_permission("subscriptions.view")
def subscription_detail(subscription_id: str):
    api = data_api()
    sub = api.get_subscription_by_id(subscription_id)
    if sub is None:
        return _not_found()
    tab = (request.args.get("tab") or "overview").strip()
    if tab not in TABS:
        tab = "overview"
    customer = api.get_customer_by_id(sub.customer_id)
    others = [c for c in api.get_all_customers() if c.id != sub.customer_id]
    return render_template(
        "admin/subscriptions/detail.html",
        sub=sub,
        customer=customer,
        transfer_candidates=others,
        tab=tab,
        tabs=TABS,
        statuses=[st.value for st in SELECTABLE_STATUSES],
        plan_types=[p.value for p in PlanType],
        presets=PLAN_PRESETS,
        monthly=monthly_amount(sub.billing_info),
        discount_label=discount_display(sub.billing_info.discount),
        at_vehicle_limit=len(sub.vehicles) >= sub.plan_features.max_vehicles,
        current_year=date.today().year,
    )


@bp.post("/subscriptions/<subscription_id>/status")
@require_permission("subscriptions.edit")
def subscription_status(subscription_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    new_status = (request.form.get("status") or "").strip()
    if new_status not in {st.value for st in SELECTABLE_STATUSES}:
        flash("status: Choose active, paused or cancelled.", "danger")
        return _detail(subscription_id)
    try:
        before = api.get_subscription_by_id(subscription_id)
        if before is None:
            return _not_found()
        api.update_subscription_status(subscription_id, new_status, expected_version=request.form.get("version"))
        record_event(
            s,
            actor=u,
            action="subscription.status",
            entity_type="VehicleSubscription",
            entity_id=subscription_id,
            metadata={"from": before.status.value, "to": new_status},
        )
        s.commit()
        flash(f"Subscription status changed to {new_status}.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Status change failed (id=%s)", subscription_id)
        flash(str(e), "danger")
    return _detail(subscription_id)


@bp.post("/subscriptions/<subscription_id>/modify")
@require_permission("subscriptions.edit")
def subscription_modify(subscription_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    payload = {k: request.form.get(k) for k in ("plan_type", "status", "max_vehicles", "max_washes_per_month", "amount")}
    errors = validate_modify_payload(payload)
    if errors:
        _flash_errors(errors)
        return _detail(subscription_id)

    sub = api.get_subscription_by_id(subscription_id)
    if sub is None:
        return _not_found()
    before_plan = sub.plan_type.value
    modify_subscription(
        sub,
        plan_type=payload["plan_type"],
        plan_features=PlanFeatures(
            max_vehicles=int(payload["max_vehicles"]),
            max_washes_per_month=int(payload["max_washes_per_month"]),
            detailing_included=bool(request.form.get("detailing_included")),
        ),
        status=payload["status"],
        amount=payload["amount"],
    )
    try:
        api.update_subscription(sub, expected_version=request.form.get("version"))
        record_event(
            s,
            actor=u,
            action="subscription.modify",
            entity_type="VehicleSubscription",
            entity_id=subscription_id,
            metadata={
                "from_plan": before_plan,
                "plan_type": sub.plan_type.value,
                "status": sub.status.value,
                "amount": str(sub.billing_info.amount),
            },
        )
        s.commit()
        flash("Subscription updated.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Modify failed (id=%s)", subscription_id)
        flash(str(e), "danger")
    return _detail(subscription_id)


@bp.post("/subscriptions/<subscription_id>/transfer")
@require_permission("subscriptions.edit")
def subscription_transfer(subscription_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    sub = api.get_subscription_by_id(subscription_id)
    if sub is None:
        return _not_found()
    from_customer = sub.customer_id
    try:
        transfer_subscription(sub, request.form.get("customer_id") or "")
    except ValueError as e:
        flash(str(e), "danger")
        return _detail(subscription_id)
    try:
        api.update_subscription(sub, expected_version=request.form.get("version"))
        record_event(
            s,
            actor=u,
            action="subscription.transfer",
            entity_type="VehicleSubscription",
            entity_id=subscription_id,
            metadata={"from": from_customer, "to": sub.customer_id},
        )
        s.commit()
        flash(f"Subscription transferred to {sub.customer_id}.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Transfer failed (id=%s)", subscription_id)
        flash(str(e), "danger")
    return _detail(subscription_id)


@bp.post("/subscriptions/<subscription_id>/vehicles")
@require_permission("subscriptions.edit")
def subscription_vehicle_add(subscription_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    payload = {k: request.form.get(k) for k in ("vin", "make", "model", "year", "color", "license_plate")}
    errors = validate_vehicle_payload(payload)
    if errors:
        _flash_errors(errors)
        return _detail(subscription_id, "vehicles")

    vehicle = build_vehicle(payload)
    try:
        updated = api.add_vehicle_to_subscription(subscription_id, vehicle, expected_version=request.form.get("version"))
        if updated is None:
            return _not_found()
        record_event(
            s,
            actor=u,
            action="subscription.vehicle_add",
            entity_type="VehicleSubscription",
            entity_id=subscription_id,
            metadata={"vin": vehicle.vin, "plate": vehicle.license_plate},
        )
        s.commit()
        flash(f"Vehicle {vehicle.year} {vehicle.make} {vehicle.model} added.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except (ValueError, DataAPIError) as e:
        # VehicleLimitError / DuplicateVehicleError are ValueErrors
        s.rollback()
        flash(str(e), "danger")
    return _detail(subscription_id, "vehicles")


@bp.post("/subscriptions/<subscription_id>/vehicles/<vehicle_id>/remove")
@require_permission("subscriptions.edit")
def subscription_vehicle_remove(subscription_id: str, vehicle_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    try:
        updated = api.remove_vehicle_from_subscription(
            subscription_id, vehicle_id, expected_version=request.form.get("version")
        )
        if updated is None:
            return _not_found()
        record_event(
            s,
            actor=u,
            action="subscription.vehicle_remove",
            entity_type="VehicleSubscription",
            entity_id=subscription_id,
            metadata={"vehicle_id": vehicle_id},
        )
        s.commit()
        flash("Vehicle removed.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Vehicle removal failed (id=%s vehicle=%s)", subscription_id, vehicle_id)
        flash(str(e), "danger")
    return _detail(subscription_id, "vehicles")


@bp.post("/subscriptions/<subscription_id>/delete")
@require_permission("subscriptions.delete")
def subscription_delete(subscription_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    sub = api.get_subscription_by_id(subscription_id)
    if sub is None:
        return _not_found()
    if (request.form.get("confirm") or "").strip() != subscription_id:
        flash("Type the subscription ID to confirm deletion.", "danger")
        return _detail(subscription_id)

    result = api.delete_subscription(subscription_id)
    if not result.success:
        s.rollback()
        current_app.logger.error("Delete failed (id=%s): %s", subscription_id, result.error)
        flash(result.error or "Failed to delete subscription.", "danger")
        return _detail(subscription_id)
    record_event(
        s,
        actor=u,
        action="subscription.delete",
        entity_type="VehicleSubscription",
        entity_id=subscription_id,
        metadata={"customer_id": sub.customer_id, "plan_type": sub.plan_type.value},
    )
    s.commit()
    flash(f"Subscription {subscription_id} deleted.", "success")
    return redirect(url_for("customers.customer_detail", customer_id=sub.customer_id, tab="subscriptions"))


def _new_form_payload(customer_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = {k: request.form.get(k) for k in _NEW_FIELDS}
    payload["customer_id"] = customer_id
    payload["location_ids"] = [x for x in request.form.getlist("location_ids") if x]
    payload["has_discount"] = bool(request.form.get("has_discount"))
    payload["detailing_included"] = bool(request.form.get("detailing_included"))
    return payload


@bp.get("/customers/<customer_id>/subscriptions/new")
@require_permission("subscriptions.create")
def subscription_new_get(customer_id: str):
    api = data_api()
    customer = api.get_customer_by_id(customer_id)
    if customer is None:
        flash("Customer not found.", "danger")
        return redirect(url_for("customers.customers_list"))
    preset = PLAN_PRESETS[PlanType.BASIC]
    form = {
        "plan_type": PlanType.BASIC.value,
        "max_vehicles": preset.max_vehicles,
        "max_washes_per_month": preset.max_washes_per_month,
        "detailing_included": preset.detailing_included,
        "amount": preset.amount,
        "frequency": BillingFrequency.MONTHLY.value,
        "start_date": date.today().isoformat(),
        "payment_type": "card",
        "location_ids": [],
    }
    return render_template(
        "admin/subscriptions/new.html",
        customer=customer,
        locations=api.get_all_locations(),
        plan_types=[p.value for p in PlanType],
        frequencies=[f.value for f in BillingFrequency],
        presets=PLAN_PRESETS,
        form=form,
    )


@bp.post("/customers/<customer_id>/subscriptions/new")
@require_permission("subscriptions.create")
def subscription_new_post(customer_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    payload = _new_form_payload(customer_id)
    errors = validate_new_subscription(payload)
    if errors:
        _flash_errors(errors)
        return render_template(
            "admin/subscriptions/new.html",
            customer=api.get_customer_by_id(customer_id),
            locations=api.get_all_locations(),
            plan_types=[p.value for p in PlanType],
            frequencies=[f.value for f in BillingFrequency],
            presets=PLAN_PRESETS,
            form=payload,
        ), 400

    draft = build_new_subscription(payload)
    try:
        sub = api.create_subscription(draft)
        record_event(
            s,
            actor=u,
            action="subscription.create",
            entity_type="VehicleSubscription",
            entity_id=sub.id,
            metadata={
                "customer_id": customer_id,
                "plan_type": sub.plan_type.value,
                "amount": str(sub.billing_info.amount),
                "frequency": sub.billing_info.frequency.value,
                "locations": list(draft.location_ids),
            },
        )
        s.commit()
        flash(f"Subscription {sub.id} created.", "success")
        return redirect(url_for("subscriptions.subscription_detail", subscription_id=sub.id))
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Create subscription failed (customer_id=%s)", customer_id)
        flash(str(e), "danger")
        return redirect(url_for("subscriptions.subscription_new_get", customer_id=customer_id))
