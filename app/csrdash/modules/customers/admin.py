from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.csrdash.api import DataAPIError, data_api
from app.csrdash.audit import record_event
from app.csrdash.auth import actor_id_for
from app.csrdash.db import db_session
from app.csrdash.entities import RequestType
from app.csrdash.models import User
from app.csrdash.modules.csr_requests.service import new_request, next_request_id, sort_newest_first
from app.csrdash.modules.customers.service import (
    PURCHASES_PER_PAGE,
    address_fields_from_payload,
    purchase_counts,
    purchase_history,
    user_fields_from_payload,
    validate_customer_payload,
    vehicle_label,
)
from app.csrdash.modules.subscriptions.service import summarize_customer_subscriptions
from app.csrdash.rbac import require_permission
from app.csrdash.search import fuzzy_search, paginate

bp = Blueprint("customers", __name__)

TABS = ("overview", "subscriptions", "requests", "purchases")
_SEARCH_KEYS = ("first_name", "last_name", "email", "phone")
_PROFILE_FIELDS = ("first_name", "last_name", "email", "phone", "street", "city", "state", "zip_code")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/customers")
@require_permission("customers.view")
def customers_list():
    api = data_api()
    q = (request.args.get("q") or "").strip()
    rows = api.get_all_customers()
    if q:
        rows = list(fuzzy_search(rows, q, _SEARCH_KEYS, threshold=current_app.config.get("SEARCH_THRESHOLD", 0.3)))
    page = paginate(rows, request.args.get("page"), current_app.config.get("PAGE_SIZE", 10))
    return render_template("admin/customers/list.html", page=page, q=q)


@bp.get("/customers/<customer_id>")
@require_permission("customers.view")
def customer_detail(customer_id: str):
    api = data_api()
    bundle = api.get_customer_with_subscriptions(customer_id)
    if bundle is None:
        flash("Customer not found.", "danger")
        return redirect(url_for("customers.customers_list"))
    tab = (request.args.get("tab") or "overview").strip()
    if tab not in TABS:
        tab = "overview"

    customer = bundle.customer
    subscriptions = bundle.subscriptions
    requests_ = sort_newest_first(api.get_requests_by_customer_id(customer_id))

    # Purchase history tab
    sort = (request.args.get("sort") or "date").strip()
    direction = (request.args.get("dir") or "desc").strip()
    kind = (request.args.get("kind") or "all").strip()
    purchases = api.get_purchases_by_customer_id(customer_id)
    counts = purchase_counts(purchases)
    history = purchase_history(purchases, sort=sort, direction=direction, kind=kind)
    purchase_page = paginate(history, request.args.get("ppage"), PURCHASES_PER_PAGE)
    vehicles = api.get_vehicles_by_ids(p.vehicle_id for p in purchase_page.items if p.vehicle_id)
    vehicles_by_id = {v.id: v for v in vehicles}
    purchase_rows = [(p, vehicle_label(p, vehicles_by_id)) for p in purchase_page.items]

    return render_template(
        "admin/customers/detail.html",
        customer=customer,
        subscriptions=subscriptions,
        summary=summarize_customer_subscriptions(subscriptions),
        requests=requests_,
        tab=tab,
        tabs=TABS,
        purchase_page=purchase_page,
        purchase_rows=purchase_rows,
        purchase_counts=counts,
        sort=sort,
        direction=direction,
        kind=kind,
        request_types=list(RequestType),
    )


@bp.post("/customers/<customer_id>")
@require_permission("customers.edit")
def customer_update(customer_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    payload = {k: request.form.get(k) for k in _PROFILE_FIELDS}

    before = api.get_customer_by_id(customer_id)
    if before is None:
        flash("Customer not found.", "danger")
        return redirect(url_for("customers.customers_list"))

    errors = validate_customer_payload(payload)
    if errors:
        flash("; ".join(f"{e.field}: {e.message}" for e in errors), "danger")
        return redirect(url_for("customers.customer_detail", customer_id=customer_id))

    user_fields = user_fields_from_payload(payload)
    address_fields = address_fields_from_payload(payload)
    try:
        api.update_customer_details(customer_id, user_fields, address_fields)
        changed = sorted(k for k, v in user_fields.items() if getattr(before, k) != v)
        if before.address is None or any(getattr(before.address, k) != v for k, v in address_fields.items()):
            changed.append("address")
        record_event(
            s,
            actor=u,
            action="customer.update",
            entity_type="Customer",
            entity_id=customer_id,
            metadata={"changed": changed},
        )
        s.commit()
        flash("Customer details updated.", "success")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Customer update failed (id=%s)", customer_id)
        flash(str(e), "danger")
    return redirect(url_for("customers.customer_detail", customer_id=customer_id))


@bp.post("/customers/<customer_id>/requests/new")
@require_permission("requests.action")
def customer_request_new(customer_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    details = (request.form.get("details") or "").strip()
    raw_type = (request.form.get("request_type") or "").strip()

    if api.get_customer_by_id(customer_id) is None:
        flash("Customer not found.", "danger")
        return redirect(url_for("customers.customers_list"))
    try:
        request_type = RequestType(raw_type)
    except ValueError:
        flash("request_type: Choose a request type.", "danger")
        return redirect(url_for("customers.customer_detail", customer_id=customer_id, tab="requests"))
    if not details:
        flash("details: Request details are required.", "danger")
        return redirect(url_for("customers.customer_detail", customer_id=customer_id, tab="requests"))

    try:
        req = new_request(
            request_id=next_request_id(r.id for r in api.get_all_requests()),
            customer_id=customer_id,
            request_type=request_type,
            details=details,
            actor_id=actor_id_for(u),
        )
        api.create_request(req)
        record_event(
            s,
            actor=u,
            action="csr_request.create",
            entity_type="CSRRequest",
            entity_id=req.id,
            metadata={"customer_id": customer_id, "request_type": request_type.value},
        )
        s.commit()
        flash(f"Request {req.id} logged.", "success")
        return redirect(url_for("csr_requests.request_detail", request_id=req.id))
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Request create failed (customer_id=%s)", customer_id)
        flash(str(e), "danger")
        return redirect(url_for("customers.customer_detail", customer_id=customer_id, tab="requests"))
