from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.csrdash.api import ConflictError, DataAPIError, data_api
from app.csrdash.audit import record_event
from app.csrdash.auth import actor_id_for
from app.csrdash.db import db_session
from app.csrdash.entities import RequestStatus
from app.csrdash.models import User
from app.csrdash.modules.csr_requests.service import (
    ACTIONABLE_STATUSES,
    apply_action,
    can_action,
    filter_by_status,
    hydrate_customer_emails,
    sort_newest_first,
    status_counts,
    validate_action,
)
from app.csrdash.rbac import require_permission
from app.csrdash.search import fuzzy_search, paginate

bp = Blueprint("csr_requests", __name__)

STATUS_FILTERS = ("all", *(st.value for st in RequestStatus))

_SEARCH_KEYS = (
    lambda r: r.request_type.label,
    "customer_email",
    "details",
    "id",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/requests")
@require_permission("requests.view")
def requests_list():
    api = data_api()
    status = (request.args.get("status") or "all").strip().lower()
    if status not in STATUS_FILTERS:
        status = "all"
    q = (request.args.get("q") or "").strip()

    rows = sort_newest_first(api.get_all_requests())
    rows = hydrate_customer_emails(rows, api.get_customer_by_id)
    counts = status_counts(rows)
    rows = filter_by_status(rows, status)
    if q:
        rows = list(fuzzy_search(rows, q, _SEARCH_KEYS, threshold=current_app.config.get("SEARCH_THRESHOLD", 0.3)))

    page = paginate(rows, request.args.get("page"), current_app.config.get("PAGE_SIZE", 10))
    return render_template(
        "admin/requests/list.html",
        page=page,
        counts=counts,
        status=status,
        status_filters=STATUS_FILTERS,
        q=q,
    )


@bp.get("/requests/<request_id>")
@require_permission("requests.view")
def request_detail(request_id: str):
    api = data_api()
    req = api.get_request_by_id(request_id)
    if req is None:
        flash("Request not found.", "danger")
        return redirect(url_for("csr_requests.requests_list"))
    customer = api.get_customer_by_id(req.customer_id)
    hydrate_customer_emails([req], lambda _cid: customer)
    return render_template(
        "admin/requests/detail.html",
        req=req,
        customer=customer,
        can_action=can_action(req),
        actionable_statuses=[st.value for st in ACTIONABLE_STATUSES],
    )


@bp.post("/requests/<request_id>/action")
@require_permission("requests.action")
def request_action(request_id: str):
    api = data_api()
    s = db_session()
    u = _current_user()
    new_status = (request.form.get("status") or "").strip()
    comment = (request.form.get("comment") or "").strip()

    req = api.get_request_by_id(request_id)
    if req is None:
        flash("Request not found.", "danger")
        return redirect(url_for("csr_requests.requests_list"))
    if not can_action(req):
        flash(f"Request {req.id} is already {req.status.value}; only pending requests can be actioned.", "danger")
        return redirect(url_for("csr_requests.request_detail", request_id=req.id))

    errors = validate_action(new_status, comment)
    if errors:
        flash("; ".join(f"{e.field}: {e.message}" for e in errors), "danger")
        return redirect(url_for("csr_requests.request_detail", request_id=req.id))

    before = req.status.value
    entry = apply_action(req, RequestStatus(new_status), actor_id_for(u), comment)
    try:
        api.append_history_entry(req.id, entry, expected_version=request.form.get("version"))
        record_event(
            s,
            actor=u,
            action="csr_request.action",
            entity_type="CSRRequest",
            entity_id=req.id,
            reason=comment,
            metadata={"from": before, "to": entry.status.value},
        )
        s.commit()
        flash(f"Request {req.id} marked {entry.status.value}.", "success")
    except ConflictError as e:
        s.rollback()
        flash(str(e), "warning")
    except DataAPIError as e:
        s.rollback()
        current_app.logger.exception("Request action failed (id=%s)", req.id)
        flash(str(e), "danger")
    return redirect(url_for("csr_requests.request_detail", request_id=req.id))
