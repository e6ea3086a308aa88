from datetime import date

from flask import Blueprint, current_app, flash, g, render_template, request

from app.csrdash.api import DataAPIError, data_api
from app.csrdash.audit import query_events
from app.csrdash.db import db_session
from app.csrdash.modules.csr_requests.service import hydrate_customer_emails, sort_newest_first
from app.csrdash.rbac import permission_keys, require_permission

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _lookup_customers(api, q: str):
    """Email-shaped queries are an exact lookup; anything else searches names."""
    if "@" in q:
        c = api.get_customer_by_email(q)
        return [c] if c else []
    return api.get_customers_by_name(q)


@bp.get("/")
@require_permission("admin.view")
def index():
    api = data_api()
    q = (request.args.get("q") or "").strip()
    stats = None
    pending = []
    results = None
    try:
        stats = api.get_dashboard_stats()
        pending = sort_newest_first(api.get_requests_by_status("pending"))
        pending = hydrate_customer_emails(pending, api.get_customer_by_id)
        if q:
            results = _lookup_customers(api, q)
    except DataAPIError as e:
        current_app.logger.exception("Dashboard load failed (request_id=%s)", getattr(g, "request_id", None))
        flash(str(e), "danger")
    return render_template(
        "admin/index.html",
        stats=stats,
        pending=pending,
        q=q,
        results=results,
        data_backend=current_app.config.get("DATA_BACKEND"),
    )


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = getattr(g, "current_user", None)
    role_keys = sorted({r.key for r in (user.roles or [])}) if user else []
    perm_keys = sorted(permission_keys(user))
    return render_template("admin/me.html", user=user, role_keys=role_keys, perm_keys=perm_keys)


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """Audit trail, last 200 events; dates are YYYY-MM-DD."""
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    events = query_events(
        s,
        action=action,
        actor_email=actor_email,
        entity_id=entity_id,
        date_from=date_from,
        date_to=date_to,
    )
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        entity_id=entity_id,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
