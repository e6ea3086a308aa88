import logging
from datetime import timedelta
from decimal import Decimal

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.csrdash.config import load_config
from app.csrdash.db import init_db, teardown_db_session
from app.csrdash.routes import bp as routes_bp
from app.csrdash.auth import bp as auth_bp, load_current_user
from app.csrdash.admin import bp as admin_bp
from app.csrdash.modules.csr_requests.admin import bp as csr_requests_bp
from app.csrdash.modules.customers.admin import bp as customers_bp
from app.csrdash.modules.subscriptions.admin import bp as subscriptions_bp

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")

# Tables the SQL backend reads on every admin page.
_REQUIRED_TABLES = (
    "users",
    "customers",
    "customer_addresses",
    "csr_requests",
    "csr_request_history",
    "vehicle_subscriptions",
    "vehicles",
    "billing_info",
    "payment_methods",
    "car_wash_locations",
    "subscription_locations",
    "purchases",
    "id_sequences",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.csrdash.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_helpers() -> dict:
        from app.csrdash.rbac import user_has_permission
        from app.csrdash.modules.customers.service import format_phone
        from app.csrdash.modules.subscriptions.service import payment_method_display

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {
            "has_perm": has_perm,
            "format_phone": format_phone,
            "payment_method_display": payment_method_display,
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("money")
    def _money_filter(value, currency: str = "USD") -> str:
        if value is None:
            return "—"
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
        prefix = "$" if currency == "USD" else f"{currency} "
        return f"{prefix}{amount:,}"

    @app.template_filter("label")
    def _label_filter(value) -> str:
        raw = getattr(value, "value", value)
        return str(raw or "").replace("_", " ").title()

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout pass through
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("DATA_BACKEND") == "memory":
            raise RuntimeError("DATA_BACKEND=memory is for demos only; use sql in production.")
    if app.config.get("DATA_BACKEND") not in ("sql", "memory"):
        raise RuntimeError(f"Unknown DATA_BACKEND: {app.config.get('DATA_BACKEND')!r} (expected sql or memory).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(csr_requests_bp, url_prefix="/admin")
    app.register_blueprint(customers_bp, url_prefix="/admin")
    app.register_blueprint(subscriptions_bp, url_prefix="/admin")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: detect a database that was never migrated. Checked on
    # admin requests until it passes once.
    app.config.setdefault("_schema_health_ok", app.config.get("DATA_BACKEND") != "sql")
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in _REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return
        if missing and missing != app.config.get("_schema_health_missing"):
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing

    app.extensions["csrdash_schema_check"] = _run_schema_health_check

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/admin"):
            return None
        _run_schema_health_check()
        if not app.config["_schema_health_ok"] and getattr(g, "current_user", None):
            return render_template("errors/schema_out_of_date.html", missing=app.config["_schema_health_missing"]), 500
        return None

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info(
        "create_app() complete; data_backend=%s env=%s", app.config.get("DATA_BACKEND"), env or "development"
    )

    return app
