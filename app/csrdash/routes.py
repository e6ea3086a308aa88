from flask import Blueprint, current_app, g, redirect, render_template, url_for

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    # Signed-in CSRs land straight on the dashboard.
    if getattr(g, "current_user", None):
        return redirect(url_for("admin.index"))
    return render_template("public/index.html")


@bp.get("/health")
def health():
    """
    Readiness: which data backend is serving and whether the schema check
    passes. 503 while the database is behind migrations.
    """
    if not current_app.config.get("_schema_health_ok", True):
        current_app.extensions["csrdash_schema_check"]()
    schema_ok = bool(current_app.config.get("_schema_health_ok", True))
    body = {
        "ok": schema_ok,
        "data_backend": current_app.config.get("DATA_BACKEND"),
        "schema_ok": schema_ok,
    }
    if not schema_ok and current_app.config.get("_schema_health_missing"):
        body["missing_tables"] = list(current_app.config["_schema_health_missing"])
    return body, 200 if schema_ok else 503


@bp.get("/healthz")
def healthz():
    return "ok", 200
