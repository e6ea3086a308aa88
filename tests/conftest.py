import pytest
from werkzeug.security import generate_password_hash

from app.csrdash import create_app
from app.csrdash import auth
from app.csrdash.api import SqlAPI
from app.csrdash.db import session_scope
from app.csrdash.models import Base, Permission, Role, User
from app.csrdash.rbac import PERMISSIONS, ROLES
from app.csrdash.seed import seed_data


@pytest.fixture(autouse=True)
def _reset_login_throttle():
    auth._throttle._attempts.clear()
    yield
    auth._throttle._attempts.clear()


def _build_app(tmp_path, monkeypatch, *, backend: str):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATA_BACKEND", backend)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS}
        roles = {}
        for key, (name, keys) in ROLES.items():
            roles[key] = Role(key=key, name=name)
            roles[key].permissions.extend(perms[k] for k in keys)
        admin, viewer = roles["admin"], roles["viewer"]
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(admin)
        v = User(email="viewer@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        v.roles.append(viewer)
        s.add_all(list(perms.values()) + list(roles.values()) + [u, v])

    if backend == "sql":
        with session_scope(app) as s:
            SqlAPI(s).import_seed(seed_data())
    return app


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return _build_app(tmp_path, monkeypatch, backend="sql")


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def memory_client(tmp_path, monkeypatch):
    return _build_app(tmp_path, monkeypatch, backend="memory").test_client()


def login(client, email: str = "admin@example.com", password: str = "pw"):
    r = client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=True)
    assert r.status_code == 200
    return r


def csrf(client) -> str:
    with client.session_transaction() as sess:
        token = sess.get("csrf_token")
    assert token
    return token
