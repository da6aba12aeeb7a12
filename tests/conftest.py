import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
import jwt

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from report_api.main import create_app, queue_backend
from report_api.store import store

JWT_TEST_SECRET = "jwt_test_secret"


def issue_test_token(
    *,
    role: str,
    user_id: str | None = None,
    username: str | None = None,
    secret: str = JWT_TEST_SECRET,
    ttl_minutes: int = 30,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id or f"user-{role}",
        "username": username or role,
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(role: str, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_test_token(role=role, **kwargs)}"}


class AuthenticatedClient:
    def __init__(self, client: TestClient, *, jwt_secret: str, role: str):
        self._client = client
        self._jwt_secret = jwt_secret
        self.role = role
        self.user_id = f"user-{role}"

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        path = url.split("?", 1)[0]
        if path.startswith("/reports") and not path.endswith("/download"):
            if "Authorization" not in headers:
                token = issue_test_token(role=self.role, user_id=self.user_id, secret=self._jwt_secret)
                headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


@pytest.fixture(autouse=True)
def reset_store(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OBJECT_STORAGE_BACKEND", "local")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("JWT_SECRET", JWT_TEST_SECRET)
    monkeypatch.delenv("JWT_EXPIRES_HOURS", raising=False)
    monkeypatch.delenv("MAX_FILE_SIZE", raising=False)
    monkeypatch.delenv("DOWNLOAD_TOKEN_TTL_MINUTES", raising=False)
    monkeypatch.delenv("IDEMPOTENCY_TTL_HOURS", raising=False)
    store.reset()
    queue_backend.reset()
    yield


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def anon_client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def client(anon_client: TestClient) -> AuthenticatedClient:
    return AuthenticatedClient(anon_client, jwt_secret=JWT_TEST_SECRET, role="editor")


@pytest.fixture
def reader_client(anon_client: TestClient) -> AuthenticatedClient:
    return AuthenticatedClient(anon_client, jwt_secret=JWT_TEST_SECRET, role="reader")


@pytest.fixture
def create_report(client):
    def _create(title: str = "Q4", owner_id: str = "u1", **extra):
        resp = client.post("/reports", json={"title": title, "ownerId": owner_id, **extra})
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create
