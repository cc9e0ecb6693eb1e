import json

import jwt
import pytest
import requests
from fastapi.testclient import TestClient

from certiwipe_gateway.config import Settings, get_settings
from certiwipe_gateway.errors import BlobStoreError
from certiwipe_gateway.main import app, build_services

ENGINE = "http://engine.test"
JWT_SECRET = "test-secret"


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=None):
        self.status_code = status_code
        self._body = body
        self.content = content if content is not None else json.dumps(body).encode()
        self.text = self.content.decode("latin-1")
        self.closed = False

    def json(self):
        if self._body is None:
            raise ValueError("no json body")
        return self._body

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; routes are (METHOD, path) -> response or exception."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, method, path, result):
        self.routes[(method, path)] = result

    def request(self, method, url, timeout=None, **kwargs):
        path = url[len(ENGINE):]
        self.calls.append({"method": method, "path": path, "timeout": timeout, **kwargs})
        result = self.routes.get((method, path))
        if result is None:
            return FakeResponse(404, {"detail": "Not Found"})
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(**kwargs)
        return result

    def calls_to(self, path):
        return [c for c in self.calls if c["path"] == path]


class MemoryBlobStore:
    def __init__(self, base_url="https://blob"):
        self.base_url = base_url
        self.objects = {}
        self.uploads = []
        self.fail_with = None

    def upload_stream(self, chunks, key, content_type):
        data = b"".join(chunks)
        if self.fail_with is not None:
            raise self.fail_with
        self.objects[key] = (data, content_type)
        self.uploads.append(key)
        return f"{self.base_url}/{key}"


def wipe_answer(cert_id="C1", user_id="U1", status="running", signature="sig1"):
    return {
        "status": status,
        "certificate_json": {
            "payload": {
                "certificate_id": cert_id,
                "user_id": user_id,
                "wipe": {"method": "zero-fill-1pass", "log_hash": "abc", "completed_at": "2026-10-19T10:00:00Z"},
            },
            "signature": signature,
        },
    }


def make_token(user_id="U1", username="alice", secret=JWT_SECRET):
    return jwt.encode({"user_id": user_id, "username": username}, secret, algorithm="HS256")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "gateway.db"),
        compute_base_url=ENGINE,
        compute_wipe_timeout=5,
        compute_artifact_timeout=60,
        internal_service_token="svc-token",
        jwt_secret=JWT_SECRET,
        blob_bucket="certs",
    )


@pytest.fixture
def engine():
    return FakeSession()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def services(settings, engine, blobs):
    return build_services(settings, session=engine, blobs=blobs)


@pytest.fixture
def client(settings, services):
    app.state.services = services
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.services = None


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def upload_failure():
    return BlobStoreError("bucket unavailable")


@pytest.fixture
def engine_timeout():
    return requests.Timeout("read timed out")
