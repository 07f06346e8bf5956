"""Pytest configuration for the employee portal BFF test suite."""

import os


def _ensure_test_env() -> None:
    """Seed required environment variables before the settings module is imported."""
    os.environ.setdefault("API_BASE", "https://hr.example.test/api")
    os.environ.setdefault("API_HEADER_KEY", "X-Portal-Key")
    os.environ.setdefault("API_KEY", "super-secret-key")
    os.environ.setdefault("APP_ID", "12")
    os.environ.setdefault("AWS_REGION", "ap-southeast-3")
    os.environ.setdefault("AWS_BUCKET", "portal-photos")
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "AKIATEST")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "aws-secret-test")


_ensure_test_env()

from typing import Callable, Dict, List, Optional, Tuple  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from employee_portal_bff.config import settings as base_settings  # noqa: E402
from employee_portal_bff.main import create_app  # noqa: E402
from employee_portal_bff.session_store import InMemorySessionStore  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


def route_key(url) -> str:
    u = httpx.URL(url)
    return f"{u.scheme}://{u.netloc.decode('ascii')}{u.path}"


class _UnreadBody(httpx.AsyncByteStream):
    """A body that has not been read yet, like one coming off a real socket."""

    def __init__(self, content: bytes) -> None:
        self._content = content

    async def __aiter__(self):
        yield self._content


def as_streamed(response: httpx.Response) -> httpx.Response:
    # httpx.Response(json=...) is already read, and the relay streams with aiter_raw().
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=_UnreadBody(response.content),
    )


class FakeUpstream:
    """Routes requests by (method, url-without-query) and records everything it sees."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method, route_key(url))] = handler

    def respond(self, method: str, url: str, status_code: int = 200, **kwargs) -> None:
        self.on(method, url, lambda request: httpx.Response(status_code, **kwargs))

    def fail(self, method: str, url: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.on(method, url, handler)

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if route_key(r.url) == route_key(url)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, route_key(request.url))
        handler = self.routes.get(key)
        if handler is None:
            return as_streamed(httpx.Response(404, json={"message": f"no route for {key}"}))
        return as_streamed(handler(request))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class FakeS3Client:
    """Stands in for a boto3 S3 client; keeps the last body written per key."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.calls: List[dict] = []
        self.error: Optional[ClientError] = None

    def put_object(self, **params) -> dict:
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        self.objects[params["Key"]] = params["Body"]
        return {"ETag": '"etag"'}

    def fail_with(self, code: str, message: str) -> None:
        self.error = ClientError(
            {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"RequestId": "req-1"}},
            "PutObject",
        )


@pytest.fixture
def settings():
    return base_settings


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    fake.respond("GET", "https://api.ipify.org", json={"ip": "203.0.113.7"})
    return fake


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def session_store(settings) -> InMemorySessionStore:
    return InMemorySessionStore(settings.SESSION_TTL_SECONDS)


@pytest.fixture
def app(settings, upstream, s3_client, session_store):
    return create_app(
        app_settings=settings,
        session_store=session_store,
        upstream_transport=upstream.transport,
        s3_client=s3_client,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login_ok(upstream):
    """Make the upstream accept the next login and return the given identity."""

    def _accept(user_id: int = 7, nama: str = "Budi", token: str = "tok-123") -> None:
        upstream.respond(
            "POST",
            "https://hr.example.test/api/FreelanceLogin",
            json={"success": True, "data": {"id": user_id, "nama": nama, "token": token}},
        )

    return _accept
