import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from core.exceptions import AuthApiError, BackendError, NetworkError, StorageError
from schemas.auth import AuthEvent
from services.backend_client import SESSION_STORAGE_KEY
from services.remote_backend import RemoteBackendClient
from services.session_cache import TabStorage

URL = "http://backend.test"


def session_payload(user_id="u-1", confirmed=True, expires_in=3600, access="access-1"):
    return {
        "access_token": access,
        "refresh_token": "refresh-1",
        "expires_in": expires_in,
        "token_type": "bearer",
        "user": {
            "id": user_id,
            "email": "ada@example.com",
            "email_confirmed_at": "2024-05-01T10:00:00Z" if confirmed else None,
            "user_metadata": {"full_name": "Ada Obi"},
        },
    }


class Platform:
    """Records requests and answers them from a route table"""

    def __init__(self):
        self.requests = []
        self.routes = {}

    def on(self, method, path, status=200, body=None, exc=None):
        self.routes[(method, path)] = (status, body, exc)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body, exc = self.routes.get((request.method, request.url.path), (404, {"message": "not found"}, None))
        if exc is not None:
            raise exc
        return httpx.Response(status, json=body)

    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def platform():
    return Platform()


@pytest.fixture
async def client(platform):
    c = RemoteBackendClient(URL, "anon-key", TabStorage(), transport=httpx.MockTransport(platform))
    yield c
    await c.close()


async def test_sign_in_stores_session_and_emits(client, platform):
    platform.on("POST", "/auth/v1/token", body=session_payload())
    events = []

    async def listener(event, session):
        events.append(event)

    client.on_auth_state_change(listener)
    session = await client.sign_in_with_password("ada@example.com", "secret123")

    request = platform.last()
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert json.loads(request.content) == {"email": "ada@example.com", "password": "secret123"}
    assert session.user.email_confirmed
    assert SESSION_STORAGE_KEY in client.storage
    assert events == [AuthEvent.SIGNED_IN]


async def test_auth_error_message_is_surfaced(client, platform):
    platform.on("POST", "/auth/v1/token", status=400, body={"error_description": "Email not confirmed"})

    with pytest.raises(AuthApiError) as exc:
        await client.sign_in_with_password("ada@example.com", "secret123")

    assert exc.value.message == "Email not confirmed"
    assert exc.value.status == 400


async def test_transport_failure_is_network_error(client, platform):
    platform.on("GET", "/rest/v1/complaints", exc=httpx.ConnectError("offline"))

    with pytest.raises(NetworkError):
        await client.select("complaints")


async def test_requests_after_sign_in_use_access_token(client, platform):
    platform.on("POST", "/auth/v1/token", body=session_payload(access="tok-9"))
    platform.on("GET", "/rest/v1/profiles", body=[{"id": "u-1"}])
    await client.sign_in_with_password("ada@example.com", "secret123")

    row = await client.select_one("profiles", {"id": "u-1"})

    request = platform.last()
    assert row == {"id": "u-1"}
    assert request.headers["Authorization"] == "Bearer tok-9"
    assert request.url.params["id"] == "eq.u-1"
    assert request.url.params["limit"] == "1"


async def test_select_order_and_owner_embed(client, platform):
    platform.on("GET", "/rest/v1/documents", body=[])

    await client.select("documents_with_owner", order_by="created_at", descending=False)

    params = platform.last().url.params
    assert params["select"].startswith("*,profiles")
    assert params["order"] == "created_at.asc"


async def test_insert_and_update_return_representation(client, platform):
    platform.on("POST", "/rest/v1/complaints", body=[{"id": "c-1", "status": "pending"}])
    platform.on("PATCH", "/rest/v1/complaints", body=[{"id": "c-1", "status": "resolved"}])

    row = await client.insert("complaints", {"title": "x"})
    assert row["id"] == "c-1"
    assert platform.last().headers["Prefer"] == "return=representation"

    resolved_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    rows = await client.update("complaints", {"status": "resolved", "resolved_at": resolved_at}, {"id": "c-1"})
    request = platform.last()
    assert rows[0]["status"] == "resolved"
    assert request.url.params["id"] == "eq.c-1"
    assert json.loads(request.content)["resolved_at"] == "2024-05-01T12:00:00+00:00"


async def test_row_errors_keep_status(client, platform):
    platform.on("POST", "/rest/v1/documents", status=409, body={"message": "duplicate key value"})

    with pytest.raises(BackendError) as exc:
        await client.insert("documents", {"user_id": "u-1"})

    assert exc.value.status == 409


async def test_upload_failure_is_storage_error(client, platform):
    platform.on("POST", "/storage/v1/object/user-documents/u-1/a.pdf", status=400, body={"error": "Bucket not found"})

    with pytest.raises(StorageError) as exc:
        await client.upload("user-documents", "u-1/a.pdf", b"%PDF", "application/pdf")

    assert exc.value.message == "Bucket not found"
    assert platform.last().headers["Content-Type"] == "application/pdf"


async def test_public_url(client):
    assert client.get_public_url("complaint-images", "u-1/x.png") == (
        f"{URL}/storage/v1/object/public/complaint-images/u-1/x.png"
    )


async def test_expired_session_is_refreshed(client, platform):
    platform.on("POST", "/auth/v1/token", body=session_payload(access="fresh"))
    stale = session_payload(access="stale")
    client.storage.set_item(
        SESSION_STORAGE_KEY,
        json.dumps({
            "access_token": "stale",
            "refresh_token": "refresh-1",
            "expires_at": (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat(),
            "user": stale["user"],
        }),
    )

    session = await client.get_session()

    assert session.access_token == "fresh"
    assert platform.last().url.params["grant_type"] == "refresh_token"


async def test_rejected_refresh_signs_out(client, platform):
    platform.on("POST", "/auth/v1/token", status=400, body={"error_description": "Invalid Refresh Token"})
    client.storage.set_item(
        SESSION_STORAGE_KEY,
        json.dumps({
            "access_token": "stale",
            "refresh_token": "gone",
            "expires_at": (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat(),
            "user": session_payload()["user"],
        }),
    )

    assert await client.get_session() is None
    assert SESSION_STORAGE_KEY not in client.storage


async def test_sign_out_clears_session_even_when_request_fails(client, platform):
    platform.on("POST", "/auth/v1/token", body=session_payload())
    platform.on("POST", "/auth/v1/logout", exc=httpx.ConnectError("offline"))
    await client.sign_in_with_password("ada@example.com", "secret123")
    events = []

    async def listener(event, session):
        events.append(event)

    client.on_auth_state_change(listener)

    with pytest.raises(NetworkError):
        await client.sign_out()

    assert SESSION_STORAGE_KEY not in client.storage
    assert events == [AuthEvent.SIGNED_OUT]


async def test_sign_up_without_session_returns_user(client, platform):
    platform.on("POST", "/auth/v1/signup", body={"id": "u-5", "email": "new@example.com", "user_metadata": {}})

    user = await client.sign_up("new@example.com", "secret123", {"full_name": "New"}, redirect_to="http://site/email-verified")

    assert user.id == "u-5"
    assert not user.email_confirmed
    assert platform.last().url.params["redirect_to"] == "http://site/email-verified"
    assert SESSION_STORAGE_KEY not in client.storage
