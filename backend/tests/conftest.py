"""
Traffic Complaint Portal - Test Configuration and Fixtures
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient
from sqlmodel import Session

# Set testing environment before anything reads settings
os.environ.setdefault("SUPABASE_URL", "http://backend.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="portal-uploads-"))

from core.config import Settings
from core.database import build_engine, create_db_and_tables
from models.user import AuthUser, Profile, UserRole
from schemas.auth import AuthEvent, UserProfile
from services.app_controller import AppController
from services.app_state import SetUser
from services.backend_client import BackendClient, BackendSession, BackendUser
from services.local_backend import LocalBackendClient
from services.session_cache import TabStorage
from utils.security import hash_password

fake = Faker()

PASSWORD = "testpassword123"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        SUPABASE_URL="http://backend.test",
        SUPABASE_ANON_KEY="test-anon-key",
        DATABASE_URL="sqlite://",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        LOG_LEVEL="WARNING",
        SESSION_RESTORE_TIMEOUT=0.2,
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


class SleepRecorder:
    """Stands in for asyncio.sleep in retry loops and records each delay"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


def create_identity(
    engine,
    role: UserRole = UserRole.user,
    confirmed: bool = True,
    with_profile: bool = True,
    **profile_fields,
) -> AuthUser:
    email = profile_fields.pop("email", None) or fake.unique.email().lower()
    full_name = profile_fields.pop("full_name", None) or fake.name()
    with Session(engine) as db:
        identity = AuthUser(
            email=email,
            password_hash=hash_password(PASSWORD),
            user_metadata={"full_name": full_name, "role": role.value},
            email_confirmed_at=datetime.now(timezone.utc) if confirmed else None,
        )
        db.add(identity)
        db.commit()
        db.refresh(identity)
        if with_profile:
            db.add(
                Profile(
                    id=identity.id,
                    full_name=full_name,
                    email=email,
                    phone_number=profile_fields.pop("phone_number", "0801234567" + str(fake.random_digit())),
                    vehicle_plate=profile_fields.pop("vehicle_plate", "ABC" + str(fake.random_number(digits=4, fix_len=True))),
                    role=role,
                    **profile_fields,
                )
            )
            db.commit()
        db.refresh(identity)
        db.expunge(identity)
        return identity


@pytest.fixture
def make_tab(engine, settings, sleep):
    """Build an AppController on the local backend; call with a tab id"""
    controllers: List[AppController] = []

    def build(tab_id: str = "tab", storage: Optional[TabStorage] = None) -> AppController:
        client = LocalBackendClient(engine, storage or TabStorage(), upload_dir=settings.UPLOAD_DIR)
        controller = AppController(tab_id, client, settings, sleep=sleep)
        controllers.append(controller)
        return controller

    yield build
    for controller in controllers:
        controller.auth.shutdown()
        controller.toasts.shutdown()


async def signed_in_tab(make_tab, engine, role: UserRole = UserRole.user, tab_id: str = "tab", **fields):
    identity = create_identity(engine, role=role, **fields)
    tab = make_tab(tab_id)
    await tab.initialize()
    result = await tab.auth.sign_in(identity.email, PASSWORD)
    assert result.success, result.message
    return tab, identity


class FakeBackend(BackendClient):
    """
    Scriptable BackendClient for controller tests.

    Every call is recorded in `calls`; `fail` maps a method name to the
    exception it raises, `delay` to seconds it hangs before answering.
    """

    def __init__(self, storage: Optional[TabStorage] = None):
        super().__init__(storage or TabStorage())
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.delay: Dict[str, float] = {}
        self.session: Optional[BackendSession] = None
        self.user: Optional[BackendUser] = None
        self.tables: Dict[str, List[Dict[str, Any]]] = {"profiles": [], "complaints": [], "documents": []}
        self.uploads: Dict[str, bytes] = {}

    async def _call(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.delay:
            await asyncio.sleep(self.delay[name])
        if name in self.fail:
            raise self.fail[name]

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def sign_in_as(self, user_id: str, email: str = "user@example.com", confirmed: bool = True, **metadata):
        self.user = BackendUser(
            id=user_id,
            email=email,
            email_confirmed_at=datetime.now(timezone.utc) if confirmed else None,
            user_metadata=metadata,
        )
        self.session = BackendSession(
            access_token="access",
            refresh_token="refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            user=self.user,
        )
        self._store_session(self.session)
        return self.session

    async def get_session(self):
        await self._call("get_session")
        return self.session

    async def get_user(self):
        await self._call("get_user")
        return self.user

    async def sign_in_with_password(self, email, password):
        await self._call("sign_in_with_password", email)
        await self._emit_signed_in()
        return self.session

    async def _emit_signed_in(self):
        await self._emit(AuthEvent.SIGNED_IN, self.session)

    async def sign_up(self, email, password, metadata, redirect_to=None):
        await self._call("sign_up", email, redirect_to)
        return BackendUser(id="new-user", email=email, user_metadata=metadata)

    async def sign_out(self):
        await self._call("sign_out")
        self.session = None

    async def refresh_session(self):
        await self._call("refresh_session")
        return self.session

    async def reset_password_for_email(self, email, redirect_to=None):
        await self._call("reset_password_for_email", email, redirect_to)

    async def update_user(self, password=None, data=None):
        await self._call("update_user")
        return self.user

    async def resend_signup(self, email, redirect_to=None):
        await self._call("resend_signup", email)

    async def verify_email(self, token):
        await self._call("verify_email", token)
        return None

    async def select(self, table, filters=None, order_by=None, descending=True, limit=None):
        await self._call("select", table, dict(filters or {}))
        name = "complaints" if table == "complaints_with_details" else table
        rows = [
            r for r in self.tables.get(name, [])
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        return rows[:limit] if limit else rows

    async def insert(self, table, values):
        await self._call("insert", table)
        row = {
            "id": f"{table}-{len(self.tables[table]) + 1}",
            "created_at": datetime.now().isoformat(),
            "status": "pending",
            **values,
        }
        self.tables[table].append(row)
        return row

    async def update(self, table, values, filters):
        await self._call("update", table, dict(filters))
        updated = []
        for row in self.tables[table]:
            if all(row.get(k) == v for k, v in filters.items()):
                row.update({k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in values.items()})
                updated.append(dict(row))
        return updated

    async def upload(self, bucket, path, content, content_type):
        await self._call("upload", bucket, path)
        self.uploads[f"{bucket}/{path}"] = content
        return path

    def get_public_url(self, bucket, path):
        return f"http://backend.test/storage/v1/object/public/{bucket}/{path}"


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_tab(fake_backend, settings, sleep):
    controller = AppController("fake-tab", fake_backend, settings, sleep=sleep)
    yield controller
    controller.auth.shutdown()
    controller.toasts.shutdown()


def as_user(tab: AppController, role: UserRole = UserRole.user, **fields) -> UserProfile:
    """Put a profile straight into the tab's store"""
    profile = UserProfile(
        id=fields.pop("id", "user-1"),
        full_name=fields.pop("full_name", "Ada Obi"),
        email=fields.pop("email", "ada@example.com"),
        vehicle_plate=fields.pop("vehicle_plate", "LAG123AB"),
        role=role,
        **fields,
    )
    tab.store.dispatch(SetUser(user=profile))
    return profile


@pytest.fixture
async def app_client(settings, engine, sleep):
    """HTTP client against a fresh app on the local backend"""
    from main import create_app

    app = create_app(settings=settings, engine=engine, sleep=sleep)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers={"X-Tab-Id": "tab-1"}) as ac:
        ac.app = app
        yield ac
    await app.state.tabs.shutdown()
