"""
Interface to the backend platform.

The portal never talks to a database or a bucket directly; every read, write
and auth call goes through a BackendClient. Two implementations exist:
RemoteBackendClient (hosted platform over HTTP) and LocalBackendClient
(bundled SQLModel backend for development and tests).

A client instance belongs to one browser tab. Its auth session is persisted
in that tab's storage, and auth-state changes are pushed to listeners
registered with on_auth_state_change().
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from core.exceptions import PortalError
from schemas.auth import AuthEvent
from services.session_cache import TabStorage

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "sb-auth-token"

COMPLAINT_IMAGES_BUCKET = "complaint-images"
USER_DOCUMENTS_BUCKET = "user-documents"


class BackendUser(BaseModel):
    id: str
    email: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def email_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class BackendSession(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: BackendUser

    def is_expired(self, margin_seconds: int = 0) -> bool:
        now = datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - now).total_seconds() <= margin_seconds


AuthListener = Callable[[AuthEvent, Optional[BackendSession]], Awaitable[None]]


class BackendClient(ABC):
    def __init__(self, storage: TabStorage):
        self.storage = storage
        self._listeners: List[AuthListener] = []

    # ---- auth-state notifications ----

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Optional[BackendSession]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except PortalError as e:
                logger.error("Auth listener failed on %s: %s", event.value, e)

    # ---- session persistence (per tab) ----

    def _stored_session(self) -> Optional[BackendSession]:
        raw = self.storage.get_item(SESSION_STORAGE_KEY)
        if not raw:
            return None
        try:
            return BackendSession.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable stored session")
            self.storage.remove_item(SESSION_STORAGE_KEY)
            return None

    def _store_session(self, session: Optional[BackendSession]) -> None:
        if session is None:
            self.storage.remove_item(SESSION_STORAGE_KEY)
        else:
            self.storage.set_item(SESSION_STORAGE_KEY, session.model_dump_json())

    # ---- auth ----

    @abstractmethod
    async def get_session(self) -> Optional[BackendSession]:
        """Current session of this tab, refreshed if it expired; None when signed out"""

    @abstractmethod
    async def get_user(self) -> Optional[BackendUser]:
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> BackendSession:
        ...

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> BackendUser:
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def refresh_session(self) -> BackendSession:
        ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def update_user(
        self, password: Optional[str] = None, data: Optional[Dict[str, Any]] = None
    ) -> BackendUser:
        ...

    @abstractmethod
    async def resend_signup(self, email: str, redirect_to: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def verify_email(self, token: str) -> Optional[BackendSession]:
        ...

    # ---- rows ----

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def select_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(
        self, table: str, values: Dict[str, Any], filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        ...

    # ---- storage ----

    @abstractmethod
    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        ...

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        ...

    async def close(self) -> None:
        self._listeners.clear()


def to_json_value(value: Any) -> Any:
    """Row values as the platform's REST API returns them"""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def encode_row(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: to_json_value(v) for k, v in values.items()}
