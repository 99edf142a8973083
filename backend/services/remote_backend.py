"""
BackendClient for the hosted platform.

Speaks the platform's HTTP APIs with httpx: /auth/v1 for identities and
sessions, /rest/v1 for table rows and /storage/v1 for files.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from core.exceptions import AuthApiError, BackendError, NetworkError, OperationTimeout, StorageError
from schemas.auth import AuthEvent
from services.backend_client import BackendClient, BackendSession, BackendUser, to_json_value
from services.session_cache import TabStorage

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)


class RemoteBackendClient(BackendClient):
    def __init__(
        self,
        url: str,
        anon_key: str,
        storage: TabStorage,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(storage)
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            headers={"apikey": anon_key},
            transport=transport,
        )

    # ---- transport ----

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        if token is None:
            stored = self._stored_session()
            token = stored.access_token if stored else self.anon_key
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls=BackendError,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method, path, headers={**self._headers(token), **(headers or {})}, **kwargs
            )
        except httpx.TimeoutException as e:
            raise OperationTimeout(f"{method} {path}") from e
        except httpx.TransportError as e:
            logger.warning("Backend unreachable on %s %s: %s", method, path, e)
            raise NetworkError() from e

        if response.is_error:
            message = _error_message(response)
            logger.debug("%s %s -> %d %s", method, path, response.status_code, message)
            if error_cls is AuthApiError:
                raise AuthApiError(message, status=response.status_code)
            if error_cls is StorageError:
                raise StorageError(message)
            raise BackendError(message, status=response.status_code)
        return response

    def _session_from_payload(self, payload: Dict[str, Any]) -> BackendSession:
        expires_in = int(payload.get("expires_in") or 3600)
        expires_at = payload.get("expires_at")
        if expires_at:
            expires = datetime.fromtimestamp(int(expires_at), tz=timezone.utc)
        else:
            expires = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return BackendSession(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=expires,
            user=BackendUser.model_validate(payload["user"]),
        )

    # ---- auth ----

    async def get_session(self) -> Optional[BackendSession]:
        stored = self._stored_session()
        if stored is None:
            return None
        if stored.is_expired(margin_seconds=60):
            try:
                return await self.refresh_session()
            except AuthApiError:
                self._store_session(None)
                return None
        return stored

    async def get_user(self) -> Optional[BackendUser]:
        stored = self._stored_session()
        if stored is None:
            return None
        response = await self._request("GET", "/auth/v1/user", error_cls=AuthApiError)
        return BackendUser.model_validate(response.json())

    async def sign_in_with_password(self, email: str, password: str) -> BackendSession:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            error_cls=AuthApiError,
            token=self.anon_key,
        )
        session = self._session_from_payload(response.json())
        self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> BackendUser:
        params = {"redirect_to": redirect_to} if redirect_to else None
        response = await self._request(
            "POST",
            "/auth/v1/signup",
            params=params,
            json={"email": email, "password": password, "data": metadata},
            error_cls=AuthApiError,
            token=self.anon_key,
        )
        payload = response.json()
        # with auto-confirm on the platform answers with a full session
        if "access_token" in payload:
            session = self._session_from_payload(payload)
            self._store_session(session)
            await self._emit(AuthEvent.SIGNED_IN, session)
            return session.user
        return BackendUser.model_validate(payload.get("user") or payload)

    async def sign_out(self) -> None:
        stored = self._stored_session()
        self._store_session(None)
        try:
            if stored is not None:
                await self._request(
                    "POST", "/auth/v1/logout", error_cls=AuthApiError, token=stored.access_token
                )
        finally:
            await self._emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> BackendSession:
        stored = self._stored_session()
        if stored is None:
            raise AuthApiError("Auth session missing!", status=401)
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": stored.refresh_token},
            error_cls=AuthApiError,
            token=self.anon_key,
        )
        session = self._session_from_payload(response.json())
        self._store_session(session)
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request(
            "POST", "/auth/v1/recover", params=params, json={"email": email},
            error_cls=AuthApiError, token=self.anon_key,
        )

    async def update_user(
        self, password: Optional[str] = None, data: Optional[Dict[str, Any]] = None
    ) -> BackendUser:
        body: Dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if data:
            body["data"] = data
        response = await self._request("PUT", "/auth/v1/user", json=body, error_cls=AuthApiError)
        user = BackendUser.model_validate(response.json())
        stored = self._stored_session()
        if stored is not None:
            stored = stored.model_copy(update={"user": user})
            self._store_session(stored)
        await self._emit(AuthEvent.USER_UPDATED, stored)
        return user

    async def resend_signup(self, email: str, redirect_to: Optional[str] = None) -> None:
        body: Dict[str, Any] = {"type": "signup", "email": email}
        if redirect_to:
            body["options"] = {"email_redirect_to": redirect_to}
        await self._request(
            "POST", "/auth/v1/resend", json=body, error_cls=AuthApiError, token=self.anon_key
        )

    async def verify_email(self, token: str) -> Optional[BackendSession]:
        response = await self._request(
            "POST", "/auth/v1/verify", json={"type": "signup", "token_hash": token},
            error_cls=AuthApiError, token=self.anon_key,
        )
        payload = response.json()
        if "access_token" not in payload:
            return None
        session = self._session_from_payload(payload)
        self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    # ---- rows ----

    @staticmethod
    def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {column: f"eq.{to_json_value(value)}" for column, value in (filters or {}).items()}

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {"select": "*", **self._filter_params(filters)}
        if table == "documents_with_owner":
            table = "documents"
            params["select"] = "*,profiles!documents_user_id_fkey(full_name,vehicle_plate)"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit:
            params["limit"] = str(limit)
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return response.json()

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json={k: to_json_value(v) for k, v in values.items()},
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) else rows

    async def update(
        self, table: str, values: Dict[str, Any], filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=self._filter_params(filters),
            json={k: to_json_value(v) for k, v in values.items()},
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    # ---- storage ----

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "false", "cache-control": "3600"},
            error_cls=StorageError,
        )
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"

    async def close(self) -> None:
        await super().close()
        await self._http.aclose()
