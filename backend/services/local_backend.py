"""
Bundled backend for development and tests.

Implements the BackendClient surface on top of SQLModel tables, passlib
password hashes and files written with aiofiles under UPLOAD_DIR. Email
delivery is replaced by logging the confirmation and recovery links.
"""

import logging
import os
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type

import aiofiles
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from core.exceptions import AuthApiError, BackendError, StorageError
from models.auth_session import AuthSession
from models.complaints import Complaint
from models.documents import Document
from models.user import AuthUser, Profile
from schemas.auth import AuthEvent
from services.backend_client import (
    BackendClient,
    BackendSession,
    BackendUser,
    encode_row,
)
from services.session_cache import TabStorage
from utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)

TABLES: Dict[str, Type[SQLModel]] = {
    "profiles": Profile,
    "complaints": Complaint,
    "documents": Document,
}

# read-only views joining profile details onto rows
VIEWS = ("complaints_with_details", "documents_with_owner")

DATE_COLUMNS = {"expiry_date"}
DATETIME_COLUMNS = {"created_at", "updated_at", "resolved_at", "reviewed_at"}


def _coerce(column: str, value: Any) -> Any:
    if isinstance(value, str):
        if column in DATE_COLUMNS:
            return date.fromisoformat(value[:10])
        if column in DATETIME_COLUMNS:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


class LocalBackendClient(BackendClient):
    def __init__(
        self,
        engine: Engine,
        storage: TabStorage,
        upload_dir: str = "uploads",
        public_url: str = "/uploads",
        token_ttl: int = 3600,
    ):
        super().__init__(storage)
        self.engine = engine
        self.upload_dir = upload_dir
        self.public_url = public_url.rstrip("/")
        self.token_ttl = token_ttl

    # ---- helpers ----

    @staticmethod
    def _to_backend_user(user: AuthUser) -> BackendUser:
        return BackendUser(
            id=user.id,
            email=user.email,
            email_confirmed_at=user.email_confirmed_at,
            user_metadata=dict(user.user_metadata or {}),
        )

    def _issue_session(self, db: Session, user: AuthUser) -> BackendSession:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.token_ttl)
        record = AuthSession(
            user_id=user.id,
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            expires_at=expires_at,
        )
        db.add(record)
        db.commit()
        return BackendSession(
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            expires_at=expires_at,
            user=self._to_backend_user(user),
        )

    def _session_record(self, db: Session, access_token: str) -> Optional[AuthSession]:
        record = db.exec(
            select(AuthSession).where(AuthSession.access_token == access_token)
        ).first()
        if record is None or record.revoked:
            return None
        return record

    def _current_auth_user(self, db: Session) -> Optional[AuthUser]:
        stored = self._stored_session()
        if stored is None or self._session_record(db, stored.access_token) is None:
            return None
        return db.get(AuthUser, stored.user.id)

    # ---- auth ----

    async def get_session(self) -> Optional[BackendSession]:
        stored = self._stored_session()
        if stored is None:
            return None
        with Session(self.engine) as db:
            if self._session_record(db, stored.access_token) is None:
                self._store_session(None)
                return None
        if stored.is_expired(margin_seconds=60):
            return await self.refresh_session()
        return stored

    async def get_user(self) -> Optional[BackendUser]:
        with Session(self.engine) as db:
            user = self._current_auth_user(db)
            return self._to_backend_user(user) if user else None

    async def sign_in_with_password(self, email: str, password: str) -> BackendSession:
        with Session(self.engine) as db:
            user = db.exec(select(AuthUser).where(AuthUser.email == email.strip().lower())).first()
            if not user or not verify_password(password, user.password_hash):
                raise AuthApiError("Invalid login credentials")
            if user.email_confirmed_at is None:
                raise AuthApiError("Email not confirmed")
            user.last_sign_in_at = datetime.now()
            db.add(user)
            session = self._issue_session(db, user)
        self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> BackendUser:
        email = email.strip().lower()
        with Session(self.engine) as db:
            if db.exec(select(AuthUser).where(AuthUser.email == email)).first():
                raise AuthApiError("User already registered", status=422)
            user = AuthUser(
                email=email,
                password_hash=hash_password(password),
                user_metadata={k: v for k, v in metadata.items() if v is not None},
                confirmation_token=secrets.token_urlsafe(24),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(
                "Confirmation link for %s: %s?token=%s",
                email, redirect_to or "/email-verified", user.confirmation_token,
            )
            return self._to_backend_user(user)

    async def sign_out(self) -> None:
        stored = self._stored_session()
        self._store_session(None)
        if stored is not None:
            with Session(self.engine) as db:
                record = self._session_record(db, stored.access_token)
                if record is not None:
                    record.revoked = True
                    db.add(record)
                    db.commit()
        await self._emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> BackendSession:
        stored = self._stored_session()
        if stored is None:
            raise AuthApiError("Auth session missing!", status=401)
        with Session(self.engine) as db:
            record = db.exec(
                select(AuthSession).where(AuthSession.refresh_token == stored.refresh_token)
            ).first()
            if record is None or record.revoked:
                self._store_session(None)
                raise AuthApiError("Invalid Refresh Token", status=401)
            user = db.get(AuthUser, record.user_id)
            record.revoked = True
            db.add(record)
            session = self._issue_session(db, user)
        self._store_session(session)
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        with Session(self.engine) as db:
            user = db.exec(select(AuthUser).where(AuthUser.email == email.strip().lower())).first()
            # unknown addresses are not reported, same as the hosted platform
            if user is None:
                return
            user.recovery_token = secrets.token_urlsafe(24)
            db.add(user)
            db.commit()
            logger.info(
                "Password recovery link for %s: %s?token=%s",
                user.email, redirect_to or "/reset-password", user.recovery_token,
            )

    async def update_user(
        self, password: Optional[str] = None, data: Optional[Dict[str, Any]] = None
    ) -> BackendUser:
        with Session(self.engine) as db:
            user = self._current_auth_user(db)
            if user is None:
                raise AuthApiError("Auth session missing!", status=401)
            if password is not None:
                if verify_password(password, user.password_hash):
                    raise AuthApiError("New password should be different from the old password.", status=422)
                user.password_hash = hash_password(password)
                user.recovery_token = None
            if data:
                user.user_metadata = {**(user.user_metadata or {}), **data}
            db.add(user)
            db.commit()
            db.refresh(user)
            updated = self._to_backend_user(user)
        stored = self._stored_session()
        if stored is not None:
            stored = stored.model_copy(update={"user": updated})
            self._store_session(stored)
        await self._emit(AuthEvent.USER_UPDATED, stored)
        return updated

    async def resend_signup(self, email: str, redirect_to: Optional[str] = None) -> None:
        with Session(self.engine) as db:
            user = db.exec(select(AuthUser).where(AuthUser.email == email.strip().lower())).first()
            if user is None or user.email_confirmed_at is not None:
                return
            user.confirmation_token = secrets.token_urlsafe(24)
            db.add(user)
            db.commit()
            logger.info(
                "Confirmation link for %s: %s?token=%s",
                user.email, redirect_to or "/email-verified", user.confirmation_token,
            )

    async def verify_email(self, token: str) -> Optional[BackendSession]:
        with Session(self.engine) as db:
            user = db.exec(select(AuthUser).where(AuthUser.confirmation_token == token)).first()
            if user is None:
                raise AuthApiError("Email link is invalid or has expired", status=403)
            user.email_confirmed_at = datetime.now(timezone.utc)
            user.confirmation_token = None
            db.add(user)
            db.commit()
            db.refresh(user)
            session = self._issue_session(db, user)
        self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    def confirm_user(self, email: str) -> None:
        """Mark an identity as confirmed without the email round trip (seeding)"""
        with Session(self.engine) as db:
            user = db.exec(select(AuthUser).where(AuthUser.email == email.strip().lower())).first()
            if user is None:
                raise BackendError(f"No identity for {email}")
            user.email_confirmed_at = datetime.now(timezone.utc)
            user.confirmation_token = None
            db.add(user)
            db.commit()

    # ---- rows ----

    def _model(self, table: str) -> Type[SQLModel]:
        try:
            return TABLES[table]
        except KeyError:
            raise BackendError(f'relation "public.{table}" does not exist', status=404)

    def _require_auth(self, db: Session) -> AuthUser:
        user = self._current_auth_user(db)
        if user is None:
            raise BackendError("JWT expired or missing", status=401)
        return user

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        try:
            with Session(self.engine) as db:
                if table in VIEWS:
                    return self._select_view(db, table, filters, order_by, descending, limit)
                model = self._model(table)
                statement = select(model)
                for column, value in (filters or {}).items():
                    statement = statement.where(getattr(model, column) == _coerce(column, value))
                if order_by:
                    col = getattr(model, order_by)
                    statement = statement.order_by(col.desc() if descending else col.asc())
                if limit:
                    statement = statement.limit(limit)
                return [encode_row(row.model_dump()) for row in db.exec(statement).all()]
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def _select_view(self, db, table, filters, order_by, descending, limit) -> List[Dict[str, Any]]:
        base = Complaint if table == "complaints_with_details" else Document
        owner_column = base.reported_by if base is Complaint else base.user_id
        statement = select(base, Profile).join(Profile, owner_column == Profile.id, isouter=True)
        for column, value in (filters or {}).items():
            statement = statement.where(getattr(base, column) == _coerce(column, value))
        if order_by:
            col = getattr(base, order_by)
            statement = statement.order_by(col.desc() if descending else col.asc())
        if limit:
            statement = statement.limit(limit)

        rows = []
        for record, profile in db.exec(statement).all():
            row = encode_row(record.model_dump())
            if base is Complaint:
                row["reporter_name"] = profile.full_name if profile else None
                row["reporter_plate"] = profile.vehicle_plate if profile else None
                row["reporter_badge"] = profile.badge_id if profile else None
            else:
                row["profiles"] = (
                    {"full_name": profile.full_name, "vehicle_plate": profile.vehicle_plate}
                    if profile else None
                )
            rows.append(row)
        return rows

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        try:
            with Session(self.engine) as db:
                if table == "profiles":
                    # a fresh identity has no session until its email is confirmed
                    if db.get(AuthUser, values.get("id")) is None:
                        raise BackendError("new row violates row-level security policy", status=403)
                else:
                    self._require_auth(db)
                record = model(**{k: _coerce(k, v) for k, v in values.items()})
                db.add(record)
                db.commit()
                db.refresh(record)
                return encode_row(record.model_dump())
        except IntegrityError as e:
            raise BackendError(f"duplicate key value violates unique constraint: {e.orig}", status=409) from e
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    async def update(
        self, table: str, values: Dict[str, Any], filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        try:
            with Session(self.engine) as db:
                self._require_auth(db)
                statement = select(model)
                for column, value in filters.items():
                    statement = statement.where(getattr(model, column) == _coerce(column, value))
                records = db.exec(statement).all()
                for record in records:
                    for column, value in values.items():
                        setattr(record, column, _coerce(column, value))
                    if hasattr(record, "updated_at"):
                        record.updated_at = datetime.now()
                    db.add(record)
                db.commit()
                for record in records:
                    db.refresh(record)
                return [encode_row(record.model_dump()) for record in records]
        except IntegrityError as e:
            raise BackendError(f"duplicate key value violates unique constraint: {e.orig}", status=409) from e
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    # ---- storage ----

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        file_path = os.path.join(self.upload_dir, bucket, *path.split("/"))
        if os.path.exists(file_path):
            raise StorageError("The resource already exists")
        try:
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            async with aiofiles.open(file_path, "wb") as out_file:
                await out_file.write(content)
        except OSError as e:
            raise StorageError(f"Failed to save file: {e}") from e
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_url}/{bucket}/{path}"
