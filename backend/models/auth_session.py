import uuid
from datetime import datetime
from sqlmodel import SQLModel, Field


class AuthSession(SQLModel, table=True):
    __tablename__ = "auth_sessions"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    access_token: str = Field(unique=True, index=True)
    refresh_token: str = Field(unique=True, index=True)
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.now)
    revoked: bool = Field(default=False)
