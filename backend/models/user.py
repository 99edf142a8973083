import uuid
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field, Column, JSON
import enum


class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True, index=True)  # same id as the auth identity
    full_name: str = Field(nullable=False)
    email: str = Field(default="", index=True)
    phone_number: Optional[str] = Field(default=None, index=True)
    vehicle_plate: Optional[str] = Field(default=None, index=True)  # citizens
    badge_id: Optional[str] = None  # officials
    department: Optional[str] = None
    role: UserRole = Field(default=UserRole.user, nullable=False)
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.now, nullable=False)


# Identity record of the bundled local backend; the hosted platform keeps its own
class AuthUser(SQLModel, table=True):
    __tablename__ = "auth_users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, index=True)
    email: str = Field(index=True, unique=True, nullable=False)
    password_hash: str = Field(nullable=False)
    user_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON))
    email_confirmed_at: Optional[datetime] = None
    confirmation_token: Optional[str] = Field(default=None, index=True)
    recovery_token: Optional[str] = Field(default=None, index=True)
    last_sign_in_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)
