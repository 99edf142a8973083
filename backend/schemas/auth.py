import enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from models.user import UserRole


class AuthEvent(str, enum.Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


# Application-level user record, distinct from the identity provider's user
class UserProfile(BaseModel):
    id: str
    full_name: str
    email: str = ""
    phone_number: Optional[str] = None
    vehicle_plate: Optional[str] = None
    badge_id: Optional[str] = None
    department: Optional[str] = None
    role: UserRole = UserRole.user

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserProfile":
        return cls(
            id=row["id"],
            full_name=row.get("full_name") or "",
            email=row.get("email") or "",
            phone_number=row.get("phone_number"),
            # older rows used plate_number
            vehicle_plate=row.get("vehicle_plate") or row.get("plate_number"),
            badge_id=row.get("badge_id"),
            department=row.get("department"),
            role=row.get("role") or UserRole.user,
        )


class SignInRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    full_name: str
    email: str
    password: str
    confirm_password: Optional[str] = None
    phone_number: str
    vehicle_plate: str
    badge_id: Optional[str] = None
    department: Optional[str] = None
    role: UserRole = UserRole.user

    def metadata(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "role": self.role.value,
            "phone_number": self.phone_number,
            "vehicle_plate": self.vehicle_plate,
            "badge_id": self.badge_id,
            "department": self.department,
        }


class PasswordResetRequest(BaseModel):
    email: str


class PasswordUpdate(BaseModel):
    password: str
    confirm_password: Optional[str] = None


class ResendVerificationRequest(BaseModel):
    email: str


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    vehicle_plate: Optional[str] = None
    badge_id: Optional[str] = None
    department: Optional[str] = None


class AuthResult(BaseModel):
    """Outcome of an auth action, shaped for the login/register pages"""

    success: bool
    message: Optional[str] = None
    needs_verification: bool = False
    email: Optional[str] = None
    user: Optional[UserProfile] = None
    needs_redirect: bool = False
    redirect_to: Optional[str] = None
    logged_in: bool = False
    field: Optional[str] = None  # form field a failure refers to
    errors: Dict[str, str] = Field(default_factory=dict)
