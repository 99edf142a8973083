"""
Form validation shared by the auth and data controllers.

Each validate_* function returns a dict of field name to message; an empty
dict means the form is valid. require_valid() turns a non-empty result into
ValidationFailed.
"""

import re
from datetime import date
from typing import Dict, Optional

from core.exceptions import ValidationFailed
from models.user import UserRole

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
PHONE_RE = re.compile(r"^[0-9]{10,11}$")
PLATE_RE = re.compile(r"^[A-Z0-9]{6,8}$", re.IGNORECASE)

MIN_PASSWORD_LENGTH = 8
MAX_DOCUMENT_SIZE = 50 * 1024 * 1024
ALLOWED_DOCUMENT_TYPES = {"application/pdf", "image/jpeg", "image/png", "image/jpg"}
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/jpg", "image/gif", "image/webp"}


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def validate_email(email: str) -> bool:
    return bool(EMAIL_RE.search(email or ""))


def validate_phone_number(phone: str) -> bool:
    return bool(PHONE_RE.match(re.sub(r"\D", "", phone or "")))


def validate_plate_number(plate: str) -> bool:
    return bool(PLATE_RE.match(re.sub(r"[\s-]", "", plate or "")))


def validate_password(password: str, confirm_password: Optional[str]) -> Dict[str, str]:
    errors = {}
    if _blank(password):
        errors["password"] = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = "Password must be at least 8 characters long"
    if confirm_password is not None and password != confirm_password:
        errors["confirm_password"] = "Passwords do not match"
    return errors


def validate_login(email: str, password: str) -> Dict[str, str]:
    errors = {}
    if _blank(email):
        errors["email"] = "Email is required"
    if _blank(password):
        errors["password"] = "Password is required"
    return errors


def validate_registration(form) -> Dict[str, str]:
    """form is a SignUpRequest"""
    errors = {}
    if _blank(form.full_name):
        errors["full_name"] = "Full name is required"
    if _blank(form.email):
        errors["email"] = "Email is required"
    elif not validate_email(form.email):
        errors["email"] = "Email is invalid"
    if _blank(form.phone_number):
        errors["phone_number"] = "Phone number is required"
    if _blank(form.vehicle_plate):
        errors["vehicle_plate"] = "Vehicle plate number is required"
    if form.role == UserRole.admin:
        if _blank(form.badge_id):
            errors["badge_id"] = "Badge ID is required"
        if _blank(form.department):
            errors["department"] = "Department is required"
    errors.update(validate_password(form.password, form.confirm_password))
    return errors


def validate_profile_update(form) -> Dict[str, str]:
    """form is a ProfileUpdate; only fields that are set are checked"""
    errors = {}
    if form.full_name is not None and _blank(form.full_name):
        errors["full_name"] = "Full name is required"
    if form.phone_number is not None and not validate_phone_number(form.phone_number):
        errors["phone_number"] = "Please enter a valid phone number"
    if form.vehicle_plate is not None and not validate_plate_number(form.vehicle_plate):
        errors["vehicle_plate"] = "Please enter a valid plate number"
    return errors


def validate_complaint(form) -> Dict[str, str]:
    """form is a mapping or a ComplaintCreate"""
    values = form if isinstance(form, dict) else form.model_dump()
    errors = {}
    if _blank(values.get("title")):
        errors["title"] = "Title is required"
    if _blank(values.get("description")):
        errors["description"] = "Description is required"
    if _blank(values.get("location")):
        errors["location"] = "Location is required"
    if not values.get("category"):
        errors["category"] = "Category is required"
    if _blank(values.get("offender_plate")):
        errors["offender_plate"] = "Offender plate number is required"
    return errors


def validate_document(file, expiry_date: Optional[date], today: Optional[date] = None) -> Dict[str, str]:
    """file is an UploadedFile or None"""
    errors = {}
    if file is None:
        errors["file"] = "Please select a file to upload"
    elif file.content_type not in ALLOWED_DOCUMENT_TYPES:
        errors["file"] = "Please upload a PDF, JPEG, or PNG file"
    elif file.size > MAX_DOCUMENT_SIZE:
        errors["file"] = "File size must be less than 50MB"

    if expiry_date is None:
        errors["expiry_date"] = "Expiry date is required"
    elif expiry_date <= (today or date.today()):
        errors["expiry_date"] = "Expiry date must be in the future"
    return errors


def require_valid(errors: Dict[str, str]) -> None:
    if errors:
        raise ValidationFailed(errors)
