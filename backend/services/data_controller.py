"""
Complaints and documents of one tab.

Reads and writes go through the backend client; results are mapped to
ComplaintView / DocumentView and kept in the tab's store. submit_complaint,
upload_document, approve_document and reject_document wrap the plain
operations in run_with_retry.
"""

import logging
import secrets
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import Settings
from core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PortalError,
    StorageError,
    ValidationFailed,
    friendly_message,
)
from models.complaints import ComplaintStatus, SubmissionOrigin, categories_for_role, is_category_restricted
from models.documents import DOCUMENT_NAMES, DocumentStatus, DocumentType
from schemas.auth import UserProfile
from schemas.complaints import ComplaintCreate, ComplaintUpdate, ComplaintView
from schemas.documents import DocumentView, UploadedFile
from services.app_state import (
    AddComplaint,
    SetComplaints,
    SetDocuments,
    Store,
    UpdateComplaint,
    UpsertDocument,
)
from services.backend_client import COMPLAINT_IMAGES_BUCKET, USER_DOCUMENTS_BUCKET, BackendClient
from services.retry import run_with_retry
from services.toasts import ToastManager
from utils.validators import ALLOWED_IMAGE_TYPES, require_valid, validate_complaint, validate_document

logger = logging.getLogger(__name__)

RESTRICTED_CATEGORY_MESSAGE = "This category can only be reported by traffic officials."


class DataController:
    def __init__(
        self,
        client: BackendClient,
        store: Store,
        toasts: ToastManager,
        settings: Settings,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.client = client
        self.store = store
        self.toasts = toasts
        self.settings = settings
        # backoff sleep; tests pass a recorder instead of asyncio.sleep
        self.sleep = sleep

    @property
    def current_user(self) -> Optional[UserProfile]:
        return self.store.state.current_user

    def _require_user(self) -> UserProfile:
        user = self.current_user
        if user is None:
            raise AuthorizationError("Please sign in to continue")
        return user

    def _require_admin(self) -> UserProfile:
        user = self._require_user()
        if not user.is_admin:
            raise AuthorizationError("Only administrators can perform this action")
        return user

    def _retry(self, operation, label: str, retry_message: str, failure_message: str, timeout: float):
        settings = self.settings
        return run_with_retry(
            operation,
            label=label,
            toasts=self.toasts,
            retry_message=retry_message,
            failure_message=failure_message,
            timeout=timeout,
            attempts=settings.RETRY_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            sleep=self.sleep,
        )

    # ---- loading ----

    async def load_user_data(self, profile: UserProfile) -> None:
        """Complaints and documents after sign-in; failures never block the session"""
        try:
            await self.fetch_complaints()
        except PortalError as e:
            logger.error("Error fetching complaints: %s", e)
        try:
            await self.fetch_documents(profile.id)
        except PortalError as e:
            logger.error("Error fetching documents: %s", e)

    async def fetch_complaints(self) -> List[ComplaintView]:
        rows = await self.client.select("complaints_with_details", order_by="created_at", descending=True)
        complaints = [ComplaintView.from_row(row) for row in rows]
        self.store.dispatch(SetComplaints(complaints=complaints))
        return complaints

    async def fetch_documents(self, user_id: str) -> List[DocumentView]:
        rows = await self.client.select("documents", filters={"user_id": user_id}, order_by="created_at")
        documents = [DocumentView.from_row(row) for row in rows]
        self.store.dispatch(SetDocuments(documents=documents))
        return documents

    async def fetch_all_documents(self) -> List[DocumentView]:
        """Every user's documents with owner details, for the verification page"""
        self._require_admin()
        rows = await self.client.select("documents_with_owner", order_by="created_at")
        documents = [DocumentView.from_row(row) for row in rows]
        self.store.dispatch(SetDocuments(documents=documents))
        return documents

    # ---- derived views ----

    def complaints_by_user(self, user_id: str) -> List[ComplaintView]:
        return [c for c in self.store.state.complaints if c.reported_by == user_id]

    def complaints_against_plate(self, plate: Optional[str]) -> List[ComplaintView]:
        if not plate:
            return []
        return [c for c in self.store.state.complaints if c.offender_plate == plate]

    def documents_by_user(self, user_id: str) -> List[DocumentView]:
        return [d for d in self.store.state.documents if d.user_id == user_id]

    def get_complaint(self, complaint_id: str) -> ComplaintView:
        user = self._require_user()
        complaint = next((c for c in self.store.state.complaints if c.id == complaint_id), None)
        if complaint is None:
            raise NotFoundError("Complaint", complaint_id)
        visible = (
            user.is_admin
            or complaint.reported_by == user.id
            or (user.vehicle_plate and complaint.offender_plate == user.vehicle_plate)
        )
        if not visible:
            raise AuthorizationError("You do not have access to this complaint")
        return complaint

    # ---- complaints ----

    async def _upload_image(self, user: UserProfile, image: UploadedFile) -> Optional[str]:
        if image.content_type not in ALLOWED_IMAGE_TYPES:
            logger.warning("Skipping complaint image of type %s", image.content_type)
            return None
        path = f"{user.id}/{secrets.token_hex(8)}.{image.extension}"
        try:
            await self.client.upload(COMPLAINT_IMAGES_BUCKET, path, image.content, image.content_type)
        except PortalError as e:
            logger.error("Error uploading image: %s", e)
            return None
        return self.client.get_public_url(COMPLAINT_IMAGES_BUCKET, path)

    async def add_complaint(self, data: ComplaintCreate, image: Optional[UploadedFile] = None) -> ComplaintView:
        user = self._require_user()
        # checked before anything reaches the network
        if is_category_restricted(data.category) and not user.is_admin:
            raise AuthorizationError(RESTRICTED_CATEGORY_MESSAGE)

        image_url = await self._upload_image(user, image) if image is not None else None
        row = await self.client.insert(
            "complaints",
            {
                "title": data.title.strip(),
                "description": data.description.strip(),
                "location": data.location.strip(),
                "category": data.category.value,
                "offender_plate": data.offender_plate.strip().upper(),
                "priority": data.priority.value,
                "submitted_by": (SubmissionOrigin.admin if user.is_admin else SubmissionOrigin.user).value,
                "reported_by": user.id,
                "image_url": image_url,
            },
        )
        complaint = ComplaintView.from_row(
            {
                **row,
                "reporter_name": user.full_name,
                "reporter_plate": user.vehicle_plate,
                "reporter_badge": user.badge_id,
            }
        )
        self.store.dispatch(AddComplaint(complaint=complaint))
        return complaint

    async def submit_complaint(self, data: ComplaintCreate, image: Optional[UploadedFile] = None) -> ComplaintView:
        """add_complaint as the submission forms run it: validated, retried, toasted"""
        user = self._require_user()
        require_valid(validate_complaint(data))
        if data.category not in categories_for_role(user.role.value):
            self.toasts.error(RESTRICTED_CATEGORY_MESSAGE)
            raise AuthorizationError(RESTRICTED_CATEGORY_MESSAGE)

        complaint = await self._retry(
            lambda: self.add_complaint(data, image),
            label="Complaint submission",
            retry_message="Submission attempt failed. Retrying in {seconds}s...",
            failure_message="Submission failed after multiple attempts",
            timeout=self.settings.SUBMISSION_TIMEOUT,
        )
        self.toasts.success("Complaint submitted successfully!")
        return complaint

    async def update_complaint(self, complaint_id: str, updates: ComplaintUpdate) -> ComplaintView:
        self._require_admin()
        resolved_at = datetime.now(timezone.utc) if updates.status == ComplaintStatus.resolved else None
        values = {
            "status": updates.status.value,
            "admin_comments": updates.admin_comments,
            "resolution_notes": updates.resolution_notes,
            "resolved_at": resolved_at,
        }
        rows = await self.client.update("complaints", values, {"id": complaint_id})
        if not rows:
            raise NotFoundError("Complaint", complaint_id)

        local = {
            "status": updates.status,
            "admin_comments": updates.admin_comments or "",
            "resolution_notes": updates.resolution_notes,
            "resolved_at": resolved_at,
        }
        self.store.dispatch(UpdateComplaint(id=complaint_id, updates=local))
        current = next((c for c in self.store.state.complaints if c.id == complaint_id), None)
        return current or ComplaintView.from_row(rows[0])

    # ---- documents ----

    async def _find_document(self, user_id: str, document_type: DocumentType) -> Optional[Dict[str, Any]]:
        for doc in self.store.state.documents:
            if doc.user_id == user_id and doc.type == document_type:
                return {"id": doc.id}
        return await self.client.select_one(
            "documents", {"user_id": user_id, "document_type": document_type.value}
        )

    async def save_document(
        self, document_type: DocumentType, file: UploadedFile, expiry_date: date
    ) -> DocumentView:
        user = self._require_user()
        path = f"{user.id}/{document_type.value}_{secrets.token_hex(8)}.{file.extension}"
        try:
            await self.client.upload(USER_DOCUMENTS_BUCKET, path, file.content, file.content_type)
        except StorageError as e:
            raise StorageError(friendly_message(e, "Error uploading document file")) from e
        file_url = self.client.get_public_url(USER_DOCUMENTS_BUCKET, path)

        values = {
            "file_name": file.filename,
            "file_url": file_url,
            "expiry_date": expiry_date.isoformat(),
        }
        existing = await self._find_document(user.id, document_type)
        if existing is not None:
            # re-upload keeps the row and sends it back for review
            values.update(
                status=DocumentStatus.pending.value,
                rejection_reason=None,
                reviewed_by=None,
                reviewed_at=None,
            )
            rows = await self.client.update("documents", values, {"id": existing["id"]})
            if not rows:
                raise NotFoundError("Document", existing["id"])
            row = rows[0]
        else:
            row = await self.client.insert(
                "documents", {**values, "user_id": user.id, "document_type": document_type.value}
            )

        document = DocumentView.from_row(row)
        self.store.dispatch(UpsertDocument(document=document))
        return document

    async def upload_document(
        self, document_type: DocumentType, file: Optional[UploadedFile], expiry_date: Optional[date]
    ) -> DocumentView:
        self._require_user()
        require_valid(validate_document(file, expiry_date))
        name = DOCUMENT_NAMES[document_type]
        document = await self._retry(
            lambda: self.save_document(document_type, file, expiry_date),
            label="Upload",
            retry_message="Upload failed. Retrying in {seconds} seconds...",
            failure_message="Failed to upload after multiple attempts. Please try again later.",
            timeout=self.settings.UPLOAD_TIMEOUT,
        )
        self.toasts.success(f"{name} uploaded successfully!")
        return document

    async def update_document_status(
        self, document_id: str, status: DocumentStatus, reason: Optional[str] = None
    ) -> DocumentView:
        admin = self._require_admin()
        if status == DocumentStatus.rejected and not (reason or "").strip():
            raise ValidationFailed({"reason": "Please provide a reason for rejection"})
        values = {
            "status": status.value,
            "rejection_reason": reason.strip() if status == DocumentStatus.rejected else None,
            "reviewed_by": admin.id,
            "reviewed_at": datetime.now(timezone.utc),
        }
        rows = await self.client.update("documents", values, {"id": document_id})
        if not rows:
            raise NotFoundError("Document", document_id)

        previous = next((d for d in self.store.state.documents if d.id == document_id), None)
        document = DocumentView.from_row(rows[0])
        if previous is not None:
            document = document.model_copy(
                update={"owner_name": previous.owner_name, "owner_plate": previous.owner_plate}
            )
        self.store.dispatch(UpsertDocument(document=document))
        return document

    async def approve_document(self, document_id: str) -> DocumentView:
        self._require_admin()
        document = await self._retry(
            lambda: self.update_document_status(document_id, DocumentStatus.approved),
            label="Approval",
            retry_message="Approval failed. Retrying in {seconds} seconds...",
            failure_message="Failed to approve after multiple attempts. Please try again later.",
            timeout=self.settings.REVIEW_TIMEOUT,
        )
        self.toasts.success("Document approved successfully!")
        return document

    async def reject_document(self, document_id: str, reason: Optional[str]) -> DocumentView:
        self._require_admin()
        if not (reason or "").strip():
            raise ValidationFailed({"reason": "Please provide a reason for rejection"})
        document = await self._retry(
            lambda: self.update_document_status(document_id, DocumentStatus.rejected, reason),
            label="Rejection",
            retry_message="Rejection failed. Retrying in {seconds} seconds...",
            failure_message="Failed to reject after multiple attempts. Please try again later.",
            timeout=self.settings.REVIEW_TIMEOUT,
        )
        self.toasts.success("Document rejected")
        return document
