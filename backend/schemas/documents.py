import os
from datetime import date, datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel
from models.documents import DOCUMENT_NAMES, DocumentStatus, DocumentType


class UploadedFile(BaseModel):
    """File received from a form, already read into memory"""

    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        ext = os.path.splitext(self.filename)[1].lstrip(".").lower()
        return ext or "bin"


class DocumentReview(BaseModel):
    reason: Optional[str] = None


class DocumentView(BaseModel):
    id: str
    user_id: str
    name: str
    type: DocumentType
    file_name: str
    file_url: Optional[str] = None
    expiry_date: date
    upload_date: Optional[date] = None
    status: DocumentStatus = DocumentStatus.pending
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    # filled in for the admin verification list
    owner_name: Optional[str] = None
    owner_plate: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DocumentView":
        doc_type = DocumentType(row["document_type"])
        created_at = row.get("created_at")
        upload_date = None
        if created_at:
            upload_date = datetime.fromisoformat(str(created_at).replace("Z", "+00:00")).date()
        owner = row.get("profiles") or {}
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=DOCUMENT_NAMES[doc_type],
            type=doc_type,
            file_name=row["file_name"],
            file_url=row.get("file_url"),
            expiry_date=row["expiry_date"],
            upload_date=upload_date,
            status=row.get("status") or DocumentStatus.pending,
            rejection_reason=row.get("rejection_reason"),
            reviewed_by=row.get("reviewed_by"),
            reviewed_at=row.get("reviewed_at"),
            owner_name=owner.get("full_name"),
            owner_plate=owner.get("vehicle_plate"),
        )


async def read_upload(upload) -> Optional[UploadedFile]:
    """UploadedFile from a FastAPI UploadFile; None when the form field was left empty"""
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    return UploadedFile(
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )
