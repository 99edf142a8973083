import uuid
from datetime import date, datetime
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
import enum


class DocumentType(str, enum.Enum):
    license = "license"
    roadworthiness = "roadworthiness"
    insurance = "insurance"


class DocumentStatus(str, enum.Enum):
    pending = "pending"       # Uploaded or re-uploaded, waiting for review
    approved = "approved"
    rejected = "rejected"


DOCUMENT_NAMES = {
    DocumentType.license: "Driver's License",
    DocumentType.roadworthiness: "Road Worthiness Certificate",
    DocumentType.insurance: "Insurance Certificate",
}


class Document(SQLModel, table=True):
    __tablename__ = "documents"
    # one row per owner and document type; re-uploads overwrite it
    __table_args__ = (UniqueConstraint("user_id", "document_type", name="uq_documents_user_type"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    document_type: DocumentType
    file_name: str
    file_url: Optional[str] = None
    expiry_date: date
    status: DocumentStatus = Field(default=DocumentStatus.pending)
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = Field(default=None, foreign_key="profiles.id")
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.now, nullable=False)
