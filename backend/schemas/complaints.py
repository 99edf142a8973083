from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel
from models.complaints import (
    ComplaintCategory,
    ComplaintPriority,
    ComplaintStatus,
    SubmissionOrigin,
)


# Request schema for creating a complaint
class ComplaintCreate(BaseModel):
    title: str
    description: str
    location: str
    category: ComplaintCategory
    offender_plate: str
    priority: ComplaintPriority = ComplaintPriority.low


# Admin review of a complaint
class ComplaintUpdate(BaseModel):
    status: ComplaintStatus
    admin_comments: Optional[str] = None
    resolution_notes: Optional[str] = None


# Response schema
class ComplaintView(BaseModel):
    id: str
    title: str
    description: str
    location: Optional[str] = None
    category: ComplaintCategory
    offender_plate: str
    reported_by: Optional[str] = None
    reported_by_name: Optional[str] = None
    reported_by_plate: Optional[str] = None  # plate for citizens, badge for officials
    submitted_by: SubmissionOrigin = SubmissionOrigin.user
    status: ComplaintStatus = ComplaintStatus.pending
    priority: ComplaintPriority = ComplaintPriority.low
    date_reported: Optional[datetime] = None
    image: Optional[str] = None
    admin_comments: str = ""
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ComplaintView":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            location=row.get("location"),
            category=row["category"],
            offender_plate=row["offender_plate"],
            reported_by=row.get("reported_by"),
            reported_by_name=row.get("reporter_name"),
            reported_by_plate=row.get("reporter_plate") or row.get("reporter_badge"),
            submitted_by=row.get("submitted_by") or SubmissionOrigin.user,
            status=row.get("status") or ComplaintStatus.pending,
            priority=row.get("priority") or ComplaintPriority.low,
            date_reported=row.get("created_at"),
            image=row.get("image_url"),
            admin_comments=row.get("admin_comments") or "",
            resolution_notes=row.get("resolution_notes"),
            resolved_at=row.get("resolved_at"),
        )


class ComplaintFilters(BaseModel):
    search_term: str = ""
    status: str = "all"
    priority: str = "all"
    category: str = "all"
    sort_by: str = "date"
    sort_order: str = "desc"
