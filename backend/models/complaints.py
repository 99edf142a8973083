import uuid
from datetime import datetime
from typing import List, Optional
from sqlmodel import SQLModel, Field
import enum


class ComplaintCategory(str, enum.Enum):
    # open to every citizen
    wrong_parking = "wrong_parking"
    noise_pollution = "noise_pollution"
    blocked_driveway = "blocked_driveway"
    illegal_horn = "illegal_horn"
    # officials only
    overspeeding = "overspeeding"
    no_seatbelt = "no_seatbelt"
    phone_driving = "phone_driving"
    # open to every citizen, always listed last
    others = "others"


class ComplaintStatus(str, enum.Enum):
    pending = "pending"       # Submitted, not reviewed yet
    resolved = "resolved"     # Action taken / closed
    rejected = "rejected"     # Dismissed by an admin


class ComplaintPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class SubmissionOrigin(str, enum.Enum):
    user = "user"
    admin = "admin"


CATEGORY_LABELS = {
    ComplaintCategory.wrong_parking: "Wrong Parking",
    ComplaintCategory.noise_pollution: "Noise Pollution",
    ComplaintCategory.blocked_driveway: "Blocked Driveway",
    ComplaintCategory.illegal_horn: "Illegal Use of Horn",
    ComplaintCategory.overspeeding: "Overspeeding",
    ComplaintCategory.no_seatbelt: "No Seatbelt",
    ComplaintCategory.phone_driving: "Phone Use While Driving",
    ComplaintCategory.others: "Others",
}

PUBLIC_CATEGORIES = [
    ComplaintCategory.wrong_parking,
    ComplaintCategory.noise_pollution,
    ComplaintCategory.blocked_driveway,
    ComplaintCategory.illegal_horn,
    ComplaintCategory.others,
]

OFFICIAL_ONLY_CATEGORIES = [
    ComplaintCategory.overspeeding,
    ComplaintCategory.no_seatbelt,
    ComplaintCategory.phone_driving,
]

# "Others" stays last in the official list
ALL_CATEGORIES = PUBLIC_CATEGORIES[:-1] + OFFICIAL_ONLY_CATEGORIES + [ComplaintCategory.others]


def categories_for_role(role: Optional[str]) -> List[ComplaintCategory]:
    if role == "admin":
        return ALL_CATEGORIES
    return PUBLIC_CATEGORIES


def is_category_restricted(category) -> bool:
    return category in OFFICIAL_ONLY_CATEGORIES


class Complaint(SQLModel, table=True):
    __tablename__ = "complaints"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, index=True)
    title: str
    description: str
    location: str
    category: ComplaintCategory
    offender_plate: str = Field(index=True)
    reported_by: Optional[str] = Field(default=None, foreign_key="profiles.id", index=True)
    submitted_by: SubmissionOrigin = Field(default=SubmissionOrigin.user)
    status: ComplaintStatus = Field(default=ComplaintStatus.pending)
    priority: ComplaintPriority = Field(default=ComplaintPriority.low)
    image_url: Optional[str] = None
    admin_comments: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.now, nullable=False)
