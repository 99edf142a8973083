from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from models.complaints import (
    CATEGORY_LABELS,
    ComplaintCategory,
    ComplaintPriority,
    ComplaintStatus,
    categories_for_role,
)
from schemas.auth import UserProfile
from schemas.complaints import ComplaintCreate, ComplaintFilters, ComplaintView
from schemas.documents import read_upload
from utils.dates import get_days_until_expiry, is_expired, is_expiring_soon
from utils.filters import apply_filters
from utils.security import get_tab, require_user

router = APIRouter(tags=["Complaints"])


def category_options(user: UserProfile) -> List[dict]:
    return [
        {"value": c.value, "label": CATEGORY_LABELS[c]}
        for c in categories_for_role(user.role.value)
    ]


def status_counts(complaints: List[ComplaintView]) -> dict:
    counts = {"total": len(complaints)}
    for s in ComplaintStatus:
        counts[s.value] = sum(1 for c in complaints if c.status == s)
    return counts


@router.get("/dashboard")
def dashboard(user: UserProfile = Depends(require_user), tab=Depends(get_tab)):
    mine = tab.data.complaints_by_user(user.id)
    against = tab.data.complaints_against_plate(user.vehicle_plate)
    documents = [
        {
            **doc.model_dump(mode="json"),
            "expired": is_expired(doc.expiry_date),
            "expiring_soon": is_expiring_soon(doc.expiry_date),
            "days_until_expiry": get_days_until_expiry(doc.expiry_date),
        }
        for doc in tab.data.documents_by_user(user.id)
    ]
    return {
        "user": user,
        "stats": status_counts(mine),
        "recent_complaints": mine[:5],
        "complaints_against_me": against,
        "documents": documents,
    }


@router.get("/submit-complaint")
def submit_complaint_page(user: UserProfile = Depends(require_user)):
    return {
        "page": "submit-complaint",
        "categories": category_options(user),
        "priorities": [p.value for p in ComplaintPriority],
    }


@router.post("/submit-complaint", response_model=ComplaintView, status_code=status.HTTP_201_CREATED)
async def submit_complaint(
    title: str = Form(""),
    description: str = Form(""),
    location: str = Form(""),
    category: ComplaintCategory = Form(...),
    offender_plate: str = Form(""),
    priority: ComplaintPriority = Form(ComplaintPriority.low),
    image: Optional[UploadFile] = File(None),
    user: UserProfile = Depends(require_user),
    tab=Depends(get_tab),
):
    data = ComplaintCreate(
        title=title,
        description=description,
        location=location,
        category=category,
        offender_plate=offender_plate,
        priority=priority,
    )
    return await tab.data.submit_complaint(data, await read_upload(image))


@router.get("/my-complaints", response_model=List[ComplaintView])
def my_complaints(
    search: str = "",
    status_filter: str = Query("all", alias="status"),
    priority: str = "all",
    category: str = "all",
    sort_by: str = "date",
    sort_order: str = "desc",
    user: UserProfile = Depends(require_user),
    tab=Depends(get_tab),
):
    filters = ComplaintFilters(
        search_term=search,
        status=status_filter,
        priority=priority,
        category=category,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return apply_filters(tab.data.complaints_by_user(user.id), filters)


@router.get("/complaint/{complaint_id}", response_model=ComplaintView)
def get_complaint_by_id(complaint_id: str, user: UserProfile = Depends(require_user), tab=Depends(get_tab)):
    """
    Retrieve a complaint by its ID.
    Reporters, the offending plate's owner and admins may view it.
    """
    return tab.data.get_complaint(complaint_id)
