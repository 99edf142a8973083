from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from models.complaints import CATEGORY_LABELS, ComplaintCategory, ComplaintPriority, ComplaintStatus
from models.documents import DocumentStatus
from routes.complaints import category_options, status_counts
from schemas.auth import UserProfile
from schemas.complaints import ComplaintCreate, ComplaintFilters, ComplaintUpdate, ComplaintView
from schemas.documents import DocumentReview, DocumentView, read_upload
from utils.filters import apply_filters
from utils.security import admin_required, get_tab

router = APIRouter(tags=["Admin"])


@router.get("/dashboard")
def admin_dashboard(admin: UserProfile = Depends(admin_required), tab=Depends(get_tab)):
    complaints = tab.state.complaints
    by_category = {
        c.value: sum(1 for complaint in complaints if complaint.category == c)
        for c in ComplaintCategory
    }
    return {
        "user": admin,
        "stats": status_counts(complaints),
        "by_category": {k: v for k, v in by_category.items() if v},
        "high_priority_pending": [
            c for c in complaints
            if c.priority == ComplaintPriority.high and c.status == ComplaintStatus.pending
        ],
        "recent_complaints": complaints[:10],
    }


@router.get("/complaints", response_model=List[ComplaintView])
def list_complaints(
    search: str = "",
    status_filter: str = Query("all", alias="status"),
    priority: str = "all",
    category: str = "all",
    sort_by: str = "date",
    sort_order: str = "desc",
    admin: UserProfile = Depends(admin_required),
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
    return apply_filters(tab.state.complaints, filters)


@router.post("/complaints/refresh", response_model=List[ComplaintView])
async def refresh_complaints(admin: UserProfile = Depends(admin_required), tab=Depends(get_tab)):
    return await tab.data.fetch_complaints()


@router.patch("/complaints/{complaint_id}", response_model=ComplaintView)
async def review_complaint(
    complaint_id: str,
    body: ComplaintUpdate,
    admin: UserProfile = Depends(admin_required),
    tab=Depends(get_tab),
):
    complaint = await tab.data.update_complaint(complaint_id, body)
    tab.toasts.success(f"Complaint marked as {body.status.value}")
    return complaint


@router.get("/submit-complaint")
def admin_submit_complaint_page(admin: UserProfile = Depends(admin_required)):
    return {
        "page": "admin-submit-complaint",
        "categories": category_options(admin),
        "priorities": [p.value for p in ComplaintPriority],
        "labels": {c.value: label for c, label in CATEGORY_LABELS.items()},
    }


@router.post("/submit-complaint", response_model=ComplaintView, status_code=status.HTTP_201_CREATED)
async def admin_submit_complaint(
    title: str = Form(""),
    description: str = Form(""),
    location: str = Form(""),
    category: ComplaintCategory = Form(...),
    offender_plate: str = Form(""),
    priority: ComplaintPriority = Form(ComplaintPriority.medium),
    image: Optional[UploadFile] = File(None),
    admin: UserProfile = Depends(admin_required),
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


@router.get("/documents", response_model=List[DocumentView])
async def list_documents(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    admin: UserProfile = Depends(admin_required),
    tab=Depends(get_tab),
):
    documents = await tab.data.fetch_all_documents()
    if status_filter is not None:
        documents = [d for d in documents if d.status == status_filter]
    return documents


@router.post("/documents/{document_id}/approve", response_model=DocumentView)
async def approve_document(document_id: str, admin: UserProfile = Depends(admin_required), tab=Depends(get_tab)):
    return await tab.data.approve_document(document_id)


@router.post("/documents/{document_id}/reject", response_model=DocumentView)
async def reject_document(
    document_id: str,
    body: DocumentReview,
    admin: UserProfile = Depends(admin_required),
    tab=Depends(get_tab),
):
    return await tab.data.reject_document(document_id, body.reason)
