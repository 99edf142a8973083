from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from models.documents import DOCUMENT_NAMES, DocumentType
from schemas.auth import UserProfile
from schemas.documents import DocumentView, read_upload
from utils.security import get_tab, require_user

router = APIRouter(tags=["Documents"])


@router.get("/documents", response_model=List[DocumentView])
def my_documents(user: UserProfile = Depends(require_user), tab=Depends(get_tab)):
    return tab.data.documents_by_user(user.id)


@router.get("/documents/types")
def document_types():
    return [{"value": t.value, "label": DOCUMENT_NAMES[t]} for t in DocumentType]


@router.post("/documents", response_model=DocumentView, status_code=status.HTTP_201_CREATED)
async def upload_document(
    document_type: DocumentType = Form(...),
    expiry_date: Optional[date] = Form(None),
    file: Optional[UploadFile] = File(None),
    user: UserProfile = Depends(require_user),
    tab=Depends(get_tab),
):
    """Upload a document, or replace the caller's existing one of the same type"""
    return await tab.data.upload_document(document_type, await read_upload(file), expiry_date)
