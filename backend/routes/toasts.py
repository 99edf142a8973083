from typing import List

from fastapi import APIRouter, Depends, HTTPException

from schemas.toasts import Toast
from utils.security import get_tab

router = APIRouter(tags=["Toasts"])


@router.get("/toasts", response_model=List[Toast])
def list_toasts(tab=Depends(get_tab)):
    return tab.toasts.toasts


@router.delete("/toasts/{toast_id}")
def dismiss_toast(toast_id: str, tab=Depends(get_tab)):
    if not tab.toasts.remove(toast_id):
        raise HTTPException(status_code=404, detail="Toast not found")
    return {"dismissed": toast_id}


@router.delete("/toasts")
def clear_toasts(tab=Depends(get_tab)):
    tab.toasts.clear_all()
    return {"dismissed": "all"}
