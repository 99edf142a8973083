import time

from fastapi import APIRouter, Depends, Request

from models.complaints import CATEGORY_LABELS, PUBLIC_CATEGORIES
from services.auth_controller import redirect_for
from utils.security import peek_tab

router = APIRouter(tags=["Pages"])


@router.get("/")
def home(request: Request, tab=Depends(peek_tab)):
    user = tab.state.current_user if tab else None
    return {
        "message": f"{request.app.state.settings.APP_NAME} running",
        "user": user,
        "dashboard": redirect_for(user) if user else None,
        "categories": [{"value": c.value, "label": CATEGORY_LABELS[c]} for c in PUBLIC_CATEGORIES],
    }


@router.get("/api/ping")
def ping():
    """Connection check; clients time the round trip to rate their connection"""
    return {"ok": True, "server_time": time.time()}
