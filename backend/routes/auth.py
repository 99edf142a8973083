from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from schemas.auth import (
    AuthResult,
    PasswordResetRequest,
    PasswordUpdate,
    ProfileUpdate,
    ResendVerificationRequest,
    SignInRequest,
    SignUpRequest,
    UserProfile,
)
from services.auth_controller import redirect_for
from utils.security import get_tab, peek_tab, require_user

router = APIRouter(tags=["Auth"])


def respond(result: AuthResult, response: Response) -> AuthResult:
    if not result.success:
        response.status_code = status.HTTP_403_FORBIDDEN if result.needs_verification else status.HTTP_400_BAD_REQUEST
    return result


@router.get("/login")
def login_page(from_: Optional[str] = Query(None, alias="from"), tab=Depends(peek_tab)):
    user = tab.state.current_user if tab else None
    return {
        "page": "login",
        "from": from_,
        "user": user,
        "redirect_to": redirect_for(user) if user else None,
    }


@router.post("/login", response_model=AuthResult)
async def login(body: SignInRequest, response: Response, request: Request, tab=Depends(get_tab)):
    result = await tab.auth.sign_in(body.email, body.password)
    # send the user back to the page the guard bounced them from
    origin = request.query_params.get("from")
    if result.success and origin and origin.startswith("/") and not origin.startswith("//"):
        result.redirect_to = origin
    return respond(result, response)


@router.get("/register")
def register_page(tab=Depends(peek_tab)):
    return {"page": "register", "user": tab.state.current_user if tab else None}


@router.post("/register", response_model=AuthResult)
async def register(body: SignUpRequest, response: Response, tab=Depends(get_tab)):
    result = await tab.auth.sign_up(body)
    if result.success:
        response.status_code = status.HTTP_201_CREATED
        return result
    return respond(result, response)


@router.post("/logout")
async def logout(tab=Depends(get_tab)):
    await tab.auth.sign_out()
    return {"logged_out": True, "redirect_to": "/"}


@router.get("/reset-password")
def reset_password_page():
    return {"page": "reset-password"}


@router.post("/reset-password", response_model=AuthResult)
async def request_password_reset(body: PasswordResetRequest, response: Response, tab=Depends(get_tab)):
    return respond(await tab.auth.request_password_reset(body.email), response)


@router.put("/reset-password", response_model=AuthResult)
async def reset_password(body: PasswordUpdate, response: Response, tab=Depends(get_tab)):
    return respond(await tab.auth.reset_password(body.password, body.confirm_password), response)


@router.get("/verify-email")
def verify_email_page(email: Optional[str] = None, tab=Depends(peek_tab)):
    return {
        "page": "verify-email",
        "email": email,
        "resend_cooldown": tab.auth.resend_cooldown(email) if tab and email else 0,
    }


@router.post("/verify-email", response_model=AuthResult)
async def check_verification(body: ResendVerificationRequest, response: Response, tab=Depends(get_tab)):
    return respond(await tab.auth.check_verification(body.email), response)


@router.post("/verify-email/resend", response_model=AuthResult)
async def resend_verification(body: ResendVerificationRequest, response: Response, tab=Depends(get_tab)):
    result = await tab.auth.resend_verification(body.email)
    if not result.success and tab.auth.resend_cooldown(body.email) > 0:
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        return result
    return respond(result, response)


@router.get("/email-verified", response_model=AuthResult)
async def email_verified(response: Response, token: Optional[str] = None, tab=Depends(get_tab)):
    if not token:
        # landing page without a link token: nothing to confirm
        return AuthResult(success=True, message="Your email has been verified.", needs_redirect=True, redirect_to="/login")
    return respond(await tab.auth.confirm_email(token), response)


@router.get("/session")
def session_state(tab=Depends(get_tab)):
    state = tab.state
    return {
        "tab_id": tab.tab_id,
        "user": state.current_user,
        "loading": state.loading,
        "auth_loading": state.auth_loading,
        "redirect_to": redirect_for(state.current_user) if state.current_user else None,
    }


@router.post("/session/restore")
async def restore_session(request: Request, tab=Depends(get_tab)):
    """Drop the tab's in-memory state and restore it from tab storage, as a page reload does"""
    tab = await request.app.state.tabs.reload(tab.tab_id)
    return {"tab_id": tab.tab_id, "user": tab.state.current_user, "loading": tab.state.loading}


@router.get("/profile", response_model=UserProfile)
def get_profile(user: UserProfile = Depends(require_user)):
    return user


@router.put("/profile", response_model=AuthResult)
async def update_profile(
    body: ProfileUpdate,
    response: Response,
    user: UserProfile = Depends(require_user),
    tab=Depends(get_tab),
):
    return respond(await tab.auth.update_profile(body), response)
