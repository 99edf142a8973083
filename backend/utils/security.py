import uuid
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, Request, Response
from passlib.context import CryptContext

from schemas.auth import UserProfile

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TAB_HEADER = "X-Tab-Id"
TAB_COOKIE = "tab_id"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


class GuardRedirect(Exception):
    """Raised by a route guard; main.py answers with a redirect to location"""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


def tab_id_of(request: Request) -> Optional[str]:
    return request.headers.get(TAB_HEADER) or request.cookies.get(TAB_COOKIE)


async def get_tab(request: Request, response: Response):
    """Controller of the calling browser tab, created and restored on first use"""
    tab_id = tab_id_of(request)
    if not tab_id:
        tab_id = uuid.uuid4().hex
    if request.cookies.get(TAB_COOKIE) != tab_id:
        response.set_cookie(TAB_COOKIE, tab_id, httponly=True, samesite="lax")
    return await request.app.state.tabs.get(tab_id)


async def peek_tab(request: Request, response: Response):
    """Controller of the calling tab if it is already open; anonymous pages never open one"""
    tab_id = tab_id_of(request)
    if not tab_id:
        return None
    if request.cookies.get(TAB_COOKIE) != tab_id:
        response.set_cookie(TAB_COOKIE, tab_id, httponly=True, samesite="lax")
    return request.app.state.tabs.peek(tab_id)


def require_user(request: Request, tab=Depends(get_tab)) -> UserProfile:
    user = tab.store.state.current_user
    if user is None:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        raise GuardRedirect(f"/login?from={quote(target, safe='')}")
    return user


def admin_required(user: UserProfile = Depends(require_user)) -> UserProfile:
    if not user.is_admin:
        raise GuardRedirect("/dashboard")
    return user
