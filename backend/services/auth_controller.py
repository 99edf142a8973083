"""
Auth and session lifecycle of one tab.

Sign-in, registration and sign-out, session restoration on load, and the
listener for auth-state changes pushed by the backend client. Profile loads
are de-duplicated by the id of the last user handled, so a sign-in that also
fires SIGNED_IN fetches the profile once.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from core.config import Settings
from core.exceptions import AuthApiError, BackendError, NetworkError, PortalError
from schemas.auth import AuthEvent, AuthResult, ProfileUpdate, SignUpRequest, UserProfile
from services.app_state import Logout, SetAuthLoading, SetLoading, SetUser, Store
from services.backend_client import BackendClient, BackendSession, BackendUser
from services.session_cache import SessionCache
from services.toasts import ToastManager
from utils.validators import (
    validate_email,
    validate_login,
    validate_password,
    validate_profile_update,
    validate_registration,
)

logger = logging.getLogger(__name__)

VERIFY_EMAIL_MESSAGE = (
    "Please verify your email address before signing in. "
    "Check your inbox for a verification link."
)
REGISTERED_MESSAGE = "Registration successful! Please check your email to verify your account."

UNIQUE_FIELDS = (
    ("email", "This email address is already registered."),
    ("phone_number", "This phone number is already registered."),
    ("vehicle_plate", "This vehicle plate number is already registered."),
)


def redirect_for(profile: Optional[UserProfile]) -> str:
    return "/admin/dashboard" if profile is not None and profile.is_admin else "/dashboard"


def fallback_profile(user: BackendUser) -> UserProfile:
    """Minimal profile built from identity metadata when the profile row is unavailable"""
    meta = user.user_metadata or {}
    email = user.email or ""
    return UserProfile(
        id=user.id,
        full_name=meta.get("full_name") or (email.split("@")[0] if email else "") or "User",
        email=email,
        phone_number=meta.get("phone_number") or "",
        vehicle_plate=meta.get("vehicle_plate") or meta.get("plate_number") or "",
        badge_id=meta.get("badge_id") or "",
        department=meta.get("department") or "",
        role=meta.get("role") or "user",
    )


class AuthController:
    def __init__(
        self,
        client: BackendClient,
        store: Store,
        cache: SessionCache,
        toasts: ToastManager,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        self.cache = cache
        self.toasts = toasts
        self.settings = settings
        self.clock = clock
        # set by AppController; loads complaints and documents after sign-in
        self.on_profile_loaded: Optional[Callable[[UserProfile], Awaitable[None]]] = None

        self._last_handled_user_id: Optional[str] = None
        self._resend_sent_at: Dict[str, float] = {}
        self.background_tasks: Set[asyncio.Task] = set()
        self._unsubscribe = client.on_auth_state_change(self._on_auth_state_change)

    # ---- background work ----

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending background work (profile creation, remote sign-out)"""
        while self.background_tasks:
            await asyncio.wait(list(self.background_tasks))

    def shutdown(self) -> None:
        self._unsubscribe()
        for task in list(self.background_tasks):
            task.cancel()

    def _site_url(self, path: str) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}{path}"

    @property
    def current_user(self) -> Optional[UserProfile]:
        return self.store.state.current_user

    # ---- profile loading ----

    async def _fetch_profile(self, user: BackendUser) -> Tuple[UserProfile, bool]:
        """Profile row of user, or (fallback, True) when it is missing or unreadable"""
        try:
            row = await self.client.select_one("profiles", {"id": user.id})
        except PortalError as e:
            logger.error("Error fetching profile for %s: %s", user.id, e)
            row = None
        if row is not None:
            return UserProfile.from_row(row), False

        logger.info("No profile row for %s, using identity metadata", user.id)
        try:
            fresh = await self.client.get_user()
        except PortalError as e:
            logger.warning("Could not read identity for fallback profile: %s", e)
            fresh = None
        return fallback_profile(fresh or user), True

    async def _load_profile(self, user: BackendUser, data_in_background: bool = False) -> Optional[UserProfile]:
        current = self.current_user
        if self._last_handled_user_id == user.id and current is not None and current.id == user.id:
            logger.debug("Profile for %s already handled", user.id)
            return current
        self._last_handled_user_id = user.id

        profile, is_fallback = await self._fetch_profile(user)
        self.store.dispatch(SetUser(user=profile))
        # fallback profiles are neither cached nor followed by data fetches
        if not is_fallback:
            self.cache.save(profile)
            if self.on_profile_loaded is not None:
                if data_in_background:
                    self._spawn(self.on_profile_loaded(profile), name="load-user-data")
                else:
                    await self.on_profile_loaded(profile)
        return profile

    async def _on_auth_state_change(self, event: AuthEvent, session: Optional[BackendSession]) -> None:
        logger.debug("Auth state change: %s", event.value)
        if event == AuthEvent.SIGNED_OUT:
            self.cache.clear()
            self._last_handled_user_id = None
            if self.current_user is not None:
                self.store.dispatch(Logout())
            return

        if session is None:
            return
        if not session.user.email_confirmed:
            logger.info("Ignoring %s for unconfirmed user %s", event.value, session.user.id)
            return

        if event in (AuthEvent.SIGNED_IN, AuthEvent.INITIAL_SESSION):
            await self._load_profile(session.user)
        elif event in (AuthEvent.TOKEN_REFRESHED, AuthEvent.USER_UPDATED):
            # refreshes fire whenever a tab regains focus; never refetch here
            if self.current_user is not None:
                self.cache.touch()

    # ---- session restoration ----

    async def initialize(self) -> None:
        settings = self.settings
        try:
            await asyncio.wait_for(self._restore(), settings.SESSION_RESTORE_TIMEOUT)
        except (asyncio.TimeoutError, NetworkError) as e:
            logger.warning("Session restore did not complete (%s), trying cached profile", str(e) or "timeout")
            cached = self.cache.load(max_age=settings.CACHE_FALLBACK_SECONDS)
            if cached is not None:
                self._last_handled_user_id = cached.id
                self.store.dispatch(SetUser(user=cached))
            else:
                self.cache.clear()
                self._last_handled_user_id = None
                self.store.dispatch(Logout())
        except BackendError as e:
            logger.error("Error getting session: %s", e)
            self.cache.clear()
            self._last_handled_user_id = None
            self.store.dispatch(Logout())
        finally:
            if self.store.state.loading:
                self.store.dispatch(SetLoading(value=False))

    async def _restore(self) -> None:
        session = await self.client.get_session()
        if session is None or not session.user.email_confirmed:
            self.cache.clear()
            self._last_handled_user_id = None
            self.store.dispatch(Logout())
            return

        cached = self.cache.load(max_age=self.settings.CACHE_FRESH_SECONDS)
        if cached is not None and cached.id == session.user.id:
            logger.debug("Using cached profile for %s", cached.id)
            self._last_handled_user_id = cached.id
            self.store.dispatch(SetUser(user=cached))
            if self.on_profile_loaded is not None:
                self._spawn(self.on_profile_loaded(cached), name="load-user-data")
            return

        await self._load_profile(session.user, data_in_background=True)

    # ---- sign-in / sign-up / sign-out ----

    async def sign_in(self, email: str, password: str) -> AuthResult:
        errors = validate_login(email, password)
        if errors:
            field = next(iter(errors))
            return AuthResult(success=False, message=errors[field], field=field, errors=errors)

        email = email.strip()
        self.store.dispatch(SetAuthLoading(value=True))
        try:
            try:
                session = await self.client.sign_in_with_password(email, password)
            except AuthApiError as e:
                if "Email not confirmed" in e.message:
                    return AuthResult(
                        success=False, message=VERIFY_EMAIL_MESSAGE, needs_verification=True, email=email
                    )
                return AuthResult(success=False, message=e.message)

            if not session.user.email_confirmed:
                return AuthResult(
                    success=False,
                    message=VERIFY_EMAIL_MESSAGE,
                    needs_verification=True,
                    email=session.user.email or email,
                )

            profile = await self._load_profile(session.user)
            return AuthResult(
                success=True,
                user=profile,
                needs_redirect=True,
                redirect_to=redirect_for(profile),
                logged_in=True,
            )
        except PortalError as e:
            logger.error("Login error: %s", e)
            return AuthResult(success=False, message="An error occurred during login")
        finally:
            self.store.dispatch(SetAuthLoading(value=False))

    async def _check_uniqueness(self, form: SignUpRequest) -> Optional[Tuple[str, str]]:
        """(field, message) of the first value already registered; None when unique or unknown"""
        try:
            for field, message in UNIQUE_FIELDS:
                value = getattr(form, field).strip()
                if field == "email":
                    value = value.lower()
                if await self.client.select("profiles", filters={field: value}, limit=1):
                    return field, message
        except PortalError as e:
            logger.warning("Uniqueness check failed, allowing registration: %s", e)
        return None

    async def _create_profile(self, user_id: str, form: SignUpRequest) -> None:
        try:
            await self.client.insert(
                "profiles",
                {
                    "id": user_id,
                    "full_name": form.full_name.strip(),
                    "email": form.email.strip().lower(),
                    "phone_number": form.phone_number.strip(),
                    "vehicle_plate": form.vehicle_plate.strip(),
                    "badge_id": form.badge_id or None,
                    "department": form.department or None,
                    "role": form.role.value,
                },
            )
            logger.info("Profile created for %s", user_id)
        except PortalError as e:
            logger.error("Profile creation failed, but auth user created: %s", e)

    async def sign_up(self, form: SignUpRequest) -> AuthResult:
        errors = validate_registration(form)
        if errors:
            field = next(iter(errors))
            return AuthResult(success=False, message=errors[field], field=field, errors=errors)

        self.store.dispatch(SetAuthLoading(value=True))
        try:
            conflict = await self._check_uniqueness(form)
            if conflict is not None:
                field, message = conflict
                return AuthResult(success=False, message=message, field=field)

            try:
                user = await self.client.sign_up(
                    form.email.strip(),
                    form.password,
                    form.metadata(),
                    redirect_to=self._site_url("/email-verified"),
                )
            except AuthApiError as e:
                return AuthResult(success=False, message=e.message)

            self._spawn(self._create_profile(user.id, form), name=f"create-profile-{user.id}")
            return AuthResult(
                success=True,
                message=REGISTERED_MESSAGE,
                needs_verification=True,
                email=form.email.strip(),
                logged_in=False,
            )
        except PortalError as e:
            logger.error("Registration error: %s", e)
            return AuthResult(success=False, message="An error occurred during registration")
        finally:
            self.store.dispatch(SetAuthLoading(value=False))

    async def _revoke_remote_session(self) -> None:
        try:
            await asyncio.wait_for(self.client.sign_out(), self.settings.SIGN_OUT_TIMEOUT)
        except (PortalError, asyncio.TimeoutError) as e:
            logger.warning("Remote sign-out failed, local session already cleared: %s", e)

    async def sign_out(self) -> None:
        self.cache.clear()
        self._last_handled_user_id = None
        self.store.dispatch(Logout())
        self._spawn(self._revoke_remote_session(), name="sign-out")

    # ---- password and verification ----

    async def request_password_reset(self, email: str) -> AuthResult:
        if not validate_email(email):
            return AuthResult(success=False, message="Please enter a valid email address", field="email")
        try:
            await self.client.reset_password_for_email(
                email.strip(), redirect_to=self._site_url("/reset-password")
            )
        except AuthApiError as e:
            return AuthResult(success=False, message=e.message)
        except PortalError as e:
            logger.error("Password reset request error: %s", e)
            return AuthResult(success=False, message="An error occurred while requesting password reset")
        return AuthResult(success=True, message="Password reset link has been sent to your email")

    async def reset_password(self, password: str, confirm_password: Optional[str] = None) -> AuthResult:
        errors = validate_password(password, confirm_password)
        if errors:
            field = next(iter(errors))
            return AuthResult(success=False, message=errors[field], field=field, errors=errors)
        try:
            await self.client.update_user(password=password)
        except AuthApiError as e:
            return AuthResult(success=False, message=e.message)
        except PortalError as e:
            logger.error("Password reset error: %s", e)
            return AuthResult(success=False, message="An error occurred while resetting password")
        return AuthResult(success=True, message="Password updated successfully")

    def resend_cooldown(self, email: str) -> int:
        """Seconds left before another verification email may be sent to email"""
        sent_at = self._resend_sent_at.get(email.strip().lower())
        if sent_at is None:
            return 0
        remaining = self.settings.RESEND_COOLDOWN_SECONDS - (self.clock() - sent_at)
        return max(0, int(remaining + 0.999))

    async def resend_verification(self, email: str) -> AuthResult:
        if not email or not email.strip():
            return AuthResult(success=False, message="Please register for an account first.")
        remaining = self.resend_cooldown(email)
        if remaining > 0:
            return AuthResult(success=False, message=f"Resend in {remaining}s", email=email)
        try:
            await self.client.resend_signup(email.strip(), redirect_to=self._site_url("/email-verified"))
        except AuthApiError as e:
            return AuthResult(success=False, message=f"Error sending verification email: {e.message}")
        except PortalError as e:
            logger.error("Error resending verification: %s", e)
            return AuthResult(
                success=False, message="Error sending verification email. Please try again."
            )
        self._resend_sent_at[email.strip().lower()] = self.clock()
        return AuthResult(
            success=True, message="Verification email sent! Please check your inbox.", email=email
        )

    async def check_verification(self, email: Optional[str]) -> AuthResult:
        if not email:
            return AuthResult(success=False, message="Please register for an account first.")
        try:
            session = await self.client.get_session()
        except PortalError as e:
            logger.error("Error checking verification: %s", e)
            return AuthResult(success=False, message="Please verify your email before continuing.")
        if session is not None and not session.user.email_confirmed:
            return AuthResult(success=False, message="Please verify your email before continuing.")
        return AuthResult(
            success=True,
            message="Please sign in to access your dashboard.",
            email=email,
            needs_redirect=True,
            redirect_to="/login",
        )

    async def confirm_email(self, token: str) -> AuthResult:
        """Complete the link sent at registration; signs the user in when the backend returns a session"""
        try:
            session = await self.client.verify_email(token)
        except AuthApiError as e:
            return AuthResult(success=False, message=e.message)
        except PortalError as e:
            logger.error("Email confirmation error: %s", e)
            return AuthResult(success=False, message="Verification failed. Please try again.")
        if session is None:
            return AuthResult(
                success=True,
                message="Email verified! Please sign in to access your dashboard.",
                needs_redirect=True,
                redirect_to="/login",
            )
        profile = self.current_user
        return AuthResult(
            success=True,
            message="Email verified! Logging you in...",
            user=profile,
            logged_in=profile is not None,
            needs_redirect=True,
            redirect_to=redirect_for(profile),
        )

    # ---- profile edits ----

    async def update_profile(self, changes: ProfileUpdate) -> AuthResult:
        profile = self.current_user
        if profile is None:
            return AuthResult(success=False, message="Please sign in to update your profile")
        errors = validate_profile_update(changes)
        if errors:
            field = next(iter(errors))
            return AuthResult(success=False, message=errors[field], field=field, errors=errors)

        values = {k: v.strip() for k, v in changes.model_dump(exclude_none=True).items()}
        if not values:
            return AuthResult(success=True, user=profile, message="Nothing to update")
        try:
            rows = await self.client.update("profiles", values, {"id": profile.id})
        except PortalError as e:
            logger.error("Profile update failed for %s: %s", profile.id, e)
            return AuthResult(success=False, message="An error occurred while updating your profile")

        updated = UserProfile.from_row(rows[0]) if rows else profile.model_copy(update=values)
        self.store.dispatch(SetUser(user=updated))
        self.cache.save(updated)
        self.toasts.success("Profile updated successfully")
        return AuthResult(success=True, user=updated, message="Profile updated successfully")
