import asyncio

from sqlmodel import Session, select

from core.exceptions import AuthApiError, NetworkError
from models.user import AuthUser, UserRole
from schemas.auth import AuthEvent, ProfileUpdate, SignUpRequest
from services.auth_controller import VERIFY_EMAIL_MESSAGE, fallback_profile
from services.backend_client import BackendUser
from services.session_cache import CACHED_USER_KEY
from conftest import PASSWORD, create_identity, signed_in_tab


def registration(**overrides) -> SignUpRequest:
    fields = dict(
        full_name="Chidi Okafor",
        email="chidi@example.com",
        password="supersecret1",
        confirm_password="supersecret1",
        phone_number="08031234567",
        vehicle_plate="KJA452XY",
    )
    fields.update(overrides)
    return SignUpRequest(**fields)


class TestSignIn:
    async def test_unconfirmed_email_needs_verification(self, make_tab, engine):
        identity = create_identity(engine, confirmed=False)
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.sign_in(identity.email, PASSWORD)

        assert result.success is False
        assert result.needs_verification is True
        assert result.email == identity.email
        assert result.message == VERIFY_EMAIL_MESSAGE
        assert tab.state.current_user is None

    async def test_session_without_confirmation_needs_verification(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-1", email="late@example.com", confirmed=False)

        result = await fake_tab.auth.sign_in("late@example.com", PASSWORD)

        assert result.needs_verification is True
        assert fake_tab.state.current_user is None
        assert not fake_backend.called("select")

    async def test_success_sets_user_and_redirect(self, make_tab, engine):
        tab, identity = await signed_in_tab(make_tab, engine)

        user = tab.state.current_user
        assert user is not None and user.id == identity.id
        assert tab.state.auth_loading is False
        assert tab.cache.load() == user

    async def test_admin_redirects_to_admin_dashboard(self, make_tab, engine):
        identity = create_identity(engine, role=UserRole.admin)
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.sign_in(identity.email, PASSWORD)

        assert result.needs_redirect is True
        assert result.redirect_to == "/admin/dashboard"

    async def test_wrong_password_returns_backend_message(self, make_tab, engine):
        identity = create_identity(engine)
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.sign_in(identity.email, "not-the-password")

        assert result.success is False
        assert result.message == "Invalid login credentials"
        assert tab.state.current_user is None

    async def test_network_failure_gives_generic_message(self, fake_tab, fake_backend):
        fake_backend.fail["sign_in_with_password"] = NetworkError()

        result = await fake_tab.auth.sign_in("a@example.com", PASSWORD)

        assert result.message == "An error occurred during login"
        assert fake_tab.state.auth_loading is False

    async def test_profile_fetched_once_for_listener_and_caller(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-1")
        fake_backend.tables["profiles"].append(
            {"id": "u-1", "full_name": "Ngozi", "email": "user@example.com", "role": "user"}
        )

        result = await fake_tab.auth.sign_in("user@example.com", PASSWORD)

        assert result.success
        profile_reads = [c for c in fake_backend.called("select") if c[1] == "profiles"]
        assert len(profile_reads) == 1

    async def test_missing_profile_row_uses_metadata(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-2", email="bola@example.com", full_name="Bola Ade", plate_number="EKY123AA")

        result = await fake_tab.auth.sign_in("bola@example.com", PASSWORD)

        user = fake_tab.state.current_user
        assert result.success
        assert user.full_name == "Bola Ade"
        assert user.vehicle_plate == "EKY123AA"
        # fallback profiles are not cached and skip the data fetch
        assert fake_tab.storage.get_item(CACHED_USER_KEY) is None
        assert not [c for c in fake_backend.called("select") if c[1] == "complaints_with_details"]


def test_fallback_profile_defaults():
    profile = fallback_profile(BackendUser(id="x", email="someone@example.com"))
    assert profile.full_name == "someone"
    assert profile.role == UserRole.user

    anonymous = fallback_profile(BackendUser(id="y"))
    assert anonymous.full_name == "User"


class TestSignUp:
    async def test_registration_requires_verification(self, make_tab, engine):
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.sign_up(registration())
        await tab.auth.drain()

        assert result.success is True
        assert result.needs_verification is True
        assert result.logged_in is False
        assert tab.state.current_user is None
        rows = await tab.client.select("profiles", filters={"email": "chidi@example.com"})
        assert rows and rows[0]["vehicle_plate"] == "KJA452XY"

    async def test_duplicate_phone_is_reported(self, make_tab, engine):
        create_identity(engine, phone_number="08031234567")
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.sign_up(registration())

        assert result.success is False
        assert result.field == "phone_number"
        assert result.message == "This phone number is already registered."

    async def test_failed_uniqueness_check_allows_registration(self, fake_tab, fake_backend):
        fake_backend.fail["select"] = NetworkError()

        result = await fake_tab.auth.sign_up(registration())

        assert result.success is True
        assert fake_backend.called("sign_up")

    async def test_profile_creation_failure_does_not_fail_registration(self, fake_tab, fake_backend):
        fake_backend.fail["insert"] = NetworkError()

        result = await fake_tab.auth.sign_up(registration())
        await fake_tab.auth.drain()

        assert result.success is True
        assert fake_backend.called("insert")

    async def test_email_redirect_points_at_verified_page(self, fake_tab, fake_backend, settings):
        await fake_tab.auth.sign_up(registration())
        _, email, redirect_to = fake_backend.called("sign_up")[0]
        assert redirect_to == f"{settings.SITE_URL}/email-verified"

    async def test_admin_needs_badge_and_department(self, fake_tab, fake_backend):
        result = await fake_tab.auth.sign_up(registration(role=UserRole.admin))

        assert result.success is False
        assert set(result.errors) == {"badge_id", "department"}
        assert not fake_backend.calls

    async def test_password_mismatch(self, fake_tab):
        result = await fake_tab.auth.sign_up(registration(confirm_password="different1"))
        assert result.errors["confirm_password"] == "Passwords do not match"


class TestSignOut:
    async def test_state_cleared_before_remote_call(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-1")
        await fake_tab.auth.sign_in("user@example.com", PASSWORD)
        fake_backend.delay["sign_out"] = 0.05

        await fake_tab.auth.sign_out()

        assert fake_tab.state.current_user is None
        assert fake_tab.cache.load() is None
        assert not fake_backend.called("sign_out")
        await fake_tab.auth.drain()
        assert fake_backend.called("sign_out")

    async def test_remote_failure_keeps_local_logout(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-1")
        await fake_tab.auth.sign_in("user@example.com", PASSWORD)
        fake_backend.fail["sign_out"] = NetworkError()

        await fake_tab.auth.sign_out()
        await fake_tab.auth.drain()

        assert fake_tab.state.current_user is None


class TestAuthEvents:
    async def test_token_refresh_does_not_refetch_profile(self, fake_tab, fake_backend):
        session = fake_backend.sign_in_as("u-1")
        await fake_tab.auth.sign_in("user@example.com", PASSWORD)
        reads_before = len(fake_backend.called("select"))

        await fake_backend._emit(AuthEvent.TOKEN_REFRESHED, session)
        await fake_backend._emit(AuthEvent.INITIAL_SESSION, session)

        assert len(fake_backend.called("select")) == reads_before

    async def test_signed_out_event_logs_out(self, fake_tab, fake_backend):
        fake_backend.sign_in_as("u-1")
        await fake_tab.auth.sign_in("user@example.com", PASSWORD)

        await fake_backend._emit(AuthEvent.SIGNED_OUT, None)

        assert fake_tab.state.current_user is None
        assert fake_tab.cache.load() is None


class TestPasswordAndVerification:
    async def test_reset_link_redirects_to_reset_page(self, fake_tab, fake_backend, settings):
        result = await fake_tab.auth.request_password_reset("user@example.com")

        assert result.message == "Password reset link has been sent to your email"
        assert fake_backend.called("reset_password_for_email")[0][2] == f"{settings.SITE_URL}/reset-password"

    async def test_reset_password_validates_length(self, fake_tab, fake_backend):
        result = await fake_tab.auth.reset_password("short", "short")

        assert result.errors["password"] == "Password must be at least 8 characters long"
        assert not fake_backend.called("update_user")

    async def test_reset_password_reports_backend_error(self, fake_tab, fake_backend):
        fake_backend.fail["update_user"] = AuthApiError("Auth session missing!", status=401)

        result = await fake_tab.auth.reset_password("longenough1", "longenough1")

        assert result.success is False
        assert result.message == "Auth session missing!"

    async def test_resend_has_cooldown(self, fake_tab, fake_backend):
        first = await fake_tab.auth.resend_verification("user@example.com")
        second = await fake_tab.auth.resend_verification("user@example.com")

        assert first.success is True
        assert second.success is False
        assert second.message.startswith("Resend in ")
        assert len(fake_backend.called("resend_signup")) == 1
        assert 0 < fake_tab.auth.resend_cooldown("user@example.com") <= 60

    async def test_confirm_email_signs_in_on_local_backend(self, make_tab, engine):
        tab = make_tab()
        await tab.initialize()
        await tab.auth.sign_up(registration())
        await tab.auth.drain()

        with Session(engine) as db:
            token = db.exec(select(AuthUser.confirmation_token).where(AuthUser.email == "chidi@example.com")).one()

        result = await tab.auth.confirm_email(token)

        assert result.success is True
        assert result.logged_in is True
        assert result.redirect_to == "/dashboard"
        assert tab.state.current_user.full_name == "Chidi Okafor"

    async def test_confirm_email_with_bad_token(self, make_tab):
        tab = make_tab()
        await tab.initialize()

        result = await tab.auth.confirm_email("nope")

        assert result.success is False
        assert tab.state.current_user is None


class TestProfileUpdate:
    async def test_update_profile_refreshes_store_and_cache(self, make_tab, engine):
        tab, _ = await signed_in_tab(make_tab, engine)

        result = await tab.auth.update_profile(ProfileUpdate(full_name="New Name", phone_number="08099998888"))

        assert result.success is True
        assert tab.state.current_user.full_name == "New Name"
        assert tab.cache.load().phone_number == "08099998888"

    async def test_invalid_plate_rejected(self, make_tab, engine):
        tab, _ = await signed_in_tab(make_tab, engine)

        result = await tab.auth.update_profile(ProfileUpdate(vehicle_plate="!!"))

        assert result.success is False
        assert result.field == "vehicle_plate"


async def test_shutdown_cancels_background_work(fake_tab, fake_backend):
    fake_backend.sign_in_as("u-1")
    await fake_tab.auth.sign_in("user@example.com", PASSWORD)
    fake_backend.delay["sign_out"] = 10

    await fake_tab.auth.sign_out()
    tasks = list(fake_tab.auth.background_tasks)
    fake_tab.auth.shutdown()
    await asyncio.sleep(0)

    assert tasks and all(t.cancelled() or t.done() for t in tasks)
