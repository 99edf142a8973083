import logging

from core.config import Settings
from services.app_state import Action, AppState, Logout, SetUser, Store
from services.auth_controller import AuthController
from services.backend_client import BackendClient
from services.data_controller import DataController
from services.session_cache import SessionCache
from services.toasts import ToastManager

logger = logging.getLogger(__name__)


class AppController:
    """Everything one browser tab owns: store, cache, toasts, backend session and controllers"""

    def __init__(
        self,
        tab_id: str,
        client: BackendClient,
        settings: Settings,
        sleep=None,
    ):
        self.tab_id = tab_id
        self.settings = settings
        self.storage = client.storage
        self.store = Store()
        self.cache = SessionCache(self.storage)
        self.toasts = ToastManager(
            self.store,
            default_duration=settings.TOAST_DURATION_MS,
            error_duration=settings.TOAST_ERROR_DURATION_MS,
        )
        self.client = client
        self.auth = AuthController(client, self.store, self.cache, self.toasts, settings)
        self.data = DataController(client, self.store, self.toasts, settings, sleep=sleep)
        self.auth.on_profile_loaded = self.data.load_user_data
        self._unsubscribe = self.store.subscribe(self._log_user_change)
        self.initialized = False

    def _log_user_change(self, state: AppState, action: Action) -> None:
        if isinstance(action, SetUser) and state.current_user is not None:
            logger.info(
                "Tab %s signed in as %s (%s)",
                self.tab_id, state.current_user.id, state.current_user.role.value,
                extra={"tab_id": self.tab_id},
            )
        elif isinstance(action, Logout):
            logger.info("Tab %s logged out", self.tab_id, extra={"tab_id": self.tab_id})

    @property
    def state(self) -> AppState:
        return self.store.state

    async def initialize(self) -> None:
        """Restore the tab's session; runs once per page load"""
        await self.auth.initialize()
        self.initialized = True

    async def shutdown(self) -> None:
        self._unsubscribe()
        self.auth.shutdown()
        self.toasts.shutdown()
        await self.client.close()
