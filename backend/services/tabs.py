import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Engine

from core.config import Settings
from services.app_controller import AppController
from services.backend_client import BackendClient
from services.local_backend import LocalBackendClient
from services.remote_backend import RemoteBackendClient
from services.session_cache import TabStorage

logger = logging.getLogger(__name__)

ClientFactory = Callable[[TabStorage], BackendClient]


def backend_factory(settings: Settings, engine: Optional[Engine] = None) -> ClientFactory:
    """Builds one backend client per tab, local or hosted depending on BACKEND_MODE"""
    if settings.BACKEND_MODE == "remote":
        def build(storage: TabStorage) -> BackendClient:
            return RemoteBackendClient(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, storage)
        return build

    def build_local(storage: TabStorage) -> BackendClient:
        return LocalBackendClient(engine, storage, upload_dir=settings.UPLOAD_DIR)
    return build_local


class TabRegistry:
    """
    Controllers keyed by tab id.

    A tab's storage outlives its controller: reload() drops the controller and
    restores a new one from the same storage, as a page reload would. Tabs not
    seen for TAB_IDLE_SECONDS are dropped with their storage, and the oldest
    go first once more than MAX_TABS are held.
    """

    def __init__(self, settings: Settings, client_factory: ClientFactory, sleep=None, clock=time.monotonic):
        self.settings = settings
        self.client_factory = client_factory
        self.sleep = sleep
        self.clock = clock
        self._tabs: Dict[str, AppController] = {}
        self._storages: Dict[str, TabStorage] = {}
        self._last_seen: Dict[str, float] = {}
        # restores in flight; each tab waits only on its own
        self._starting: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tabs)

    def __contains__(self, tab_id: str) -> bool:
        return tab_id in self._tabs

    async def _create(self, tab_id: str) -> AppController:
        storage = self._storages.setdefault(tab_id, TabStorage())
        controller = AppController(tab_id, self.client_factory(storage), self.settings, sleep=self.sleep)
        try:
            await controller.initialize()
        except BaseException:
            await controller.shutdown()
            raise
        self._tabs[tab_id] = controller
        logger.debug("Tab %s ready", tab_id, extra={"tab_id": tab_id})
        return controller

    def peek(self, tab_id: str) -> Optional[AppController]:
        """Controller of an already open tab; never creates one"""
        controller = self._tabs.get(tab_id)
        if controller is not None:
            self._last_seen[tab_id] = self.clock()
        return controller

    async def get(self, tab_id: str) -> AppController:
        self._last_seen[tab_id] = self.clock()
        controller = self._tabs.get(tab_id)
        if controller is not None:
            return controller

        starting = self._starting.get(tab_id)
        if starting is None:
            starting = asyncio.get_running_loop().create_task(self._create(tab_id), name=f"restore-tab-{tab_id}")
            self._starting[tab_id] = starting
            starting.add_done_callback(lambda task: self._forget_start(tab_id, task))
            await self._evict(keep=tab_id)
        return await asyncio.shield(starting)

    def _forget_start(self, tab_id: str, task: asyncio.Task) -> None:
        if self._starting.get(tab_id) is task:
            del self._starting[tab_id]

    def _eviction_candidates(self, keep: str) -> List[str]:
        now = self.clock()
        held = sorted(
            (seen, tab_id) for tab_id, seen in self._last_seen.items()
            if tab_id != keep and tab_id not in self._starting
        )
        idle = [tab_id for seen, tab_id in held if now - seen > self.settings.TAB_IDLE_SECONDS]
        overflow = len(self._last_seen) - len(idle) - self.settings.MAX_TABS
        if overflow > 0:
            idle += [tab_id for _, tab_id in held if tab_id not in idle][:overflow]
        return idle

    async def _evict(self, keep: str) -> None:
        for tab_id in self._eviction_candidates(keep):
            logger.info("Dropping idle tab %s", tab_id, extra={"tab_id": tab_id})
            await self._drop(tab_id)

    async def _drop(self, tab_id: str) -> None:
        controller = self._tabs.pop(tab_id, None)
        self._storages.pop(tab_id, None)
        self._last_seen.pop(tab_id, None)
        if controller is not None:
            await controller.shutdown()

    async def reload(self, tab_id: str) -> AppController:
        old = self._tabs.pop(tab_id, None)
        if old is not None:
            await old.shutdown()
        return await self.get(tab_id)

    async def close(self, tab_id: str) -> None:
        """Tab closed: controller and its storage are gone"""
        starting = self._starting.get(tab_id)
        if starting is not None:
            await asyncio.wait([starting])
        await self._drop(tab_id)

    async def shutdown(self) -> None:
        starting = list(self._starting.values())
        for task in starting:
            task.cancel()
        if starting:
            await asyncio.wait(starting)
        for tab_id in list(self._last_seen) + list(self._tabs):
            await self._drop(tab_id)
