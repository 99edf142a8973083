"""
Per-tab session cache.

Keeps the signed-in user's profile and the time it was stored, so a reload
can render the user immediately instead of waiting on a profile fetch.
"""

import json
import logging
import time
from typing import Callable, Dict, Optional

from schemas.auth import UserProfile

logger = logging.getLogger(__name__)

CACHED_USER_KEY = "traffic_app_user"
AUTH_TIMESTAMP_KEY = "traffic_app_auth_timestamp"


class TabStorage:
    """String key/value store scoped to a single browser tab"""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._items


class SessionCache:
    def __init__(self, storage: TabStorage, clock: Callable[[], float] = time.time):
        self.storage = storage
        self.clock = clock

    def save(self, profile: UserProfile) -> None:
        self.storage.set_item(CACHED_USER_KEY, profile.model_dump_json())
        self.touch()

    def touch(self) -> None:
        """Mark the cached profile as confirmed now"""
        self.storage.set_item(AUTH_TIMESTAMP_KEY, str(self.clock()))

    def age(self) -> Optional[float]:
        raw = self.storage.get_item(AUTH_TIMESTAMP_KEY)
        if raw is None:
            return None
        try:
            return self.clock() - float(raw)
        except ValueError:
            return None

    def load(self, max_age: Optional[float] = None) -> Optional[UserProfile]:
        """Cached profile, or None if missing, unreadable or older than max_age seconds"""
        raw = self.storage.get_item(CACHED_USER_KEY)
        if not raw:
            return None
        age = self.age()
        if max_age is not None and (age is None or age > max_age):
            return None
        try:
            return UserProfile.model_validate(json.loads(raw))
        except ValueError:
            logger.warning("Dropping unreadable cached profile")
            self.clear()
            return None

    def clear(self) -> None:
        self.storage.remove_item(CACHED_USER_KEY)
        self.storage.remove_item(AUTH_TIMESTAMP_KEY)
