import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from schemas.toasts import Toast, ToastSeverity
from services.app_state import AddToast, RemoveToast, Store

logger = logging.getLogger(__name__)


class ToastManager:
    """Timed notifications; each toast removes itself once its duration elapses"""

    def __init__(self, store: Store, default_duration: int = 4000, error_duration: int = 6000):
        self.store = store
        self.default_duration = default_duration
        self.error_duration = error_duration
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def toasts(self) -> List[Toast]:
        return self.store.state.toasts

    def add(
        self,
        message: str,
        severity: ToastSeverity = ToastSeverity.info,
        duration: Optional[int] = None,
    ) -> Toast:
        if duration is None:
            duration = self.error_duration if severity == ToastSeverity.error else self.default_duration
        toast = Toast(id=uuid.uuid4().hex[:12], message=message, severity=severity, duration=duration)
        self.store.dispatch(AddToast(toast=toast))

        if duration > 0:
            loop = asyncio.get_running_loop()
            self._timers[toast.id] = loop.call_later(duration / 1000, self._expire, toast.id)
        return toast

    def _expire(self, toast_id: str) -> None:
        self._timers.pop(toast_id, None)
        self.store.dispatch(RemoveToast(id=toast_id))

    def remove(self, toast_id: str) -> bool:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        present = any(t.id == toast_id for t in self.toasts)
        if present:
            self.store.dispatch(RemoveToast(id=toast_id))
        return present

    def clear_all(self) -> None:
        for toast in list(self.toasts):
            self.remove(toast.id)

    def shutdown(self) -> None:
        """Cancel every pending expiry; the toasts themselves stay in state"""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def success(self, message: str, duration: Optional[int] = None) -> Toast:
        return self.add(message, ToastSeverity.success, duration)

    def error(self, message: str, duration: Optional[int] = None) -> Toast:
        logger.info("Error toast: %s", message)
        return self.add(message, ToastSeverity.error, duration)

    def warning(self, message: str, duration: Optional[int] = None) -> Toast:
        return self.add(message, ToastSeverity.warning, duration)

    def info(self, message: str, duration: Optional[int] = None) -> Toast:
        return self.add(message, ToastSeverity.info, duration)
