import asyncio

import pytest

from schemas.toasts import ToastSeverity
from services.app_state import Store
from services.toasts import ToastManager


@pytest.fixture
def toasts():
    manager = ToastManager(Store(), default_duration=40, error_duration=80)
    yield manager
    manager.shutdown()


async def test_toast_expires_after_its_duration(toasts):
    toast = toasts.success("Saved")

    assert [t.id for t in toasts.toasts] == [toast.id]
    await asyncio.sleep(0.1)
    assert toasts.toasts == []


async def test_errors_stay_longer(toasts):
    toasts.info("Heads up")
    error = toasts.error("Something broke")

    await asyncio.sleep(0.06)
    assert [t.id for t in toasts.toasts] == [error.id]
    assert error.duration == 80
    await asyncio.sleep(0.06)
    assert toasts.toasts == []


async def test_zero_duration_is_sticky(toasts):
    toasts.warning("Stays", duration=0)

    await asyncio.sleep(0.06)
    assert len(toasts.toasts) == 1


async def test_remove_cancels_timer(toasts):
    toast = toasts.info("Bye")

    assert toasts.remove(toast.id) is True
    assert toasts.remove(toast.id) is False
    assert toasts._timers == {}


async def test_clear_all(toasts):
    for severity in ToastSeverity:
        toasts.add(severity.value, severity)

    toasts.clear_all()

    assert toasts.toasts == []
    assert toasts._timers == {}


async def test_default_durations_come_from_severity():
    manager = ToastManager(Store())
    try:
        assert manager.success("ok").duration == 4000
        assert manager.error("bad").duration == 6000
    finally:
        manager.shutdown()
