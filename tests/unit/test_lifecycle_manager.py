import asyncio

import pytest

from botapp.runtime.lifecycle import LifecycleManager
from tests.helpers import DummyLogger, FakeAccountManager, FakeContextFactory, make_account


class StubScheduler:
    def __init__(self):
        self.is_running = False
        self.stop_all_calls = 0

    def start(self):
        self.is_running = True

    async def stop(self):
        self.is_running = False

    async def stop_all_monitoring(self):
        self.stop_all_calls += 1

    def get_status(self):
        return {"is_running": self.is_running, "active_sessions": 0, "sessions": []}


class StubPool:
    size = 2
    in_use_count = 0
    peak_in_use = 1


class StubClient:
    def __init__(self):
        self.closed = False

    async def aclose(self):
        self.closed = True


class Deps:
    def __init__(self):
        self.scheduler = StubScheduler()
        self.context_factory = FakeContextFactory()
        self.http_client = StubClient()
        self.slot_pool = StubPool()
        self.account_manager = FakeAccountManager([make_account("a"), make_account("b", active=False)])


@pytest.mark.asyncio
async def test_startup_and_shutdown(monkeypatch):
    monkeypatch.setattr(
        "automation.browser.lifecycle.list_running_browser_processes", lambda: []
    )
    deps = Deps()
    logger = DummyLogger()
    lifecycle = LifecycleManager(deps, logger=logger, metrics_interval=0.01)

    await lifecycle.startup()
    await asyncio.sleep(0.02)
    assert deps.scheduler.is_running
    assert logger.has("info", "Accounts: 2 total, 1 active")

    await lifecycle.shutdown()

    assert not deps.scheduler.is_running
    assert deps.scheduler.stop_all_calls == 1
    assert deps.context_factory.shutdown_calls == 1
    assert deps.http_client.closed
    assert lifecycle.metrics_task is None

    await lifecycle.shutdown()
    assert deps.scheduler.stop_all_calls == 1
