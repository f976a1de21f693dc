import pytest

from bookings.scheduler import ExamScheduler
from botapp.bootstrap import DependencyContainer
from infrastructure.settings import load_settings
from monitoring.availability_poller import ExamAvailabilityPoller
from tests.helpers import FakeNotifier


def _container(tmp_path, **env):
    settings = load_settings({
        "DATA_DIRECTORY": str(tmp_path),
        "SLOT_POOL_SIZE": "3",
        "BATCH_CONCURRENCY_LIMIT": "2",
        **env,
    })
    return DependencyContainer(settings, overrides={"notifier": FakeNotifier()})


@pytest.mark.asyncio
async def test_build_dependencies_wires_shared_instances(tmp_path):
    container = _container(tmp_path)

    deps = container.build_dependencies()

    assert isinstance(deps.scheduler, ExamScheduler)
    assert deps.orchestrator.slot_pool is deps.slot_pool
    assert deps.orchestrator.context_factory is deps.context_factory
    assert deps.orchestrator.default_concurrency == 2
    assert deps.slot_pool.size == 3
    assert deps.scheduler.orchestrator is deps.orchestrator
    assert deps.notifier is container.notifier
    assert set(deps.as_dict()) >= {"scheduler", "orchestrator", "slot_pool", "http_client"}
    await deps.http_client.aclose()


@pytest.mark.asyncio
async def test_build_poller_returns_fresh_pollers_sharing_endpoint_sources(tmp_path):
    container = _container(tmp_path, BOT_TIMEZONE="Europe/Berlin")

    first = container.build_poller()
    second = container.build_poller()

    assert isinstance(first, ExamAvailabilityPoller)
    assert first is not second
    assert first.capturer is second.capturer
    assert first.timezone.zone == "Europe/Berlin"
    await container.http_client.aclose()


def test_overrides_take_precedence(tmp_path):
    sentinel = object()
    container = DependencyContainer(
        load_settings({"DATA_DIRECTORY": str(tmp_path)}),
        overrides={"slot_pool": sentinel},
    )

    assert container.slot_pool is sentinel
