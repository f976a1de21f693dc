import pytest

from monitoring.endpoint_capture import EndpointCapturer
from tests.helpers import DummyLogger


class ScriptedCapturer(EndpointCapturer):
    """Replaces the browser attempt with a scripted sequence of results."""

    def __init__(self, outcomes, **kwargs):
        super().__init__(logger=DummyLogger(), **kwargs)
        self.outcomes = list(outcomes)
        self.attempts = []

    async def _attempt_capture(self, attempt):
        self.attempts.append(attempt)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_returns_first_captured_url():
    capturer = ScriptedCapturer([None, "https://api.example/examfinder?x=1"])

    url = await capturer.capture_endpoint(max_retries=5, retry_delay=0)

    assert url == "https://api.example/examfinder?x=1"
    assert capturer.attempts == [1, 2]


@pytest.mark.asyncio
async def test_browser_errors_count_as_failed_attempts():
    capturer = ScriptedCapturer([RuntimeError("browser crashed"), "https://api.example/examfinder"])

    url = await capturer.capture_endpoint(max_retries=3, retry_delay=0)

    assert url == "https://api.example/examfinder"
    assert capturer.logger.has("error", "Browser error on attempt 1")


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    capturer = ScriptedCapturer([None, None, None])

    url = await capturer.capture_endpoint(max_retries=3, retry_delay=0)

    assert url is None
    assert capturer.attempts == [1, 2, 3]
    assert capturer.logger.has("error", "Failed to capture API URL after 3 attempts")


def test_defaults_come_from_site_constants():
    capturer = EndpointCapturer()

    assert capturer.marker == "examfinder"
    assert capturer.page_url.startswith("https://")
