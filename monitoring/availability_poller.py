"""Polling state machine that watches the exam finder endpoint for a booking window."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import httpx

from automation.shared.booking_contracts import (
    CallbackError,
    CaptureExhaustedError,
    ExamRecord,
    MonitoringTarget,
    TransientNetworkError,
)
from infrastructure.constants import POLL_REQUEST_HEADERS, CaptureConfig, PollingConfig
from monitoring.endpoint_capture import EndpointCapturer
from monitoring.matching import filter_matching, parse_records, prioritize, resolve_timezone


class PollerState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    POLLING = "polling"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"


@dataclass
class PollerHandlers:
    """Callbacks invoked by the poller. Each may be a plain function or a coroutine."""

    on_found: Optional[Callable[[ExamRecord], Any]] = None
    on_processable: Optional[Callable[[ExamRecord], Any]] = None
    on_timeout: Optional[Callable[[], Any]] = None


class ExamAvailabilityPoller:
    """Polls the captured endpoint on an interval and dispatches matching records.

    One instance runs at most one session at a time. The endpoint URL is cached
    across sessions; seen record ids are reset when a new session starts.
    """

    def __init__(
        self,
        capturer: EndpointCapturer,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timezone: Any = None,
        fetch_timeout: float = PollingConfig.FETCH_TIMEOUT,
        capture_max_retries: int = CaptureConfig.MAX_RETRIES,
        capture_retry_delay: float = CaptureConfig.RETRY_DELAY,
        recapture_max_retries: int = CaptureConfig.RECAPTURE_MAX_RETRIES,
        recapture_retry_delay: float = CaptureConfig.RECAPTURE_RETRY_DELAY,
        stale_session_grace: float = PollingConfig.STALE_SESSION_GRACE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.capturer = capturer
        self.logger = logger or logging.getLogger('ExamApiMonitor')
        self.timezone = resolve_timezone(timezone)
        self.fetch_timeout = fetch_timeout
        self.capture_max_retries = capture_max_retries
        self.capture_retry_delay = capture_retry_delay
        self.recapture_max_retries = recapture_max_retries
        self.recapture_retry_delay = recapture_retry_delay
        self.stale_session_grace = stale_session_grace

        self._client = http_client
        self._owns_client = http_client is None

        self.endpoint_url: Optional[str] = None
        self._state = PollerState.IDLE
        self._is_active = False
        self._should_stop = False
        self._is_processing_match = False
        self._seen_record_ids: Set[str] = set()
        self._target: Optional[MonitoringTarget] = None
        self._handlers = PollerHandlers()
        self._loop_task: Optional[asyncio.Task] = None
        self._deadline_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def is_processing_match(self) -> bool:
        return self._is_processing_match

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "is_active": self._is_active,
            "has_endpoint": bool(self.endpoint_url),
            "endpoint_url": self.endpoint_url,
            "processing_match": self._is_processing_match,
            "seen_record_ids": sorted(self._seen_record_ids),
        }

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def start_polling(
        self, target: MonitoringTarget, handlers: Optional[PollerHandlers] = None
    ) -> None:
        """Start a session for ``target``.

        Raises:
            CaptureExhaustedError: the endpoint could not be captured, so the
                session never reached the polling state.
        """

        if self._is_active or self._is_processing_match:
            self.logger.warning("⚠️ Previous session still running, stopping it first")
            await self.force_stop()
            await asyncio.sleep(self.stale_session_grace)

        self._should_stop = False
        self._is_processing_match = False
        self._seen_record_ids.clear()
        self._tick_task = None
        self._stopped = asyncio.Event()
        self._target = target
        self._handlers = handlers or PollerHandlers()

        if not self.endpoint_url:
            self.logger.info("📡 API URL not available, capturing it first")
            self._state = PollerState.CAPTURING
            self.endpoint_url = await self.capturer.capture_endpoint(
                self.capture_max_retries, self.capture_retry_delay
            )
            if not self.endpoint_url:
                self._state = PollerState.STOPPED
                self._stopped.set()
                self.logger.error("❌ Could not capture API URL, aborting polling")
                raise CaptureExhaustedError("Endpoint capture exhausted all attempts")

        self.logger.info(
            "📡 Polling every %ss for booking windows opening at %s",
            target.poll_interval,
            target.target_time.isoformat(),
        )
        self.logger.info("⏰ Maximum polling duration: %.1f minutes", target.max_duration / 60)
        self.logger.info("📍 Priority locations: %s", ", ".join(target.priority_tags) or "none")
        self.logger.debug("🔗 Using API URL: %s", self.endpoint_url)

        self._state = PollerState.POLLING
        self._is_active = True
        self._deadline_task = asyncio.create_task(
            self._run_deadline(target.max_duration), name="poller-deadline"
        )
        self._loop_task = asyncio.create_task(
            self._run_loop(target.poll_interval), name="poller-loop"
        )

    def stop(self) -> None:
        """Stop the current session. Calling it again is a no-op."""

        self._should_stop = True
        if not self._is_active:
            return
        self._teardown(PollerState.STOPPED)
        self.logger.info("🛑 Polling stopped")

    async def force_stop(
        self,
        max_wait: float = PollingConfig.FORCE_STOP_MAX_WAIT,
        log_interval: float = PollingConfig.FORCE_STOP_LOG_INTERVAL,
    ) -> None:
        """Stop and wait (bounded) for an in-flight processable handler to finish."""

        self.stop()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        while self._is_processing_match and loop.time() < deadline:
            self.logger.info("⏳ Waiting for match processing to complete")
            await asyncio.sleep(min(log_interval, max(deadline - loop.time(), 0)))

        if self._is_processing_match:
            self.logger.warning("⚠️ Force stop timeout - processing may still be running")

    async def destroy(self) -> None:
        await self.force_stop()
        self.endpoint_url = None
        self._seen_record_ids.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def refresh_endpoint(
        self,
        max_retries: int = CaptureConfig.REFRESH_MAX_RETRIES,
        retry_delay: float = CaptureConfig.REFRESH_RETRY_DELAY,
    ) -> Optional[str]:
        """Forget the cached endpoint and capture a fresh one."""

        self.endpoint_url = None
        self.endpoint_url = await self.capturer.capture_endpoint(max_retries, retry_delay)
        return self.endpoint_url

    async def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait until the current session ends; returns False on timeout."""

        try:
            await asyncio.wait_for(self._stopped.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _teardown(self, final_state: PollerState) -> None:
        self._is_active = False
        self._should_stop = True

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._loop_task, self._deadline_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._loop_task = None
        self._deadline_task = None

        self._state = final_state
        if final_state is PollerState.STOPPED:
            self._stopped.set()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    async def _run_loop(self, interval: float) -> None:
        while self._is_active:
            await asyncio.sleep(interval)
            if not self._is_active:
                break

            if self._is_processing_match:
                self.logger.debug("⏳ Still processing previous match, skipping this poll")
                continue
            if self._should_stop:
                self.logger.info("🛑 Polling stop requested")
                self.stop()
                break
            if self._tick_task is not None and not self._tick_task.done():
                self.logger.debug("Previous poll still running, skipping this poll")
                continue

            self._tick_task = asyncio.create_task(self.poll_once(), name="poller-tick")

    async def _run_deadline(self, max_duration: float) -> None:
        await asyncio.sleep(max_duration)
        if not self._is_active:
            return

        if self._should_stop or self._is_processing_match:
            # A match is already being handed off; the session is not a timeout.
            self.logger.info("⏰ Max duration reached while a match is being processed")
            self.stop()
            return

        self.logger.info(
            "⏰ Reached max duration of %.1f minutes - stopping poll", max_duration / 60
        )
        self._teardown(PollerState.TIMED_OUT)
        await self._invoke("timeout", self._handlers.on_timeout)
        self._state = PollerState.STOPPED
        self._stopped.set()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    async def poll_once(self) -> None:
        """Run a single poll: fetch, filter, rank, and dispatch."""

        if not self._is_active or self._should_stop:
            return
        if self._is_processing_match:
            self.logger.debug("⏳ Still processing previous match, skipping this poll")
            return

        target = self._target
        try:
            payload = await self._fetch(self.endpoint_url)
        except TransientNetworkError as exc:
            self.logger.error("❌ Error polling API: %s", exc)
            if exc.invalidates_endpoint:
                await self._recapture()
            return
        if not self._is_active:
            return

        records = parse_records(payload)
        if records is None:
            self.logger.warning("⚠️ Unexpected API response format")
            return

        matches = filter_matching(records, target.target_time, self.timezone)
        if not matches:
            self.logger.info(
                "⌛ No matching exams with booking opening at %s", target.target_time.isoformat()
            )
            return

        ranked = prioritize(matches, target.priority_tags)
        self.logger.info("✅ Found %s matching exam(s)", len(ranked))
        if len(ranked) > 1:
            for index, record in enumerate(ranked, start=1):
                self.logger.info("  %s. %s", index, record.describe())

        for record in ranked:
            if not self._is_active:
                return
            if record.record_id and record.record_id in self._seen_record_ids:
                self.logger.debug("⏭️ Skipping already processed OID %s", record.record_id[:8])
                continue

            await self._invoke("found", self._handlers.on_found, record)
            if not self._is_active:
                return

            if not record.record_id:
                self.logger.info("⏳ %s, continuing to poll", record.describe())
                continue

            self.logger.info("🎯 Exam with OID found: %s", record.describe())
            self._seen_record_ids.add(record.record_id)

            self._is_processing_match = True
            if target.stop_on_first_match:
                self._should_stop = True
            try:
                await self._invoke("processable", self._handlers.on_processable, record)
            finally:
                self._is_processing_match = False

            if target.stop_on_first_match or not self._is_active:
                self.stop()
                return

    async def _fetch(self, url: Optional[str]) -> Any:
        if not url:
            raise TransientNetworkError("No endpoint URL cached", invalidates_endpoint=True)

        client = self._get_client()
        try:
            response = await client.get(
                url, headers=POLL_REQUEST_HEADERS, timeout=self.fetch_timeout
            )
        except httpx.ConnectError as exc:
            raise TransientNetworkError(
                f"Connection failed: {exc}", invalidates_endpoint=True
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Request failed: {exc}") from exc

        if response.status_code == 404:
            raise TransientNetworkError("Endpoint returned 404", invalidates_endpoint=True)
        if response.is_error:
            raise TransientNetworkError(f"Endpoint returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise TransientNetworkError("Endpoint returned invalid JSON") from exc

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.fetch_timeout)
        return self._client

    async def _recapture(self) -> None:
        self.logger.info("🔄 Endpoint looks invalid, attempting to recapture API URL")
        self.endpoint_url = None
        self._state = PollerState.CAPTURING
        url = await self.capturer.capture_endpoint(
            self.recapture_max_retries, self.recapture_retry_delay
        )
        if not url:
            self.logger.error("❌ Failed to recapture API URL, stopping polling")
            self.stop()
            return

        self.endpoint_url = url
        if self._is_active:
            self._state = PollerState.POLLING
            self.logger.info("✅ Recaptured API URL, resuming polling")

    async def _invoke(self, name: str, handler: Optional[Callable[..., Any]], *args: Any) -> None:
        if handler is None:
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            error = CallbackError(f"{name} handler raised: {exc}")
            self.logger.error("❌ %s", error, exc_info=exc)
