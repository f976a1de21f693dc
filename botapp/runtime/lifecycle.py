"""Lifecycle orchestration for the exam bot runtime."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from automation.browser.lifecycle import shutdown_browser_resources
from botapp.bootstrap import AppDependencies

METRICS_INTERVAL_SECONDS = 300


class LifecycleManager:
    """Manage startup, shutdown, and periodic tasks for the bot runtime."""

    def __init__(
        self,
        dependencies: AppDependencies,
        *,
        logger: Optional[logging.Logger] = None,
        metrics_interval: float = METRICS_INTERVAL_SECONDS,
    ) -> None:
        self.dependencies = dependencies
        self.logger = logger or logging.getLogger('LifecycleManager')
        self.metrics_interval = metrics_interval
        self.metrics_task: Optional[asyncio.Task] = None
        self._started = False

    async def startup(self) -> None:
        """Start the schedule watcher and the periodic metrics log."""

        if self._started:
            return
        self._started = True

        self.dependencies.scheduler.start()
        self.logger.info("Exam scheduler started in main event loop")

        self.metrics_task = asyncio.create_task(self._metrics_loop())
        self.logger.info(
            "Metrics monitoring started (%s-minute intervals)", int(self.metrics_interval // 60)
        )

    async def shutdown(self) -> None:
        """Stop monitoring, drain batches, and release browser resources."""

        if not self._started:
            return
        self._started = False
        self.logger.info("🔴 Starting shutdown sequence...")

        if self.metrics_task:
            self.metrics_task.cancel()
            try:
                await self.metrics_task
            except asyncio.CancelledError:
                pass
            self.metrics_task = None
            self.logger.info("✅ Metrics monitoring stopped")

        scheduler = self.dependencies.scheduler
        if scheduler.is_running:
            await scheduler.stop()
        await scheduler.stop_all_monitoring()
        self.logger.info("✅ Exam scheduler stopped")

        self.logger.info("🔄 Releasing browser resources...")
        try:
            await shutdown_browser_resources(self.dependencies.context_factory, logger=self.logger)
            self.logger.info("✅ Browser cleanup completed")
        except Exception as exc:
            self.logger.error("❌ Error during browser cleanup: %s", exc)

        await self.dependencies.http_client.aclose()
        self.logger.info("✅ Shutdown sequence completed")

    def log_metrics(self) -> None:
        """Collect and log key operational metrics."""

        try:
            accounts = self.dependencies.account_manager.get_all_accounts()
            active_accounts = len([account for account in accounts if account.active])
            status = self.dependencies.scheduler.get_status()
            pool = self.dependencies.slot_pool

            self.logger.info(
                "=== BOT METRICS REPORT ===\n"
                f"👥 Accounts: {len(accounts)} total, {active_accounts} active\n"
                f"📡 Monitoring sessions: {status['active_sessions']}\n"
                f"🧩 Slots in use: {pool.in_use_count}/{pool.size} (peak {pool.peak_in_use})\n"
                "=========================="
            )
        except Exception as exc:
            self.logger.error("Error collecting bot metrics: %s", exc, exc_info=True)

    async def _metrics_loop(self) -> None:
        """Periodic metrics logging loop."""

        try:
            while True:
                self.log_metrics()
                await asyncio.sleep(self.metrics_interval)
        except asyncio.CancelledError:
            self.logger.info("Metrics logging task cancelled")
            raise


__all__ = ['LifecycleManager']
