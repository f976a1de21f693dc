#!/usr/bin/env python3
"""
Exam booking bot - entrypoint wiring settings, logging and the runtime lifecycle.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

if __name__ == "__main__" and __package__ is None:
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    __package__ = "botapp"

import psutil

from automation.browser.lifecycle import force_kill_browser_processes
from botapp.bootstrap import DependencyContainer
from botapp.runtime import LifecycleManager
from infrastructure.logging_config import setup_logging
from infrastructure.settings import AppSettings, load_settings


def terminate_duplicate_bot_processes(logger: logging.Logger) -> int:
    """Terminate other bot python processes that would poll the same schedules."""

    current_pid = os.getpid()
    markers = {'botapp/app.py', 'botapp\\app.py', '-m botapp'}
    terminated = 0

    for proc in psutil.process_iter(['pid', 'cmdline']):
        pid = proc.info.get('pid')
        if pid in {None, current_pid}:
            continue

        cmdline = proc.info.get('cmdline') or []
        joined = ' '.join(cmdline)
        if not joined:
            continue

        if any(marker in joined for marker in markers):
            logger.warning("Terminating leftover bot process pid=%s cmd=%s", pid, joined)
            try:
                proc.terminate()
                proc.wait(timeout=5)
                terminated += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.TimeoutExpired) as exc:
                logger.error("Failed to terminate process %s: %s", pid, exc)
    return terminated


async def run(settings: AppSettings) -> None:
    """Run the scheduler until SIGINT/SIGTERM, then shut down gracefully."""

    logger = logging.getLogger('Main')
    container = DependencyContainer(settings)
    lifecycle = LifecycleManager(container.build_dependencies())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await lifecycle.startup()
    logger.info("🚀 Bot started; waiting for due schedules")
    try:
        await stop_event.wait()
        logger.info("🚨 Shutdown signal received, initiating graceful shutdown...")
    finally:
        await lifecycle.shutdown()


def main() -> None:
    """Entry point used by both CLI script and module execution."""

    settings = load_settings()
    setup_logging(settings.production_mode)

    logger = logging.getLogger('Main')
    logger.info("=" * 50)
    logger.info("Exam Booking Bot - AsyncIO Architecture")
    logger.info("=" * 50)

    logger.info("🔄 Checking for orphaned browser processes before startup...")
    force_kill_browser_processes(logger=logger)
    terminate_duplicate_bot_processes(logger)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("✅ Stopped by user (Ctrl+C)")
    except Exception as exc:
        logger.error("❌ Error: %s", exc, exc_info=True)
    finally:
        logger.info("🔄 Final cleanup...")
        force_kill_browser_processes(logger=logger)


if __name__ == '__main__':
    main()
