"""Lifecycle utilities for shutting down browser resources cleanly."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import psutil

from .contexts import ExecutionContextFactory

_DEFAULT_TIMEOUT = 5
_PLAYWRIGHT_PATTERNS = ('ms-playwright', 'playwright')
_BROWSER_NAMES = ('chrome', 'chromium', 'headless_shell')


async def shutdown_browser_resources(
    factory: Optional[ExecutionContextFactory],
    *,
    logger: Optional[logging.Logger] = None,
    force: bool = True,
) -> None:
    """Stop the shared Playwright driver, then clean up anything it left behind."""

    log = logger or logging.getLogger('BrowserShutdown')
    if factory is not None:
        await factory.shutdown()

    lingering = list_running_browser_processes()
    if not lingering:
        return
    if force:
        log.info("Force killing lingering browser processes: %s", ", ".join(sorted(set(lingering))))
        force_kill_browser_processes(logger=log)
    else:
        log.warning(
            "Browser processes still running but force kill disabled: %s",
            ", ".join(sorted(set(lingering))),
        )


def force_kill_browser_processes(
    *, logger: Optional[logging.Logger] = None, timeout: float = _DEFAULT_TIMEOUT
) -> int:
    """Terminate Playwright-managed Chromium processes; returns how many were signalled."""

    log = logger or logging.getLogger('BrowserShutdown')
    processes = [proc for proc, _ in _find_playwright_processes()]
    if not processes:
        log.debug("No Playwright-managed browser processes found to kill")
        return 0

    for proc in processes:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            log.warning("Failed to terminate pid=%s: %s", proc.pid, exc)

    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            log.info("Force killed pid=%s", proc.pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            log.warning("Failed to kill pid=%s: %s", proc.pid, exc)

    return len(processes)


def list_running_browser_processes() -> List[str]:
    """Return names of detected Playwright-managed browser processes."""

    return [name for _, name in _find_playwright_processes()]


def _find_playwright_processes() -> List[Tuple[psutil.Process, str]]:
    found: List[Tuple[psutil.Process, str]] = []
    for proc in psutil.process_iter(['pid', 'name', 'exe', 'cmdline']):
        try:
            name = (proc.info.get('name') or '').lower()
            location = ' '.join(
                [proc.info.get('exe') or ''] + list(proc.info.get('cmdline') or [])
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if not any(browser in name for browser in _BROWSER_NAMES):
            continue
        if any(pattern in location for pattern in _PLAYWRIGHT_PATTERNS):
            found.append((proc, name))
    return found
