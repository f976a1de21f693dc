"""Browser slot and execution context management for booking automation."""

from .contexts import ExecutionContext, ExecutionContextFactory
from .lifecycle import force_kill_browser_processes, shutdown_browser_resources
from .slot_pool import ResourceSlot, SlotPool

__all__ = [
    "ExecutionContext",
    "ExecutionContextFactory",
    "ResourceSlot",
    "SlotPool",
    "force_kill_browser_processes",
    "shutdown_browser_resources",
]
