"""Runtime helpers for the exam bot process."""

from .lifecycle import LifecycleManager

__all__ = ['LifecycleManager']
