"""Bootstrap helpers for wiring exam bot components."""

from .container import AppDependencies, DependencyContainer

__all__ = [
    'AppDependencies',
    'DependencyContainer',
]
