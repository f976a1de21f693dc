"""Application layer with lazy exports to avoid heavy imports."""

__all__ = ["main", "DependencyContainer"]


def __getattr__(name):
    if name == "main":
        from .app import main as _main

        return _main
    if name == "DependencyContainer":
        from .bootstrap.container import DependencyContainer as _DependencyContainer

        return _DependencyContainer
    raise AttributeError(f"module 'botapp' has no attribute {name!r}")
