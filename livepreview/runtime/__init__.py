"""Sandbox runtime providers."""

from ..config import RunnerConfig
from .base import ProcessHandle, RuntimeProvider, Sandbox
from .local import LocalRuntime


def create_runtime(config: RunnerConfig) -> RuntimeProvider:
    """Build the provider named by config.runtime."""
    if config.runtime == "modal":
        from .modal_runtime import ModalRuntime

        return ModalRuntime(config)
    return LocalRuntime(config)


__all__ = [
    "LocalRuntime",
    "ProcessHandle",
    "RuntimeProvider",
    "Sandbox",
    "create_runtime",
]
