"""
Backend Registry.

Maps backend identifiers ("pg", "sqlite", ...) to DDL generators. New
dialects are added by registering them; migration records keep text for
backends the registry does not know about.
"""

import structlog

from schemachain.backends.base import Backend
from schemachain.backends.pg import PgBackend
from schemachain.backends.sqlite import SqliteBackend
from schemachain.errors import UnsupportedBackendError

logger = structlog.get_logger(__name__)


class BackendRegistry:
    """Registry of known backends."""

    def __init__(self, backends: list[Backend] | None = None) -> None:
        self._backends: dict[str, Backend] = {}
        for backend in backends or []:
            self.register(backend)

    def register(self, backend: Backend) -> None:
        """
        Register a backend under its name, replacing any previous one.

        Args:
            backend: Backend instance
        """
        if not backend.name:
            raise ValueError(f"{backend!r} has no name")
        self._backends[backend.name] = backend
        logger.debug("Backend registered", backend=backend.name)

    def get(self, name: str) -> Backend:
        """
        Look up a backend.

        Raises:
            UnsupportedBackendError: If no backend is registered under `name`
        """
        try:
            return self._backends[name]
        except KeyError:
            raise UnsupportedBackendError(name) from None

    def names(self) -> list[str]:
        return sorted(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __iter__(self):
        return iter(self._backends.values())


_default_registry: BackendRegistry | None = None


def get_backend_registry() -> BackendRegistry:
    """Get the process-wide registry holding the built-in backends."""
    global _default_registry
    if _default_registry is None:
        _default_registry = BackendRegistry([PgBackend(), SqliteBackend()])
    return _default_registry


def get_backend(name: str) -> Backend:
    """Look up a backend in the default registry."""
    return get_backend_registry().get(name)
