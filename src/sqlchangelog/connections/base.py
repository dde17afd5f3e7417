"""
Abstract base connection class for all ibis-based target connections.
"""

from abc import ABC, abstractmethod
from typing import Any

import ibis

from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.connections.base")


class ReadOnlyConnectionError(RuntimeError):
    """Raised when a write operation is attempted on a read-only connection."""


class BaseConnection(ABC):
    """
    Base class for target database connections using ibis.

    Connection access policy:
        - ``access``: ``"readwrite"`` (default) or ``"read"`` -- a read-only
          connection may report status and history but never migrate.
    """

    def __init__(self, name: str, config: dict[str, Any]):
        """
        Initialize connection.

        Args:
            name: Connection name (from config)
            config: Connection configuration dictionary
        """
        self.name = name
        self.config = config
        self._connection: ibis.BaseBackend | None = None

        self._access: str = config.get("access", "readwrite")
        if self._access not in ("read", "readwrite"):
            raise ValueError(
                f"Connection '{name}': invalid access policy '{self._access}'. Must be 'read' or 'readwrite'."
            )

    @property
    def access(self) -> str:
        """Get the access policy for this connection ('read' or 'readwrite')."""
        return self._access

    @property
    def is_read_only(self) -> bool:
        """Whether this connection is read-only."""
        return self._access == "read"

    def assert_writable(self, operation: str = "write") -> None:
        """
        Assert that this connection allows write operations.

        Raises:
            ReadOnlyConnectionError: If connection is read-only
        """
        if self.is_read_only:
            raise ReadOnlyConnectionError(
                f"Cannot perform {operation} on read-only connection '{self.name}'. "
                f"This connection has access='read'. To allow writes, "
                f"set access='readwrite' in the connection config."
            )

    @property
    @abstractmethod
    def connection(self) -> ibis.BaseBackend:
        """
        Get ibis backend connection (lazy initialization).

        Returns:
            ibis.BaseBackend: ibis backend connection
        """

    def close(self) -> None:
        """Close connection and cleanup resources."""
        if self._connection is not None:
            try:
                self._connection.disconnect()
            except Exception as e:
                logger.debug(f"Error during disconnect() for {self.name}: {e}")
            self._connection = None

    def __enter__(self) -> "BaseConnection":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
