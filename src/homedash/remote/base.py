"""Base interfaces for the remote identity service and realtime store."""

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass
class Identity:
    """A verified account returned by the identity service."""

    uid: str
    email: str
    id_token: str | None = None


class IdentityService(ABC):
    """Abstract base for credential verification and account creation."""

    @abstractmethod
    async def verify_credentials(self, email: str, password: str) -> Identity:
        """Return the verified identity or raise AuthError."""

    @abstractmethod
    async def create_account(self, email: str, password: str) -> Identity:
        """Create a new email/password account or raise AuthError."""

    async def close(self) -> None:
        """Release any held connections."""


class RemoteStore(ABC):
    """Abstract base for the keyed realtime document store.

    Paths are slash-separated (``devices/ESP32_A/data/relays/0/state``).
    """

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Return the value at path, or None when absent."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at path."""

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Delete the value at path. Removing an absent path is not an error."""

    @abstractmethod
    async def update(self, changes: Mapping[str, Any]) -> None:
        """Apply several path writes atomically. A None value deletes the path."""

    @abstractmethod
    def watch(self, path: str) -> AsyncGenerator[Any, None]:
        """Yield the value at path now and after every change, until closed."""

    async def close(self) -> None:
        """Release any held connections."""
