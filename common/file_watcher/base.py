"""Base notifier interface and error types."""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Sequence

from common.models import (
    NotificationBatch,
    SubscribeAck,
    SubscriptionSpec,
    UnsubscribeAck,
    WatchHandle,
)

SubscriptionListener = Callable[[NotificationBatch], None]


class NotifierError(RuntimeError):
    """Base error for failed notifier requests."""


class CapabilityError(NotifierError):
    """A required capability is not supported by the notifier."""


class WatchError(NotifierError):
    """A root could not be watched."""


class SubscriptionError(NotifierError):
    """A subscription could not be created or removed."""


class BaseNotifier(ABC):
    """Abstract base class for file change notifiers."""

    @abstractmethod
    async def capability_check(
        self, required: Sequence[str] = (), optional: Sequence[str] = ()
    ) -> Dict[str, bool]:
        """Check notifier capabilities.

        Args:
            required: Capabilities that must be supported
            optional: Capabilities to report on without failing

        Returns:
            Mapping of every requested capability to its support flag

        Raises:
            CapabilityError: If any required capability is missing
        """
        pass

    @abstractmethod
    async def watch_project(self, path: str) -> WatchHandle:
        """Register the project containing *path* as a watch root.

        Raises:
            WatchError: If the path cannot be watched
        """
        pass

    @abstractmethod
    async def subscribe(
        self, root: str, name: str, spec: SubscriptionSpec
    ) -> SubscribeAck:
        """Register a named subscription on a watched root.

        Raises:
            SubscriptionError: If the root is unknown or the spec is unsupported
        """
        pass

    @abstractmethod
    async def unsubscribe(self, root: str, name: str) -> UnsubscribeAck:
        """Remove a named subscription.

        Raises:
            SubscriptionError: If the root is not watched
        """
        pass

    @abstractmethod
    async def watch_del_all(self) -> List[str]:
        """Delete every watch and return the roots that were removed."""
        pass

    @abstractmethod
    def add_listener(self, listener: SubscriptionListener) -> None:
        """Register a callback receiving every subscription batch."""
        pass

    @abstractmethod
    def remove_listener(self, listener: SubscriptionListener) -> None:
        pass

    @abstractmethod
    def end(self) -> None:
        """Close the client; no further batches are delivered."""
        pass
