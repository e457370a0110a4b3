"""File change notifier components."""

from .base import (
    BaseNotifier,
    CapabilityError,
    NotifierError,
    SubscriptionError,
    WatchError,
)
from .metadata import SubscriptionState, WatchedRoot
from .notifier import WatchdogNotifier

__all__ = [
    "BaseNotifier",
    "CapabilityError",
    "NotifierError",
    "SubscriptionError",
    "SubscriptionState",
    "WatchError",
    "WatchedRoot",
    "WatchdogNotifier",
]
