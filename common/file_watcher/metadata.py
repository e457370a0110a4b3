"""Bookkeeping records for watched roots and their subscriptions."""

import asyncio
from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, field

from common.models import ChangeEvent, SubscriptionSpec


@dataclass
class SubscriptionState:
    """Live state of one named subscription."""

    name: str
    spec: SubscriptionSpec
    pending: Dict[str, ChangeEvent] = field(default_factory=dict)
    flush_handle: Optional[asyncio.TimerHandle] = None
    deferred_flush: bool = False

    def cancel_flush(self) -> None:
        if self.flush_handle is not None:
            self.flush_handle.cancel()
            self.flush_handle = None


@dataclass
class WatchedRoot:
    """A root directory registered with the notifier."""

    path: str
    observer: Any
    is_active: bool = False
    subscriptions: Dict[str, SubscriptionState] = field(default_factory=dict)
    asserted_states: Set[str] = field(default_factory=set)
    ignore_patterns: Optional[List[str]] = field(
        default_factory=lambda: ["__pycache__/*", "*.pyc", ".git/*", ".hg/*", ".svn/*"]
    )
    clock: int = 0

    def __post_init__(self) -> None:
        """Ensure ignore patterns are a list if None."""
        if self.ignore_patterns is None:
            self.ignore_patterns = ["__pycache__/*", "*.pyc", ".git/*", ".hg/*", ".svn/*"]

    def tick(self) -> int:
        self.clock += 1
        return self.clock
