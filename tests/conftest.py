"""Pytest configuration and shared fixtures for the dev server tests."""

import sys
from typing import Dict, Generator, List, Optional, Sequence
from unittest.mock import Mock, patch

import pytest

from common.file_watcher.base import (
    BaseNotifier,
    CapabilityError,
    SubscriptionListener,
)
from common.models import (
    ChangeEvent,
    NotificationBatch,
    SubscribeAck,
    SubscriptionSpec,
    UnsubscribeAck,
    WatchHandle,
)


class FakeNotifier(BaseNotifier):
    """In-memory notifier recording every request it receives."""

    def __init__(self) -> None:
        self.capabilities = {"relative_root"}
        self.watch_error: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None
        self.unsubscribe_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.warning: Optional[str] = None
        self.relative_path: Optional[str] = None
        self.listeners: List[SubscriptionListener] = []
        self.subscriptions: Dict[str, SubscriptionSpec] = {}
        self.roots: List[str] = []
        self.calls: List[str] = []
        self.ended = False

    async def capability_check(
        self, required: Sequence[str] = (), optional: Sequence[str] = ()
    ) -> Dict[str, bool]:
        self.calls.append("capability_check")
        result = {name: name in self.capabilities for name in [*optional, *required]}
        missing = [name for name in required if not result[name]]
        if missing:
            raise CapabilityError(f"missing {missing}")
        return result

    async def watch_project(self, path: str) -> WatchHandle:
        self.calls.append("watch_project")
        if self.watch_error:
            raise self.watch_error
        self.roots.append(path)
        return WatchHandle(watch=path, relative_path=self.relative_path, warning=self.warning)

    async def subscribe(self, root: str, name: str, spec: SubscriptionSpec) -> SubscribeAck:
        self.calls.append("subscribe")
        if self.subscribe_error:
            raise self.subscribe_error
        self.subscriptions[name] = spec
        return SubscribeAck(subscribe=name)

    async def unsubscribe(self, root: str, name: str) -> UnsubscribeAck:
        self.calls.append("unsubscribe")
        if self.unsubscribe_error:
            raise self.unsubscribe_error
        self.subscriptions.pop(name, None)
        return UnsubscribeAck(unsubscribe=name)

    async def watch_del_all(self) -> List[str]:
        self.calls.append("watch_del_all")
        if self.delete_error:
            raise self.delete_error
        roots, self.roots = self.roots, []
        return roots

    def add_listener(self, listener: SubscriptionListener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: SubscriptionListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def end(self) -> None:
        self.calls.append("end")
        self.ended = True

    def emit(self, batch: NotificationBatch) -> None:
        for listener in list(self.listeners):
            listener(batch)


def make_batch(
    *names: str,
    fresh: bool = False,
    subscription: str = "dev_server_subscription",
    clock: int = 0,
) -> NotificationBatch:
    return NotificationBatch(
        subscription=subscription,
        is_fresh_instance=fresh,
        files=[ChangeEvent(name=name, mtime_ms=1_700_000_000_000, exists=True, type="f") for name in names],
        clock=clock,
    )


def python_command(code: str) -> List[str]:
    return [sys.executable, "-c", code]


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def mock_clear_screen() -> Generator[Mock, None, None]:
    """Mock the terminal clear issued after a watch is added."""
    with patch("watch.watch_root_registrar.clear_screen") as mock_clear:
        yield mock_clear
