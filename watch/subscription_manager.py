import asyncio
from collections.abc import AsyncIterator, Sequence

from common.file_watcher.base import BaseNotifier, NotifierError
from common.models import (
    DEFAULT_FIELDS,
    NotificationBatch,
    SubscribeAck,
    SubscriptionSpec,
    UnsubscribeAck,
    WatchHandle,
)
from common.utils import console, error_console, logger

SUBSCRIPTION_NAME = "dev_server_subscription"
DEFER_STATE = "dev_subscription_state"


class SubscriptionManager:
    """Owns this session's single named subscription.

    Batches for other subscriptions sharing the notifier are ignored; matching
    batches are queued unchanged and exposed through :meth:`batches`.
    """

    def __init__(
        self,
        notifier: BaseNotifier,
        name: str = SUBSCRIPTION_NAME,
        defer_state: str | None = DEFER_STATE,
    ) -> None:
        self.notifier = notifier
        self.name = name
        self.defer = [defer_state] if defer_state else []
        self.spec: SubscriptionSpec | None = None
        self._queue: asyncio.Queue[NotificationBatch] = asyncio.Queue()
        self._subscribed = False
        self._root: str | None = None

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    async def subscribe(
        self,
        handle: WatchHandle,
        subtree: str,
        fields: Sequence[str] = DEFAULT_FIELDS,
        relative_root: str | None = None,
    ) -> SubscribeAck | None:
        """Subscribe to changes under *subtree*.

        Failure leaves the session without change events but does not raise.
        """
        spec = SubscriptionSpec(
            expression=["dirname", subtree],
            fields=list(fields),
            relative_root=relative_root,
            defer=list(self.defer),
        )
        # Listen first: the fresh-instance batch may follow the ack immediately
        self.notifier.add_listener(self._on_subscription)
        try:
            ack = await self.notifier.subscribe(handle.watch, self.name, spec)
        except NotifierError as e:
            self.notifier.remove_listener(self._on_subscription)
            error_console.print(f"Failed to subscribe: {e}", style="red")
            logger.error(f"Failed to subscribe {self.name} on {handle.watch}: {e}")
            return None

        self.spec = spec
        self._root = handle.watch
        self._subscribed = True
        console.print(f"Subscription added: {ack.subscribe}\n")
        return ack

    async def batches(self) -> AsyncIterator[NotificationBatch]:
        """Yield this subscription's batches in delivery order, forever."""
        while True:
            yield await self._queue.get()

    async def unsubscribe(self, handle: WatchHandle | None = None) -> UnsubscribeAck:
        """Remove the subscription. Errors propagate to the caller.

        Without a handle the root used at subscription time is unsubscribed.
        """
        self.notifier.remove_listener(self._on_subscription)
        if not self._subscribed or self._root is None:
            return UnsubscribeAck(unsubscribe=self.name, deleted=False)

        root = handle.watch if handle is not None else self._root
        ack = await self.notifier.unsubscribe(root, self.name)
        self._subscribed = False
        return ack

    def _on_subscription(self, batch: NotificationBatch) -> None:
        if batch.subscription != self.name:
            return
        self._queue.put_nowait(batch)
