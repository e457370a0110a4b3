import asyncio

from coalescer.base_change_coalescer import BaseChangeCoalescer, RestartTrigger
from common.models import NotificationBatch
from common.utils import logger


class DebouncedChangeCoalescer(BaseChangeCoalescer):
    """Trailing debounce: only the last batch of a burst triggers a restart.

    A batch arriving before the pending timer fires replaces the pending batch
    and restarts the window. Fresh-instance batches skip the window entirely.
    """

    def __init__(
        self,
        on_trigger: RestartTrigger,
        window_ms: int = 1000,
        subtree: str = "src",
    ) -> None:
        super().__init__(on_trigger, subtree)
        self.window_ms = window_ms
        self._timer: asyncio.TimerHandle | None = None
        self._pending: NotificationBatch | None = None

    @property
    def has_pending(self) -> bool:
        return self._timer is not None

    def push(self, batch: NotificationBatch) -> None:
        if batch.is_fresh_instance:
            self._fire(batch)
            return

        if not batch.files:
            logger.debug(f"Dropping empty batch for {batch.subscription}")
            return

        if self._pending is not None:
            logger.debug(f"Superseding pending batch at clock {self._pending.clock}")
        self.cancel()
        self._pending = batch
        self._timer = asyncio.get_running_loop().call_later(
            self.window_ms / 1000, self._flush
        )

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def _flush(self) -> None:
        batch = self._pending
        self._timer = None
        self._pending = None
        if batch is not None:
            self._fire(batch)
