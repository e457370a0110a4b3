from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from common.models import ChangeEvent, NotificationBatch
from common.utils import console, logger

RestartTrigger = Callable[[NotificationBatch], None]


class BaseChangeCoalescer(ABC):
    def __init__(self, on_trigger: RestartTrigger, subtree: str = "src") -> None:
        self.on_trigger = on_trigger
        self.subtree = subtree
        self.trigger_count = 0

    async def run(self, batches: AsyncIterator[NotificationBatch]) -> None:
        """Consume *batches* until the iterator ends or the task is cancelled."""
        try:
            async for batch in batches:
                self.push(batch)
        finally:
            self.cancel()

    @abstractmethod
    def push(self, batch: NotificationBatch) -> None:
        pass

    def cancel(self) -> None:
        pass

    def _fire(self, batch: NotificationBatch) -> None:
        self._announce(batch)
        self.trigger_count += 1
        self.on_trigger(batch)

    def _announce(self, batch: NotificationBatch) -> None:
        if batch.is_fresh_instance:
            console.print(
                f"Subscribed to file changes in ./{self.subtree}, starting", style="cyan"
            )
            logger.info(f"Fresh instance for {batch.subscription}, starting")
            return

        # Directories and special entries are not listed; deletions carry no type
        entries = " ".join(
            self._describe(change)
            for change in batch.files
            if change.type in ("f", None)
        )
        console.print(f"Changed: {entries}", style="cyan", markup=False, highlight=False)
        logger.info(f"Changed: {[change.name for change in batch.files]}")

    @staticmethod
    def _describe(change: ChangeEvent) -> str:
        if change.mtime_ms is None:
            return change.name
        modified = datetime.fromtimestamp(change.mtime_ms / 1000).strftime("%H:%M:%S")
        return f"{change.name} ({modified})"
