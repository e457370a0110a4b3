from coalescer.base_change_coalescer import BaseChangeCoalescer
from common.models import NotificationBatch
from common.utils import logger


class ImmediateChangeCoalescer(BaseChangeCoalescer):
    """Triggers on every non-empty batch without waiting for quiescence."""

    def push(self, batch: NotificationBatch) -> None:
        if not batch.is_fresh_instance and not batch.files:
            logger.debug(f"Dropping empty batch for {batch.subscription}")
            return
        self._fire(batch)
