from common.file_watcher.base import BaseNotifier
from common.models import WatchHandle
from common.utils import clear_screen, console, logger

REQUIRED_CAPABILITIES = ["relative_root"]


class WatchRootRegistrar:
    """Registers the project root with the notifier.

    Capability and registration failures are fatal: both propagate to the caller
    as :class:`~common.file_watcher.base.NotifierError` subclasses.
    """

    def __init__(self, notifier: BaseNotifier) -> None:
        self.notifier = notifier
        self.handle: WatchHandle | None = None

    async def check_capabilities(self) -> None:
        capabilities = await self.notifier.capability_check(
            required=REQUIRED_CAPABILITIES, optional=[]
        )
        logger.debug(f"Notifier capabilities: {capabilities}")

    async def register_root(self, path: str) -> WatchHandle:
        handle = await self.notifier.watch_project(path)
        self.handle = handle

        clear_screen()
        if handle.warning:
            console.print(f"Warning: {handle.warning}", style="yellow")
            logger.warning(handle.warning)
        console.print(f"Watch added: {handle.watch}")
        logger.info(f"Watch added: {handle.watch} (relative path: {handle.relative_path})")
        return handle

    async def delete_all_watches(self) -> list[str]:
        roots = await self.notifier.watch_del_all()
        self.handle = None
        return roots
