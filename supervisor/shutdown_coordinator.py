"""Signal-driven, run-once teardown of the watch and its subscription."""

import asyncio
import signal
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from common.file_watcher.base import BaseNotifier
from common.models import WatchHandle
from common.utils import console, error_console, logger
from supervisor.process_supervisor import ProcessSupervisor
from watch.subscription_manager import SubscriptionManager
from watch.watch_root_registrar import WatchRootRegistrar

TERMINATION_SIGNALS = ("SIGINT", "SIGUSR1", "SIGUSR2", "SIGTERM")


@dataclass
class CleanupFlags:
    subscription_unregistered: bool = False
    watch_deleted: bool = False

    @property
    def all_done(self) -> bool:
        return self.subscription_unregistered and self.watch_deleted


class ShutdownCoordinator:
    """Tears down notifier resources once, then releases :meth:`wait_exited`.

    Only the first termination signal starts the teardown. Unsubscribe and
    watch deletion run concurrently; each success sets its flag and the exit
    status becomes available once both flags are set. A failed teardown step
    leaves its flag unset, so the process keeps waiting.
    """

    def __init__(
        self,
        notifier: BaseNotifier,
        registrar: WatchRootRegistrar,
        subscription_manager: SubscriptionManager,
        supervisor: ProcessSupervisor,
    ) -> None:
        self.notifier = notifier
        self.registrar = registrar
        self.subscription_manager = subscription_manager
        self.supervisor = supervisor

        self.flags = CleanupFlags()
        self.cleaning_up = False
        self.fired_signal: str | None = None
        self.handle: WatchHandle | None = None
        self.teardown_requests = 0
        self.exit_code: int | None = None
        self._exited = asyncio.Event()
        self._tasks: set[asyncio.Task[Any]] = set()

    def arm(self, handle: WatchHandle) -> None:
        self.handle = handle

    def install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop | None = None
    ) -> list[str]:
        """Route every available termination signal to :meth:`handle_signal`."""
        loop = loop or asyncio.get_running_loop()
        installed: list[str] = []
        for name in TERMINATION_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, self.handle_signal, name)
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot handle {name} on this platform: {e}")
                continue
            installed.append(name)
        logger.debug(f"Installed signal handlers: {installed}")
        return installed

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for name in TERMINATION_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                try:
                    loop.remove_signal_handler(signum)
                except (NotImplementedError, RuntimeError):
                    continue

    def handle_signal(self, name: str) -> None:
        if self.cleaning_up:
            logger.debug(f"{name} ignored, cleanup already in progress")
            return

        self.cleaning_up = True
        self.fired_signal = name
        console.print(f"\n{name} fired, cleaning up")
        logger.info(f"{name} fired, cleaning up")

        self.supervisor.shutdown()
        self._spawn(self._unsubscribe())
        self._spawn(self._delete_watches())

    async def wait_exited(self) -> int:
        await self._exited.wait()
        assert self.exit_code is not None
        return self.exit_code

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        self.teardown_requests += 1
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _unsubscribe(self) -> None:
        try:
            ack = await self.subscription_manager.unsubscribe(self.handle)
        except Exception as e:
            error_console.print(f"Failed to unsubscribe: {e}", style="red")
            logger.error(f"Failed to unsubscribe: {e}")
            return

        console.print(f"Unsubscribed: {ack.unsubscribe}")
        self.flags.subscription_unregistered = True
        self._safe_exit()

    async def _delete_watches(self) -> None:
        try:
            roots = await self.registrar.delete_all_watches()
        except Exception as e:
            error_console.print(f"Failed to delete watch: {e}", style="red")
            logger.error(f"Failed to delete watch: {e}")
            return

        console.print(f"Watch deleted: {', '.join(roots)}")
        self.flags.watch_deleted = True
        self._safe_exit()

    def _safe_exit(self) -> None:
        if not self.flags.all_done or self.exit_code is not None:
            return
        self.notifier.end()
        self.exit_code = 0
        logger.info("Cleanup complete, exiting")
        self._exited.set()
