"""
Dev server composition: watch, subscribe, coalesce, supervise, shut down.
"""

import asyncio
import contextlib

from coalescer.base_change_coalescer import BaseChangeCoalescer
from common.file_watcher.base import BaseNotifier, NotifierError
from common.models import DevServerSettings
from common.utils import error_console, logger
from supervisor.process_supervisor import ProcessSupervisor
from supervisor.shutdown_coordinator import ShutdownCoordinator
from watch.subscription_manager import SubscriptionManager
from watch.watch_root_registrar import WatchRootRegistrar


class DevServer:
    """
    Wires the watch pipeline to the process supervisor for one session.
    """

    def __init__(
        self,
        settings: DevServerSettings,
        notifier: BaseNotifier,
        registrar: WatchRootRegistrar,
        subscription_manager: SubscriptionManager,
        coalescer: BaseChangeCoalescer,
        supervisor: ProcessSupervisor,
        coordinator: ShutdownCoordinator,
    ) -> None:
        self.settings = settings
        self.notifier = notifier
        self.registrar = registrar
        self.subscription_manager = subscription_manager
        self.coalescer = coalescer
        self.supervisor = supervisor
        self.coordinator = coordinator

    async def run(self, install_signal_handlers: bool = True) -> int:
        """
        Run until the shutdown coordinator has finished cleaning up.

        Returns:
            int: 0 after a clean shutdown, 1 on a fatal configuration error
        """
        try:
            await self.registrar.check_capabilities()
            handle = await self.registrar.register_root(self.settings.root)
        except NotifierError as e:
            error_console.print(f"[red]{e}[/red]")
            logger.error(f"Fatal configuration error: {e}")
            self.notifier.end()
            return 1

        self.coordinator.arm(handle)
        if install_signal_handlers:
            self.coordinator.install_signal_handlers()

        await self.subscription_manager.subscribe(
            handle,
            self.settings.subtree,
            relative_root=handle.relative_path,
        )
        coalescer_task = asyncio.create_task(
            self.coalescer.run(self.subscription_manager.batches())
        )
        try:
            return await self.coordinator.wait_exited()
        finally:
            coalescer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await coalescer_task
            if install_signal_handlers:
                self.coordinator.remove_signal_handlers()
