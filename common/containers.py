from dependency_injector import containers, providers

from coalescer.debounced_change_coalescer import DebouncedChangeCoalescer
from coalescer.immediate_change_coalescer import ImmediateChangeCoalescer
from common.file_watcher.notifier import WatchdogNotifier
from common.models import DevServerSettings
from dev_server import DevServer
from supervisor.process_supervisor import ProcessSupervisor
from supervisor.shutdown_coordinator import ShutdownCoordinator
from watch.subscription_manager import SubscriptionManager
from watch.watch_root_registrar import WatchRootRegistrar


class DevServerContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    settings = providers.Factory(
        DevServerSettings,
        root=config.root,
        subtree=config.subtree,
        command=config.command,
        debounce_ms=config.debounce_ms,
        policy=config.policy,
        subscription_name=config.subscription_name,
        defer_state=config.defer_state,
        settle_ms=config.settle_ms,
        log_dir=config.log_dir,
        terminate_child_on_exit=config.terminate_child_on_exit,
    )

    notifier = providers.Singleton(WatchdogNotifier, settle_ms=config.settle_ms)

    watch_root_registrar = providers.Singleton(WatchRootRegistrar, notifier=notifier)

    subscription_manager = providers.Singleton(
        SubscriptionManager,
        notifier=notifier,
        name=config.subscription_name,
        defer_state=config.defer_state,
    )

    process_supervisor = providers.Singleton(
        ProcessSupervisor,
        command=config.command,
        terminate_on_shutdown=config.terminate_child_on_exit,
    )

    debounced_change_coalescer = providers.Factory(
        DebouncedChangeCoalescer,
        on_trigger=process_supervisor.provided.request_restart,
        window_ms=config.debounce_ms,
        subtree=config.subtree,
    )

    immediate_change_coalescer = providers.Factory(
        ImmediateChangeCoalescer,
        on_trigger=process_supervisor.provided.request_restart,
        subtree=config.subtree,
    )

    change_coalescer = providers.Selector(
        config.policy,
        debounced=debounced_change_coalescer,
        immediate=immediate_change_coalescer,
    )

    shutdown_coordinator = providers.Singleton(
        ShutdownCoordinator,
        notifier=notifier,
        registrar=watch_root_registrar,
        subscription_manager=subscription_manager,
        supervisor=process_supervisor,
    )

    dev_server = providers.Singleton(
        DevServer,
        settings=settings,
        notifier=notifier,
        registrar=watch_root_registrar,
        subscription_manager=subscription_manager,
        coalescer=change_coalescer,
        supervisor=process_supervisor,
        coordinator=shutdown_coordinator,
    )


container = DevServerContainer()
