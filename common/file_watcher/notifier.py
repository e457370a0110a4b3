"""Concrete notifier implementation using watchdog."""

import asyncio
import fnmatch
import os
import stat
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from common.models import (
    ChangeEvent,
    DEFAULT_FIELDS,
    NotificationBatch,
    SubscribeAck,
    SubscriptionSpec,
    UnsubscribeAck,
    WatchHandle,
)
from common.utils import logger

from .base import (
    BaseNotifier,
    CapabilityError,
    SubscriptionError,
    SubscriptionListener,
    WatchError,
)
from .metadata import SubscriptionState, WatchedRoot

ROOT_MARKERS: Tuple[str, ...] = (".watchmanconfig", ".git", ".hg", ".svn")
SUPPORTED_TERMS = {"dirname", "true"}
SUPPORTED_CAPABILITIES = frozenset(
    {"relative_root", "defer", "empty_on_fresh_instance"}
    | {f"term-{term}" for term in SUPPORTED_TERMS}
    | {f"field-{name}" for name in DEFAULT_FIELDS}
)


def _decode_path(path: Any) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return str(path)


def _entry_type(mode: int) -> str:
    if stat.S_ISREG(mode):
        return "f"
    if stat.S_ISDIR(mode):
        return "d"
    if stat.S_ISLNK(mode):
        return "l"
    return "?"


class NotifierEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one root to the notifier."""

    def __init__(self, root: str, dispatch: Callable[[str, str], None]) -> None:
        super().__init__()
        self.root = root
        self.dispatch = dispatch

    def _handle_event(self, event: FileSystemEvent) -> None:
        """Handle a file system event."""
        try:
            self.dispatch(self.root, _decode_path(event.src_path))
            # A move changes both the old and the new name
            dest_path = getattr(event, "dest_path", "")
            if dest_path:
                self.dispatch(self.root, _decode_path(dest_path))
        except Exception as e:
            logger.error(
                f"Error handling file event {_decode_path(event.src_path)}: {e}"
            )

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_event(event)


class WatchdogNotifier(BaseNotifier):
    """Notifier with watchman-style roots and subscriptions over watchdog.

    Observer callbacks run on watchdog's threads; every change is handed to the
    event loop with ``call_soon_threadsafe`` so that subscription state is only
    touched from the loop.
    """

    def __init__(
        self,
        settle_ms: int = 20,
        root_markers: Sequence[str] = ROOT_MARKERS,
        observer_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.settle_ms = settle_ms
        self.root_markers = tuple(root_markers)
        self._observer_factory = observer_factory or Observer
        self._roots: Dict[str, WatchedRoot] = {}
        self._deleted_roots: Set[str] = set()
        self._listeners: List[SubscriptionListener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    async def capability_check(
        self, required: Sequence[str] = (), optional: Sequence[str] = ()
    ) -> Dict[str, bool]:
        capabilities = {
            name: name in SUPPORTED_CAPABILITIES
            for name in list(optional) + list(required)
        }
        missing = [name for name in required if not capabilities[name]]
        if missing:
            raise CapabilityError(
                f"client required capabilities [{', '.join(missing)}] "
                "not supported by this notifier"
            )
        return capabilities

    async def watch_project(self, path: str) -> WatchHandle:
        self._bind_loop()
        target = Path(path).expanduser().resolve()
        if not target.exists():
            raise WatchError(
                f"unable to resolve root {path}: directory {target} does not exist"
            )
        if not target.is_dir():
            raise WatchError(f"unable to resolve root {path}: {target} is not a directory")

        warning = None
        project_root = self._find_project_root(target)
        if project_root is None:
            project_root = target
            warning = (
                f"No project root marker ({', '.join(self.root_markers)}) "
                f"found at or above {target}; watching it directly"
            )

        root_key = str(project_root)
        if root_key not in self._roots:
            self._roots[root_key] = self._start_observer(root_key)
            self._deleted_roots.discard(root_key)

        relative_path = None
        if project_root != target:
            relative_path = target.relative_to(project_root).as_posix()
        return WatchHandle(watch=root_key, relative_path=relative_path, warning=warning)

    async def subscribe(
        self, root: str, name: str, spec: SubscriptionSpec
    ) -> SubscribeAck:
        self._bind_loop()
        watched = self._roots.get(root)
        if watched is None:
            raise SubscriptionError(f"unable to resolve root {root}: directory is not watched")
        self._validate_spec(spec)

        previous = watched.subscriptions.get(name)
        if previous is not None:
            previous.cancel_flush()
        watched.subscriptions[name] = SubscriptionState(name=name, spec=spec)

        files: List[ChangeEvent] = []
        if not spec.empty_on_fresh_instance:
            files = await asyncio.to_thread(self._snapshot, watched, spec)
        clock = watched.tick()
        fresh = NotificationBatch(
            subscription=name,
            root=root,
            is_fresh_instance=True,
            files=files,
            clock=clock,
        )
        # Delivered after the ack reaches the caller
        assert self._loop is not None
        self._loop.call_soon(self._emit, fresh)
        logger.info(f"Subscription {name} added on {root}")
        return SubscribeAck(subscribe=name, clock=clock)

    async def unsubscribe(self, root: str, name: str) -> UnsubscribeAck:
        watched = self._roots.get(root)
        if watched is None:
            if root in self._deleted_roots:
                # Deleting the watch already took its subscriptions with it
                return UnsubscribeAck(unsubscribe=name, deleted=False)
            raise SubscriptionError(f"unable to resolve root {root}: directory is not watched")

        state = watched.subscriptions.pop(name, None)
        if state is None:
            return UnsubscribeAck(unsubscribe=name, deleted=False)
        state.cancel_flush()
        state.pending.clear()
        logger.info(f"Subscription {name} removed from {root}")
        return UnsubscribeAck(unsubscribe=name)

    async def watch_del_all(self) -> List[str]:
        watched_roots = list(self._roots.values())
        self._roots.clear()
        for watched in watched_roots:
            watched.is_active = False
            self._deleted_roots.add(watched.path)
            for state in watched.subscriptions.values():
                state.cancel_flush()
            watched.subscriptions.clear()

        await asyncio.gather(
            *(asyncio.to_thread(self._stop_observer, watched) for watched in watched_roots)
        )
        return [watched.path for watched in watched_roots]

    def add_listener(self, listener: SubscriptionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: SubscriptionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def state_enter(self, root: str, state: str) -> None:
        """Assert *state* on *root*; subscriptions deferring on it buffer batches."""
        watched = self._roots.get(root)
        if watched is None:
            raise SubscriptionError(f"unable to resolve root {root}: directory is not watched")
        watched.asserted_states.add(state)

    def state_leave(self, root: str, state: str) -> None:
        """Release *state* and deliver whatever was buffered while it was held."""
        watched = self._roots.get(root)
        if watched is None:
            raise SubscriptionError(f"unable to resolve root {root}: directory is not watched")
        watched.asserted_states.discard(state)
        for subscription in list(watched.subscriptions.values()):
            if state not in subscription.spec.defer:
                continue
            if watched.asserted_states & set(subscription.spec.defer):
                continue
            subscription.cancel_flush()
            subscription.deferred_flush = False
            self._emit(self._drain(watched, subscription))

    def end(self) -> None:
        self._closed = True
        self._listeners.clear()
        for watched in self._roots.values():
            watched.is_active = False
            for state in watched.subscriptions.values():
                state.cancel_flush()
            watched.observer.stop()
        self._roots.clear()

    @property
    def roots(self) -> List[str]:
        return list(self._roots)

    def _bind_loop(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

    def _find_project_root(self, target: Path) -> Optional[Path]:
        for candidate in (target, *target.parents):
            if any((candidate / marker).exists() for marker in self.root_markers):
                return candidate
        return None

    def _start_observer(self, root: str) -> WatchedRoot:
        observer: Any = self._observer_factory()
        event_handler = NotifierEventHandler(root, self._dispatch_threadsafe)
        try:
            observer.schedule(event_handler, root, recursive=True)
            observer.start()
        except OSError as e:
            raise WatchError(f"unable to watch {root}: {e}") from e
        logger.info(f"Started observer for {root}")
        return WatchedRoot(path=root, observer=observer, is_active=True)

    @staticmethod
    def _stop_observer(watched: WatchedRoot) -> None:
        watched.observer.stop()
        watched.observer.join(timeout=5.0)
        logger.info(f"Stopped observer for {watched.path}")

    @staticmethod
    def _validate_spec(spec: SubscriptionSpec) -> None:
        if not spec.expression or spec.expression[0] not in SUPPORTED_TERMS:
            raise SubscriptionError(f"unsupported expression {spec.expression!r}")
        if spec.expression[0] == "dirname" and len(spec.expression) != 2:
            raise SubscriptionError("'dirname' expects exactly one directory argument")
        unknown = [name for name in spec.fields if name not in DEFAULT_FIELDS]
        if unknown:
            raise SubscriptionError(f"unsupported fields {unknown!r}")

    @staticmethod
    def _matches(spec: SubscriptionSpec, name: str) -> bool:
        if spec.expression[0] == "true":
            return True
        directory = spec.expression[1].strip("/")
        if not directory:
            return True
        return name.startswith(directory + "/")

    @staticmethod
    def _is_ignored(watched: WatchedRoot, relative_path: str) -> bool:
        file_name = os.path.basename(relative_path)
        parts = relative_path.split("/")
        for ignore_pattern in watched.ignore_patterns or []:
            if fnmatch.fnmatch(file_name, ignore_pattern) or fnmatch.fnmatch(
                relative_path, ignore_pattern
            ):
                return True
            # Patterns like ".git/*" also cover nested occurrences
            head = ignore_pattern.split("/", 1)[0]
            if ignore_pattern.endswith("/*") and head in parts:
                return True
        return False

    def _relative_name(
        self, watched: WatchedRoot, spec: SubscriptionSpec, path: str
    ) -> Optional[str]:
        try:
            relative = Path(path).relative_to(watched.path).as_posix()
        except ValueError:
            return None
        if relative == "." or self._is_ignored(watched, relative):
            return None
        if spec.relative_root:
            prefix = spec.relative_root.strip("/") + "/"
            if not relative.startswith(prefix):
                return None
            relative = relative[len(prefix):]
        return relative

    @staticmethod
    def _describe(path: str, name: str, fields: Sequence[str]) -> ChangeEvent:
        values: Dict[str, Any] = {"name": name}
        try:
            st: Optional[os.stat_result] = os.lstat(path)
        except OSError:
            st = None
        if "exists" in fields:
            values["exists"] = st is not None
        if st is not None:
            if "size" in fields:
                values["size"] = st.st_size
            if "mtime_ms" in fields:
                values["mtime_ms"] = int(st.st_mtime * 1000)
            if "type" in fields:
                values["type"] = _entry_type(st.st_mode)
        return ChangeEvent(**values)

    def _snapshot(self, watched: WatchedRoot, spec: SubscriptionSpec) -> List[ChangeEvent]:
        base = Path(watched.path)
        if spec.relative_root:
            base = base / spec.relative_root
        files: List[ChangeEvent] = []
        for directory, dir_names, file_names in os.walk(base):
            for entry in sorted(dir_names) + sorted(file_names):
                full_path = os.path.join(directory, entry)
                name = self._relative_name(watched, spec, full_path)
                if name is None:
                    if entry in dir_names:
                        dir_names.remove(entry)
                    continue
                if self._matches(spec, name):
                    files.append(self._describe(full_path, name, spec.fields))
        return files

    def _dispatch_threadsafe(self, root: str, path: str) -> None:
        loop = self._loop
        if loop is None or self._closed or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._on_path_changed, root, path)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug(f"Dropped change for {path}: event loop is closed")

    def _on_path_changed(self, root: str, path: str) -> None:
        if self._closed:
            return
        watched = self._roots.get(root)
        if watched is None or not watched.is_active:
            return
        assert self._loop is not None

        for subscription in list(watched.subscriptions.values()):
            name = self._relative_name(watched, subscription.spec, path)
            if name is None or not self._matches(subscription.spec, name):
                continue
            subscription.pending[name] = self._describe(path, name, subscription.spec.fields)
            subscription.cancel_flush()
            subscription.flush_handle = self._loop.call_later(
                self.settle_ms / 1000, self._flush, watched, subscription
            )

    def _flush(self, watched: WatchedRoot, subscription: SubscriptionState) -> None:
        subscription.flush_handle = None
        if watched.asserted_states & set(subscription.spec.defer):
            subscription.deferred_flush = True
            logger.debug(f"Deferring {len(subscription.pending)} changes for {subscription.name}")
            return
        self._emit(self._drain(watched, subscription))

    @staticmethod
    def _drain(watched: WatchedRoot, subscription: SubscriptionState) -> NotificationBatch:
        files = list(subscription.pending.values())
        subscription.pending.clear()
        return NotificationBatch(
            subscription=subscription.name,
            root=watched.path,
            files=files,
            clock=watched.tick(),
        )

    def _emit(self, batch: NotificationBatch) -> None:
        if self._closed:
            return
        for listener in list(self._listeners):
            try:
                listener(batch)
            except Exception as e:
                logger.error(f"Subscription listener failed for {batch.subscription}: {e}")
