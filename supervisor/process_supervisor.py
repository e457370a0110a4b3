"""Lifecycle management for the single supervised child process."""

import asyncio
import codecs
import sys
import time
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TextIO

from common.models import NotificationBatch
from common.utils import console, error_console, logger

READ_CHUNK_SIZE = 65536
EXIT_POLL_SECONDS = 0.05
OUTPUT_DRAIN_SECONDS = 0.5


class SupervisorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class ChildProcessHandle:
    """The currently (or most recently) supervised child."""

    pid: int
    running: bool = True
    exit_code: int | None = None
    started_at: float = field(default_factory=time.monotonic)


class ProcessSupervisor:
    """Runs at most one child at a time and restarts it on request.

    A restart requested while a child is starting or running is queued and
    applied once that child's exit has been observed; the running child is
    never killed to make room for the next one.
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: str | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        terminate_on_shutdown: bool = True,
    ) -> None:
        self.command = list(command)
        self.cwd = cwd
        self.terminate_on_shutdown = terminate_on_shutdown
        self._stdout = stdout
        self._stderr = stderr

        self.state = SupervisorState.IDLE
        self.child: ChildProcessHandle | None = None
        self.restart_pending = False
        self.executing = False
        self.start_count = 0
        self.exit_codes: list[int] = []
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._forwarders: set[asyncio.Task[Any]] = set()
        self._stopped = False

    def request_restart(self, batch: NotificationBatch | None = None) -> None:
        """Start the child now if idle, otherwise queue a single restart."""
        if self._stopped:
            logger.debug("Ignoring restart request after shutdown")
            return

        if self.state is SupervisorState.IDLE:
            self._begin_start()
            return

        if not self.restart_pending:
            logger.info(f"Restart queued while child is {self.state.value}")
        self.restart_pending = True

    async def start(self) -> bool:
        """Start the child if idle.

        Returns:
            bool: True if a child was spawned, False if the start was queued
                or the spawn failed.
        """
        if self.state is not SupervisorState.IDLE:
            self.restart_pending = True
            return False
        self.state = SupervisorState.STARTING
        return await self._launch()

    def shutdown(self) -> None:
        """Stop forwarding output, drop queued restarts and end the child."""
        self._stopped = True
        self.restart_pending = False
        self.executing = False

        process = self._process
        if process is None or process.returncode is not None:
            return
        if not self.terminate_on_shutdown:
            logger.info(f"Leaving child pid={process.pid} running")
            return
        try:
            process.terminate()
            logger.info(f"Sent SIGTERM to child pid={process.pid}")
        except ProcessLookupError:
            logger.debug(f"Child pid={process.pid} already gone")

    async def wait_idle(self) -> None:
        """Wait until no start or exit handling is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _begin_start(self) -> None:
        # Claim the slot before yielding to the loop so a second request queues
        self.state = SupervisorState.STARTING
        self.restart_pending = False
        self._spawn(self._launch())

    async def _launch(self) -> bool:
        logger.info(f"Starting child: {self.command}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.state = SupervisorState.IDLE
            error_console.print(f"error: failed to start {' '.join(self.command)}: {e}", style="red")
            logger.error(f"Failed to spawn {self.command}: {e}")
            self._apply_pending_restart()
            return False

        self._process = process
        self.child = ChildProcessHandle(pid=process.pid)
        self.start_count += 1
        self.state = SupervisorState.RUNNING
        self.executing = True
        console.print(
            f"Started {' '.join(self.command)} (pid {process.pid})",
            style="dim",
            markup=False,
            highlight=False,
        )
        logger.info(f"Child started: pid={process.pid}")
        self._spawn(self._supervise(process, self.child))
        return True

    async def _supervise(
        self, process: asyncio.subprocess.Process, child: ChildProcessHandle
    ) -> None:
        forwarders = {
            self._detach(self._forward(process.stdout, self._stdout_target, child)),
            self._detach(self._forward(process.stderr, self._stderr_target, child)),
        }
        exit_code = await self._wait_for_exit(process)
        # Output written just before exit may still sit in the pipes
        await asyncio.wait(forwarders, timeout=OUTPUT_DRAIN_SECONDS)
        self._on_exit(child, exit_code)

    @staticmethod
    async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
        # process.wait() also waits for the pipes, which a grandchild may hold open
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        return process.returncode

    def _detach(self, coroutine: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._forwarders.add(task)
        task.add_done_callback(self._forwarders.discard)
        return task

    async def _forward(
        self,
        stream: asyncio.StreamReader | None,
        target: Callable[[], TextIO],
        child: ChildProcessHandle,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        writable = True
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            # Output of an exited or superseded child is drained but not shown
            if text and writable and self.executing and child.running:
                try:
                    writer = target()
                    writer.write(text)
                    writer.flush()
                except (OSError, ValueError) as e:
                    writable = False
                    logger.error(f"Error forwarding output of pid={child.pid}: {e}")
            if not chunk:
                return

    def _on_exit(self, child: ChildProcessHandle, exit_code: int) -> None:
        child.running = False
        child.exit_code = exit_code
        self.exit_codes.append(exit_code)
        self.executing = False
        self._process = None
        self.state = SupervisorState.IDLE

        elapsed = time.monotonic() - child.started_at
        style = "green" if exit_code == 0 else "red"
        console.rule(
            f"[{style}]process exited with code {exit_code} after {elapsed:.1f}s[/{style}]",
            style=style,
        )
        logger.info(f"Child pid={child.pid} exited with code {exit_code} after {elapsed:.1f}s")
        self._apply_pending_restart()

    def _apply_pending_restart(self) -> None:
        if self.restart_pending and not self._stopped:
            logger.info("Applying queued restart")
            self._begin_start()

    def _stdout_target(self) -> TextIO:
        return self._stdout or sys.stdout

    def _stderr_target(self) -> TextIO:
        return self._stderr or sys.stderr
