import asyncio
from typing import AsyncIterator, List
from unittest.mock import Mock, patch

from coalescer.debounced_change_coalescer import DebouncedChangeCoalescer
from coalescer.immediate_change_coalescer import ImmediateChangeCoalescer
from common.models import ChangeEvent, NotificationBatch
from conftest import make_batch

WINDOW_MS = 50


class TestDebouncedChangeCoalescer:
    """Test cases for the trailing debounce policy."""

    def test_burst_triggers_once_with_last_batch(self) -> None:
        """A burst shorter than the window fires exactly one trigger, for the last batch."""
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            # When: five batches arrive well inside one window
            for clock in range(1, 6):
                coalescer.push(make_batch(f"src/file{clock}.py", clock=clock))
                await asyncio.sleep(0.005)
            assert triggered == []
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        # Then: only the last batch fired
        assert len(triggered) == 1
        assert triggered[0].clock == 5
        assert triggered[0].files[0].name == "src/file5.py"

    def test_separate_bursts_trigger_separately(self) -> None:
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            coalescer.push(make_batch("src/a.py", clock=1))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)
            coalescer.push(make_batch("src/b.py", clock=2))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        assert [batch.clock for batch in triggered] == [1, 2]

    def test_empty_batch_never_triggers(self) -> None:
        triggered: List[NotificationBatch] = []

        async def scenario() -> DebouncedChangeCoalescer:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            coalescer.push(make_batch())
            assert not coalescer.has_pending
            await asyncio.sleep(WINDOW_MS / 1000 * 3)
            return coalescer

        coalescer = asyncio.run(scenario())

        assert triggered == []
        assert coalescer.trigger_count == 0

    def test_empty_batch_does_not_supersede_pending_change(self) -> None:
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            coalescer.push(make_batch("src/a.py", clock=1))
            coalescer.push(make_batch(clock=2))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        assert [batch.clock for batch in triggered] == [1]

    def test_fresh_instance_triggers_without_delay(self) -> None:
        """The fresh-instance batch fires synchronously, even when it lists no files."""
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=10_000)
            coalescer.push(make_batch(fresh=True))
            assert len(triggered) == 1
            assert not coalescer.has_pending

        asyncio.run(scenario())

        assert triggered[0].is_fresh_instance

    def test_fresh_instance_alongside_burst_triggers_once(self) -> None:
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            coalescer.push(make_batch("src/a.py", fresh=True, clock=1))
            coalescer.push(make_batch("src/a.py", clock=2))
            coalescer.push(make_batch("src/b.py", clock=3))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        fresh = [batch for batch in triggered if batch.is_fresh_instance]
        assert len(fresh) == 1
        assert [batch.clock for batch in triggered] == [1, 3]

    def test_cancel_drops_pending_trigger(self) -> None:
        on_trigger = Mock()

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(on_trigger, window_ms=WINDOW_MS)
            coalescer.push(make_batch("src/a.py"))
            coalescer.cancel()
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        on_trigger.assert_not_called()

    def test_run_consumes_batch_stream(self) -> None:
        triggered: List[NotificationBatch] = []

        async def batches() -> AsyncIterator[NotificationBatch]:
            yield make_batch(fresh=True, clock=1)
            yield make_batch("src/a.py", clock=2)
            yield make_batch("src/b.py", clock=3)

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS)
            task = asyncio.create_task(coalescer.run(batches()))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)
            await task

        asyncio.run(scenario())

        # The stream ended before the window elapsed, so the pending change was cancelled
        assert [batch.clock for batch in triggered] == [1]

    @patch("coalescer.base_change_coalescer.console")
    def test_announcements(self, mock_console: Mock) -> None:
        """Fresh batches announce the subscription; changes list file names."""
        triggered: List[NotificationBatch] = []

        async def scenario() -> None:
            coalescer = DebouncedChangeCoalescer(triggered.append, window_ms=WINDOW_MS, subtree="src")
            coalescer.push(make_batch(fresh=True))
            coalescer.push(make_batch("src/a.ts"))
            await asyncio.sleep(WINDOW_MS / 1000 * 3)

        asyncio.run(scenario())

        printed = [call.args[0] for call in mock_console.print.call_args_list]
        assert printed[0] == "Subscribed to file changes in ./src, starting"
        assert printed[1].startswith("Changed: src/a.ts (")

    @patch("coalescer.base_change_coalescer.console")
    def test_change_listing_shows_files_and_deletions_only(self, mock_console: Mock) -> None:
        batch = NotificationBatch(
            subscription="dev_server_subscription",
            files=[
                ChangeEvent(name="src/lib", type="d"),
                ChangeEvent(name="src/link.py", type="l"),
                ChangeEvent(name="src/fifo", type="?"),
                ChangeEvent(name="src/a.py", type="f"),
                ChangeEvent(name="src/gone.py", exists=False),
            ],
        )
        coalescer = ImmediateChangeCoalescer(Mock())

        coalescer.push(batch)

        mock_console.print.assert_called_once()
        assert mock_console.print.call_args.args[0] == "Changed: src/a.py src/gone.py"


class TestImmediateChangeCoalescer:
    """Test cases for the per-batch trigger policy."""

    def test_every_non_empty_batch_triggers(self) -> None:
        triggered: List[NotificationBatch] = []
        coalescer = ImmediateChangeCoalescer(triggered.append)

        coalescer.push(make_batch(fresh=True, clock=1))
        coalescer.push(make_batch("src/a.py", clock=2))
        coalescer.push(make_batch(clock=3))
        coalescer.push(make_batch("src/b.py", clock=4))

        assert [batch.clock for batch in triggered] == [1, 2, 4]
        assert coalescer.trigger_count == 3
