"""Tests for the bulk job runner"""

from unittest.mock import MagicMock, patch

import pytest

from errors import DownloadError, NotFoundError
from managers import bulk_runner
from managers.bulk_runner import BulkJobRunner, optimized_entry, restored_entry
from managers.optimizer_engine import CommitResult
from models.bulk import BulkMode, BulkProgress, BulkSummary
from tests.conftest import make_candidate

IMG = "gid://shopify/ProductImage/"


def _rotating_commit(credentials, candidate):
    number = int(candidate.id.split("/")[-1])
    return CommitResult(before_kb=500, after_kb=100, percent=80, new_id=f"{IMG}{number + 1000}", format="webp")


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.commit.side_effect = _rotating_commit
    engine.restore.return_value = {"status": "restored"}
    return engine


@pytest.fixture
def runner(engine):
    return BulkJobRunner(engine)


def _items(count):
    return [make_candidate(f"{IMG}{n}") for n in range(1, count + 1)]


class TestBulkRun:
    """Tests for sequential processing"""

    def test_processes_in_order_with_progress(self, runner, engine, credentials):
        """Items are committed in order with one progress event each"""
        events = []
        items = _items(3)

        summary = runner.run(credentials, items, BulkMode.OPTIMIZE, on_progress=events.append)

        assert [c.args[1].id for c in engine.commit.call_args_list] == [c.id for c in items]
        assert [(e.current, e.total) for e in events] == [(1, 3), (2, 3), (3, 3)]
        assert all(e.ok for e in events)
        assert events[0].new_id == f"{IMG}1001"
        assert summary == BulkSummary(mode=BulkMode.OPTIMIZE, processed=3, errors=0, total=3)
        assert summary.message == "Complete! Processed: 3, Errors: 0"

    def test_stream_ends_with_summary(self, runner, credentials):
        """The stream yields one progress per item and a final summary"""
        events = list(runner.stream(credentials, _items(2), "restore"))

        assert [type(e) for e in events] == [BulkProgress, BulkProgress, BulkSummary]
        assert events[-1].mode is BulkMode.RESTORE

    def test_empty_queue_completes(self, runner, credentials):
        """An empty batch finishes immediately as complete"""
        summary = runner.run(credentials, [], BulkMode.OPTIMIZE)

        assert summary.stopped is False
        assert summary.message == "Complete! Processed: 0, Errors: 0"

    def test_failure_does_not_abort(self, runner, engine, credentials):
        """A failing item is counted and the run moves on"""
        def commit(credentials, candidate):
            if candidate.id == f"{IMG}2":
                raise DownloadError("Download failed: 404", status_code=404)
            return _rotating_commit(credentials, candidate)

        engine.commit.side_effect = commit
        events = []

        summary = runner.run(credentials, _items(3), BulkMode.OPTIMIZE, on_progress=events.append)

        assert engine.commit.call_count == 3
        assert (summary.processed, summary.errors) == (2, 1)
        failed = events[1]
        assert failed.ok is False
        assert failed.item_id == f"{IMG}2"
        assert "404" in failed.error
        assert [(e.current, e.total) for e in events] == [(1, 3), (2, 3), (3, 3)]

    def test_duplicate_items_run_once(self, runner, engine, credentials):
        """An id that already succeeded in this run is skipped"""
        a, b = _items(2)

        summary = runner.run(credentials, [a, a, b], BulkMode.OPTIMIZE)

        assert engine.commit.call_count == 2
        assert (summary.processed, summary.errors, summary.total) == (2, 0, 3)

    def test_failed_item_is_retried_if_repeated(self, runner, engine, credentials):
        """An id that failed is attempted again when it reappears"""
        engine.restore.side_effect = [NotFoundError("Cannot restore"), {"status": "restored"}]
        a = make_candidate(f"{IMG}1")

        summary = runner.run(credentials, [a, a], BulkMode.RESTORE)

        assert engine.restore.call_count == 2
        assert (summary.processed, summary.errors) == (1, 1)

    def test_invalid_mode(self, runner, credentials):
        """Unknown modes are rejected"""
        with pytest.raises(ValueError):
            runner.run(credentials, _items(1), "delete")
        assert runner.is_running is False


class TestRunRelease:
    """Tests that a run always returns the runner to idle"""

    def test_closed_stream_releases_run(self, runner, engine, credentials):
        """Abandoning the stream ends the run as stopped"""
        stream = runner.stream(credentials, _items(3), BulkMode.OPTIMIZE)
        next(stream)

        stream.close()

        assert runner.status()["state"] == "idle"
        assert engine.commit.call_count == 1
        assert runner.last_summary.stopped is True
        assert runner.last_summary.processed == 1

    def test_raising_progress_callback_releases_run(self, runner, engine, credentials):
        """An exception from on_progress propagates and the run is released"""
        def on_progress(event):
            raise RuntimeError("client went away")

        with pytest.raises(RuntimeError):
            runner.run(credentials, _items(3), BulkMode.OPTIMIZE, on_progress=on_progress)

        assert runner.status()["state"] == "idle"
        assert engine.commit.call_count == 1

    def test_new_run_allowed_after_abandoned_stream(self, runner, engine, credentials):
        """A later run starts normally after an abandoned one"""
        stream = runner.stream(credentials, _items(2), BulkMode.OPTIMIZE)
        next(stream)
        stream.close()

        summary = runner.run(credentials, [make_candidate(f"{IMG}7")], BulkMode.OPTIMIZE)

        assert summary.message == "Complete! Processed: 1, Errors: 0"


class TestCancellation:
    """Tests for stop and supersession"""

    def test_stop_after_j_items(self, runner, engine, credentials):
        """Stopping during item J leaves the rest untouched"""
        stop_after = 2

        def commit(credentials, candidate):
            result = _rotating_commit(credentials, candidate)
            if engine.commit.call_count == stop_after:
                runner.stop()
            return result

        engine.commit.side_effect = commit
        events = []

        summary = runner.run(credentials, _items(5), BulkMode.OPTIMIZE, on_progress=events.append)

        assert engine.commit.call_count == stop_after
        assert (summary.processed, summary.errors) == (stop_after, 0)
        assert summary.stopped is True
        assert summary.message == "Stopped. Processed: 2, Errors: 0"
        assert len(events) == stop_after

    def test_stop_without_run(self, runner):
        """stop() reports False when nothing is running"""
        assert runner.stop() is False

    def test_start_registers_run_before_returning(self, runner, engine, credentials):
        """A run started in the background is visible and stoppable at once"""
        with patch.object(bulk_runner.threading, "Thread") as thread_cls:
            runner.start(credentials, _items(3), BulkMode.OPTIMIZE)

            assert runner.is_running is True
            assert runner.stop() is True
            assert runner.status()["state"] == "stopping"

        worker = thread_cls.call_args.kwargs
        summary = worker["target"](*worker["args"])

        engine.commit.assert_not_called()
        assert summary.stopped is True
        assert runner.status()["state"] == "idle"

    def test_new_run_supersedes_old(self, runner, engine, credentials):
        """A newer run takes over and the older one ends as superseded"""
        old_stream = runner.stream(credentials, _items(3), BulkMode.OPTIMIZE)
        first = next(old_stream)
        assert first.current == 1

        new_summary = runner.run(credentials, [make_candidate(f"{IMG}50")], BulkMode.OPTIMIZE)
        old_summary = list(old_stream)[-1]

        assert engine.commit.call_count == 2
        assert old_summary.superseded is True
        assert old_summary.stopped is True
        assert old_summary.processed == 1
        assert runner.last_summary == new_summary
        assert runner.status()["state"] == "idle"

    def test_in_flight_item_of_superseded_run_is_discarded(self, runner, engine, credentials):
        """The result of an item finishing after supersession leaves the view alone"""
        items = _items(2)
        runner.set_view(items)

        def commit(credentials, candidate):
            # a newer run starts while this call is in flight
            runner.run(credentials, [], BulkMode.OPTIMIZE)
            return _rotating_commit(credentials, candidate)

        engine.commit.side_effect = commit

        summary = runner.run(credentials, items, BulkMode.OPTIMIZE)

        assert engine.commit.call_count == 1
        assert summary.superseded is True
        assert summary.processed == 1
        assert runner.snapshot() == items
        assert runner.last_summary.total == 0


class TestCallerView:
    """Tests for the caller-visible view and status"""

    def test_view_replaced_not_mutated(self, runner, credentials):
        """Committed items are re-keyed in a new view list"""
        items = _items(2)
        runner.set_view(items)
        snapshot_before = runner.snapshot()

        runner.run(credentials, items[:1], BulkMode.OPTIMIZE)

        after = runner.snapshot()
        assert snapshot_before[0].id == f"{IMG}1"
        assert after[0].id == f"{IMG}1001"
        assert after[0].optimized is True
        assert (after[0].original_kb, after[0].optimized_kb, after[0].saved_kb, after[0].percent) == (500, 100, 400, 80)
        assert after[1] == items[1]

    def test_restore_resets_view_entry(self, runner, credentials):
        """Restored items go back to pending with savings cleared"""
        item = make_candidate(f"{IMG}1", optimized=True, saved_kb=400, original_kb=500, optimized_kb=100, percent=80)
        runner.set_view([item])

        runner.run(credentials, [item], BulkMode.RESTORE)

        (after,) = runner.snapshot()
        assert after.optimized is False
        assert (after.saved_kb, after.optimized_kb, after.percent) == (0, 0, 0)
        assert after.original_kb == 500

    def test_replace_in_view(self, runner):
        """A single entry can be swapped without a bulk run"""
        items = _items(2)
        runner.set_view(items)
        result = CommitResult(before_kb=300, after_kb=100, percent=67, new_id=f"{IMG}77", format="avif")

        assert runner.replace_in_view(f"{IMG}1", lambda entry: optimized_entry(entry, result)) is True
        assert runner.replace_in_view(f"{IMG}9", restored_entry) is False

        after = runner.snapshot()
        assert [c.id for c in after] == [f"{IMG}77", f"{IMG}2"]
        assert after[0].saved_kb == 200
        assert items[0].id == f"{IMG}1"

    def test_status_while_running(self, runner, credentials):
        """status() reports live progress and the final summary"""
        seen = []
        runner.run(credentials, _items(2), BulkMode.OPTIMIZE, on_progress=lambda e: seen.append(runner.status()))

        assert [s["state"] for s in seen] == ["running", "running"]
        assert [s["current"] for s in seen] == [1, 2]
        assert seen[0]["mode"] == "optimize"

        final = runner.status()
        assert final["state"] == "idle"
        assert (final["current"], final["total"]) == (0, 0)
        assert final["last_summary"] == "Complete! Processed: 2, Errors: 0"

    def test_errored_ids_reported_during_run_only(self, runner, engine, credentials):
        """Errored ids are listed while running and cleared on completion"""
        engine.commit.side_effect = DownloadError("Download failed: 500", status_code=500)
        seen = []

        runner.run(credentials, _items(1), BulkMode.OPTIMIZE, on_progress=lambda e: seen.append(runner.status()))

        assert seen[0]["errored_ids"] == [f"{IMG}1"]
        assert runner.status()["errored_ids"] == []
        assert runner.last_summary.errors == 1

    def test_background_run(self, runner, engine, credentials):
        """start() processes the batch on a worker thread"""
        runner.set_view(_items(3))

        runner.start(credentials, _items(3), BulkMode.OPTIMIZE)

        assert runner.wait(timeout=5)
        assert engine.commit.call_count == 3
        assert runner.last_summary.processed == 3
        assert all(c.optimized for c in runner.snapshot())
