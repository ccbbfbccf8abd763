"""Sequential bulk optimize/restore runs with cooperative cancellation"""

import logging
import threading
from contextlib import closing
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Optional, Set, Union

from managers.optimizer_engine import CommitResult, OptimizerEngine
from models.asset import Candidate, percent_saved
from models.bulk import BulkMode, BulkProgress, BulkSummary, RunContext
from shopify_client import ShopCredentials

logger = logging.getLogger("ImageOptimizer")

ProgressCallback = Callable[[BulkProgress], None]
BulkEvent = Union[BulkProgress, BulkSummary]


def optimized_entry(item: Candidate, result: CommitResult) -> Candidate:
    """View entry for an image after a successful commit, keyed by its new id"""
    return replace(
        item,
        id=result.new_id or item.id,
        optimized=True,
        original_kb=result.before_kb,
        optimized_kb=result.after_kb,
        saved_kb=result.before_kb - result.after_kb,
        percent=percent_saved(result.before_kb, result.after_kb),
    )


def restored_entry(item: Candidate) -> Candidate:
    return replace(item, optimized=False, saved_kb=0, optimized_kb=0, percent=0)


class BulkJobRunner:
    """Applies commit or restore over a batch, one remote call at a time.

    Each run gets a RunContext with a fresh token. Starting a new run
    supersedes the previous one: the old run finishes its in-flight item,
    then stops without touching shared progress, view or summary.
    """

    def __init__(self, engine: OptimizerEngine):
        self.engine = engine
        self._lock = threading.Lock()
        self._run_token = 0
        self._context: Optional[RunContext] = None
        self._mode: Optional[BulkMode] = None
        self._progress = BulkProgress(current=0, total=0)
        self._errored_ids: Set[str] = set()
        self._view: List[Candidate] = []
        self._last_summary: Optional[BulkSummary] = None
        self._thread: Optional[threading.Thread] = None

    # --- caller-visible state ---

    def set_view(self, candidates: List[Candidate]):
        with self._lock:
            self._view = list(candidates)

    def snapshot(self) -> List[Candidate]:
        with self._lock:
            return list(self._view)

    def replace_in_view(self, item_id: str, update: Callable[[Candidate], Candidate]) -> bool:
        """Swap the view entry for item_id with update(entry). Returns False if absent."""
        with self._lock:
            if not any(c.id == item_id for c in self._view):
                return False
            self._view = [update(c) if c.id == item_id else c for c in self._view]
            return True

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._context is not None

    @property
    def last_summary(self) -> Optional[BulkSummary]:
        return self._last_summary

    def status(self) -> Dict[str, object]:
        """Current run state; errored_ids covers the active run only"""
        with self._lock:
            if self._context is None:
                state = "idle"
            elif self._context.is_cancelled:
                state = "stopping"
            else:
                state = "running"
            return {
                "state": state,
                "run_token": self._run_token,
                "mode": self._mode.value if self._mode and self._context else None,
                "current": self._progress.current,
                "total": self._progress.total,
                "errored_ids": sorted(self._errored_ids),
                "last_summary": self._last_summary.message if self._last_summary else None,
            }

    # --- run control ---

    def stop(self) -> bool:
        """Request the current run to stop after its in-flight item"""
        with self._lock:
            if self._context is None:
                return False
            self._context.cancel()
        logger.info("[Bulk] Stop requested")
        return True

    def start(
        self,
        credentials: ShopCredentials,
        candidates: List[Candidate],
        mode: Union[BulkMode, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> threading.Thread:
        """Run in a background thread. Any run already in flight is superseded.

        The run is registered before this returns, so is_running and stop()
        see it immediately.
        """
        mode = BulkMode(mode)
        queue = list(candidates)
        ctx = self._begin(mode, len(queue))
        events = self._loop(ctx, credentials, queue, mode)
        thread = threading.Thread(
            target=self._drain,
            args=(events, on_progress),
            name="bulk-runner",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def run(
        self,
        credentials: ShopCredentials,
        candidates: List[Candidate],
        mode: Union[BulkMode, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BulkSummary:
        """Run to completion, reporting each BulkProgress to on_progress"""
        return self._drain(self.stream(credentials, candidates, mode), on_progress)

    def stream(
        self,
        credentials: ShopCredentials,
        candidates: List[Candidate],
        mode: Union[BulkMode, str],
    ) -> Iterator[BulkEvent]:
        """Yield a BulkProgress after each attempted item, then one BulkSummary.

        Closing the generator early ends the run as stopped.
        """
        mode = BulkMode(mode)
        queue = list(candidates)
        ctx = self._begin(mode, len(queue))
        yield from self._loop(ctx, credentials, queue, mode)

    # --- internals ---

    def _drain(self, events: Iterator[BulkEvent], on_progress: Optional[ProgressCallback]) -> BulkSummary:
        summary = None
        with closing(events):
            for event in events:
                if isinstance(event, BulkSummary):
                    summary = event
                elif on_progress is not None:
                    on_progress(event)
        return summary

    def _loop(
        self,
        ctx: RunContext,
        credentials: ShopCredentials,
        queue: List[Candidate],
        mode: BulkMode,
    ) -> Iterator[BulkEvent]:
        total = len(queue)
        logger.info(f"[Bulk] Run {ctx.token}: {mode.value} {total} images")

        processed_ids: Set[str] = set()
        processed = 0
        errors = 0
        exhausted = False
        try:
            for item in queue:
                if not self._is_active(ctx):
                    break
                if item.id in processed_ids:
                    continue

                try:
                    updated = self._apply(credentials, item, mode)
                except Exception as e:
                    errors += 1
                    logger.error(f"[Bulk Error] {item.id}: {e}")
                    event = BulkProgress(
                        current=processed + errors, total=total, item_id=item.id, ok=False, error=str(e)
                    )
                    self._record(ctx, event, item, None)
                else:
                    processed += 1
                    processed_ids.add(item.id)
                    event = BulkProgress(current=processed + errors, total=total, item_id=item.id, new_id=updated.id)
                    self._record(ctx, event, item, updated)
                yield event
            else:
                exhausted = True
        finally:
            summary = self._finish(ctx, mode, processed, errors, total, exhausted)
        yield summary

    def _begin(self, mode: BulkMode, total: int) -> RunContext:
        with self._lock:
            self._run_token += 1
            ctx = RunContext(token=self._run_token)
            self._context = ctx
            self._mode = mode
            self._progress = BulkProgress(current=0, total=total)
            self._errored_ids = set()
            return ctx

    def _is_active(self, ctx: RunContext) -> bool:
        with self._lock:
            return not ctx.is_cancelled and self._run_token == ctx.token

    def _apply(self, credentials: ShopCredentials, item: Candidate, mode: BulkMode) -> Candidate:
        if mode is BulkMode.OPTIMIZE:
            return optimized_entry(item, self.engine.commit(credentials, item))
        self.engine.restore(credentials, item)
        return restored_entry(item)

    def _record(self, ctx: RunContext, event: BulkProgress, item: Candidate, updated: Optional[Candidate]):
        with self._lock:
            if self._run_token != ctx.token:
                return
            self._progress = BulkProgress(current=event.current, total=event.total)
            if updated is None:
                self._errored_ids.add(item.id)
                return
            self._view = [updated if c.id == item.id else c for c in self._view]

    def _finish(
        self,
        ctx: RunContext,
        mode: BulkMode,
        processed: int,
        errors: int,
        total: int,
        exhausted: bool,
    ) -> BulkSummary:
        with self._lock:
            superseded = self._run_token != ctx.token
            summary = BulkSummary(
                mode=mode,
                processed=processed,
                errors=errors,
                total=total,
                stopped=superseded or not exhausted,
                superseded=superseded,
            )
            if not superseded:
                self._last_summary = summary
                self._context = None
                self._progress = BulkProgress(current=0, total=0)
                self._errored_ids = set()

        if superseded:
            logger.info(f"[Bulk] Run {ctx.token} superseded. Processed: {processed}, Errors: {errors}")
        else:
            logger.info(f"[Bulk] {summary.message}")
        return summary
