"""Bulk run data models"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class BulkMode(str, Enum):
    OPTIMIZE = "optimize"
    RESTORE = "restore"


@dataclass(frozen=True)
class RunContext:
    """Identity and cancellation flag of one bulk run.

    Runs are compared by token; a context whose token is no longer the
    runner's current token has been superseded.
    """
    token: int
    cancelled: threading.Event = field(default_factory=threading.Event, compare=False)

    def cancel(self):
        self.cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


@dataclass(frozen=True)
class BulkProgress:
    """Emitted after every item that was attempted"""
    current: int
    total: int
    item_id: Optional[str] = None
    ok: bool = True
    new_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BulkSummary:
    mode: BulkMode
    processed: int
    errors: int
    total: int
    stopped: bool = False
    superseded: bool = False

    @property
    def message(self) -> str:
        prefix = "Stopped." if self.stopped else "Complete!"
        return f"{prefix} Processed: {self.processed}, Errors: {self.errors}"
