"""Deferred work for the owning thread.

Content-change handling never runs inside the callback that reported the
change. Work is queued here and drained by the host once layout has settled;
queuing twice under the same key keeps a single entry, which batches bursts
of keystrokes into one check. Results from background work come back
through the same queue.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from enum import Enum
from itertools import count
from typing import Callable, Hashable, Optional

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class PaginationPhase(str, Enum):
    IDLE = "idle"
    MUTATION_APPLIED = "mutation_applied"
    LAYOUT_SETTLED = "layout_settled"
    OVERFLOW_CHECKED = "overflow_checked"
    ACTION_DECIDED = "action_decided"


class DeferredQueue:
    """FIFO of deferred callbacks with keyed coalescing.

    ``defer`` may be called from any thread, so background results can be
    handed back; tasks only ever run on the thread calling ``run_pending``.
    """

    def __init__(self, max_rounds: int = 1000) -> None:
        self._tasks: "OrderedDict[Hashable, Task]" = OrderedDict()
        self._anonymous = count()
        self._max_rounds = max_rounds
        self._ready = threading.Condition()

    def __len__(self) -> int:
        return self.pending

    @property
    def pending(self) -> int:
        with self._ready:
            return len(self._tasks)

    def defer(self, task: Task, key: Optional[Hashable] = None) -> None:
        """Queue ``task``; a keyed task replaces the pending one with that key."""
        with self._ready:
            slot = key if key is not None else ("anon", next(self._anonymous))
            self._tasks[slot] = task
            self._ready.notify_all()

    def cancel(self, key: Hashable) -> bool:
        with self._ready:
            return self._tasks.pop(key, None) is not None

    def run_pending(self) -> int:
        """Run queued tasks, including ones they queue, until empty.

        Returns the number of tasks run. Stops after ``max_rounds`` tasks so a
        feedback loop cannot spin forever; the remainder stays queued.
        """
        ran = 0
        while True:
            with self._ready:
                if not self._tasks:
                    break
                if ran >= self._max_rounds:
                    logger.warning(
                        "deferred queue stopped after %d tasks, %d still pending",
                        ran,
                        len(self._tasks),
                    )
                    break
                _, task = self._tasks.popitem(last=False)
            task()
            ran += 1
        return ran

    def wait_for_work(self, timeout: Optional[float] = None) -> bool:
        """Block until a task is queued or ``timeout`` passes."""
        with self._ready:
            return self._ready.wait_for(lambda: bool(self._tasks), timeout)

    def clear(self) -> None:
        with self._ready:
            self._tasks.clear()
