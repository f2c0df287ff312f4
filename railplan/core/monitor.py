from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from railplan.core.config import RuntimeConfig
from railplan.core.conflicts import MAX_CONFLICTS
from railplan.core.models import Conflict
from railplan.core.project import ConflictReport, Project
from railplan.core.timeutil import DateRange

logger = logging.getLogger(__name__)


class ConflictMonitor:
    """Keeps the current conflict report of a project, recomputed once edits settle.

    Every project change marks the report stale; `poll` recomputes only when no edit has
    arrived for `debounce_seconds`, so a burst of edits costs one detection pass.
    """

    def __init__(
        self,
        project: Project,
        debounce_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        date_range: Optional[DateRange] = None,
        max_conflicts: int = MAX_CONFLICTS,
    ) -> None:
        self._project = project
        self._debounce = RuntimeConfig().debounce_seconds if debounce_seconds is None else debounce_seconds
        self._clock = clock
        self._date_range = date_range
        self._max_conflicts = max_conflicts
        self._dirty = True
        self._last_edit: Optional[float] = None
        self._report: Optional[ConflictReport] = None
        self.passes = 0
        project.subscribe(self.invalidate)

    def close(self) -> None:
        self._project.unsubscribe(self.invalidate)

    def invalidate(self) -> None:
        self._dirty = True
        self._last_edit = self._clock()

    @property
    def pending(self) -> bool:
        return self._dirty

    def _remaining(self) -> float:
        if self._last_edit is None:
            return 0.0
        return self._debounce - (self._clock() - self._last_edit)

    def _run(self) -> ConflictReport:
        self._report = self._project.detect(self._date_range, max_conflicts=self._max_conflicts)
        self._dirty = False
        self.passes += 1
        logger.debug("detection pass %d complete", self.passes)
        return self._report

    def poll(self) -> bool:
        """Recompute if stale and settled; True when a pass ran."""
        if not self._dirty or self._remaining() > 0:
            return False
        self._run()
        return True

    def flush(self) -> ConflictReport:
        """Recompute now if anything changed, ignoring the debounce window."""
        if self._dirty or self._report is None:
            return self._run()
        return self._report

    async def settle(self) -> ConflictReport:
        """Wait for edits to settle, then return the up-to-date report."""
        while self._dirty:
            remaining = self._remaining()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            self._run()
        return self._report if self._report is not None else self._run()

    @property
    def report(self) -> Optional[ConflictReport]:
        return self._report

    @property
    def conflicts(self) -> List[Conflict]:
        """Conflicts of the last completed pass (possibly stale; see `pending`)."""
        return list(self._report.conflicts) if self._report is not None else []
