from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from itertools import count
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from railplan.core.conflicts import MAX_CONFLICTS, detect_conflicts, split_crossings
from railplan.core.errors import InvalidNetwork, NotFound, RailPlanError, StaleRoute
from railplan.core.itinerary import build_itineraries
from railplan.core.models import Conflict, Direction, Itinerary, Line, ProjectSettings, Route, RouteEntry, StopTiming
from railplan.core.network import NetworkGraph, NodeRemoval
from railplan.core.routing import ResolveMode, assign_tracks, resolve_route
from railplan.core.schedule import MAX_DEPARTURES_PER_DAY, validate_schedule
from railplan.core.timeutil import DateRange, service_week, week_window_start

logger = logging.getLogger(__name__)


@dataclass
class ConflictReport:
    date_range: DateRange
    itineraries: List[Itinerary]
    conflicts: List[Conflict]
    # line id -> "<ErrorClass>: message" for lines that could not be expanded
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def real(self) -> List[Conflict]:
        return split_crossings(self.conflicts)[0]

    @property
    def crossings(self) -> List[Conflict]:
        return split_crossings(self.conflicts)[1]


class Project:
    """A network, its lines and settings, edited together and observed as one unit."""

    def __init__(
        self,
        name: str = "Untitled",
        network: Optional[NetworkGraph] = None,
        settings: Optional[ProjectSettings] = None,
        lines: Optional[Sequence[Line]] = None,
    ) -> None:
        self.name = name
        self.network = network or NetworkGraph()
        self.settings = settings or ProjectSettings()
        self._lines: Dict[str, Line] = {}
        self._line_ids = count(1)
        self._listeners: List[Callable[[], None]] = []
        self.network.subscribe(self._changed)
        for line in lines or []:
            self.add_line(line)

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _changed(self) -> None:
        for cb in list(self._listeners):
            cb()

    def touch(self) -> None:
        """Announce an edit made directly on a line or the settings."""
        self._changed()

    # -- lines -------------------------------------------------------------

    @property
    def lines(self) -> List[Line]:
        return list(self._lines.values())

    def get_line(self, line_id: str) -> Line:
        try:
            return self._lines[line_id]
        except KeyError:
            raise NotFound("line", line_id) from None

    def add_line(self, line: Line) -> Line:
        if line.id and line.id in self._lines:
            raise InvalidNetwork(f"line {line.id!r} already exists")
        validate_schedule(line.schedule)
        if not line.id:
            for i in self._line_ids:
                if f"l{i}" not in self._lines:
                    line.id = f"l{i}"
                    break
        self._lines[line.id] = line
        self._changed()
        return line

    def update_line(self, line: Line) -> Line:
        self.get_line(line.id)
        validate_schedule(line.schedule)
        self._lines[line.id] = line
        self._changed()
        return line

    def remove_line(self, line_id: str) -> Line:
        line = self.get_line(line_id)
        del self._lines[line_id]
        self._changed()
        return line

    def set_route(
        self,
        line_id: str,
        waypoints: Sequence[str],
        mode: ResolveMode = ResolveMode.EXISTING_ONLY,
        direction: Direction = Direction.FORWARD,
    ) -> Route:
        """Resolve `waypoints` and store the result as the line's route for `direction`."""
        line = self.get_line(line_id)
        route = resolve_route(self.network, waypoints, mode, self.settings.handedness)
        if Direction(direction) == Direction.FORWARD:
            line.forward_route = route
        else:
            line.return_route = route
            line.sync_return = False
        self._changed()
        return route

    # -- graph edits with cascade -----------------------------------------

    def remove_node(self, node_id: str) -> NodeRemoval:
        """Delete a node; routes through a bypassed node are rewritten onto the bypass segment.

        Routes through a node that had more than two connections are left as they are and
        fail with StaleRoute the next time they are used.
        """
        removal = self.network.remove_node(node_id)
        if removal.bypass:
            (old_a, old_b), new = next(iter(removal.bypass.items()))
            for line in self._lines.values():
                for attr, stops_attr in (("forward_route", "forward_stops"), ("return_route", "return_stops")):
                    route = getattr(line, attr)
                    if route is None:
                        continue
                    rewritten, dropped = _bypass(route, node_id, {old_a, old_b}, new)
                    if not dropped:
                        continue
                    try:
                        rewritten = assign_tracks(self.network, rewritten, self.settings.handedness)
                    except StaleRoute:
                        # still passes through something deleted; left for the next build to report
                        continue
                    setattr(line, attr, rewritten)
                    stops = getattr(line, stops_attr)
                    setattr(line, stops_attr, _merge_stops(stops, dropped, removal.node.never_waits, line, self.settings))
                    logger.info("line %s: %s route rerouted over %s", line.id, attr.split("_")[0], new)
            self._changed()
        return removal

    # -- derived state -----------------------------------------------------

    def itineraries(
        self, date_range: Optional[DateRange] = None, max_per_day: int = MAX_DEPARTURES_PER_DAY
    ) -> Tuple[List[Itinerary], Dict[str, str]]:
        """Itineraries of every enabled line, plus the lines that failed and why."""
        date_range = date_range or service_week()
        out: List[Itinerary] = []
        failures: Dict[str, str] = {}
        for line in self._lines.values():
            if not line.enabled:
                continue
            try:
                out.extend(build_itineraries(line, date_range, self.network, self.settings, max_per_day))
            except RailPlanError as e:
                failures[line.id] = f"{type(e).__name__}: {e}"
                logger.warning("line %s skipped: %s", line.id, failures[line.id])
        out.sort(key=lambda it: (it.departure, it.id))
        return out, failures

    def detect(
        self,
        date_range: Optional[DateRange] = None,
        window_start: Optional[datetime] = None,
        max_conflicts: int = MAX_CONFLICTS,
        max_per_day: int = MAX_DEPARTURES_PER_DAY,
    ) -> ConflictReport:
        """Run a full detection pass.

        Without a date range the service week is used, including the Sunday before it, and
        anything starting before Monday 00:00 is dropped.
        """
        if date_range is None:
            date_range = service_week()
            window_start = window_start or week_window_start()
        itineraries, failures = self.itineraries(date_range, max_per_day)
        conflicts = detect_conflicts(itineraries, self.network, self.settings, window_start, max_conflicts)
        logger.info(
            "%s: %d itineraries, %d conflict(s), %d crossing(s)",
            self.name,
            len(itineraries),
            sum(1 for c in conflicts if c.is_conflict),
            sum(1 for c in conflicts if not c.is_conflict),
        )
        return ConflictReport(date_range=date_range, itineraries=itineraries, conflicts=conflicts, failures=failures)


def _merge_stops(
    stops: List[StopTiming], dropped: set, never_waits: bool, line: Line, settings: ProjectSettings
) -> List[StopTiming]:
    """Drop the stops of bypassed nodes, folding their leg and wait into the following stop.

    Only relative timings are merged; absolute arrival and departure offsets stay as they are.
    """
    out: List[StopTiming] = []
    for i, st in enumerate(stops):
        if i in dropped:
            continue
        gone = stops[i - 1] if i - 1 in dropped else None
        if gone is not None and gone.travel_seconds is not None and gone.departure is None and st.travel_seconds is not None:
            if never_waits:
                wait = 0
            elif gone.wait_seconds is not None:
                wait = gone.wait_seconds
            elif line.default_wait is not None:
                wait = line.default_wait
            else:
                wait = settings.default_wait_seconds
            st = replace(st, travel_seconds=gone.travel_seconds + wait + st.travel_seconds)
        out.append(st)
    return out


def _bypass(route: Route, node_id: str, old: set, new: str) -> Tuple[Route, set]:
    """Replace node -> arrive-over-one-old / leave-over-the-other with a single bypass leg.

    Returns the rewritten route and the indices of the removed entries.
    """
    entries = list(route.entries)
    dropped = set()
    out: List[RouteEntry] = []
    i = 0
    while i < len(entries):
        e = entries[i]
        if (
            e.node_id == node_id
            and 0 < i < len(entries) - 1
            and {e.segment_id, entries[i + 1].segment_id} == old
        ):
            nxt = entries[i + 1]
            out.append(replace(nxt, segment_id=new, track_index=None))
            dropped.add(i)
            i += 2
            continue
        out.append(e)
        i += 1
    return Route(entries=out), dropped
