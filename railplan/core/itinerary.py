from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

from railplan.core.errors import InvalidSchedule
from railplan.core.models import (
    DaysOfWeek,
    Direction,
    Handedness,
    Itinerary,
    Line,
    Node,
    ProjectSettings,
    Route,
    Segment,
    StopRecord,
    StopTiming,
)
from railplan.core.network import NetworkGraph
from railplan.core.routing import reverse_route, validate_route
from railplan.core.schedule import MAX_DEPARTURES_PER_DAY, ScheduledDeparture, expand_departures
from railplan.core.timeutil import DateRange, Seconds

logger = logging.getLogger(__name__)


@dataclass
class _StopTime:
    arrival: Seconds
    departure: Seconds
    derived: bool = False


def _round(x: float) -> int:
    # half-up, so equal splits do not alternate like banker's rounding
    return int(math.floor(x + 0.5))


def default_platform(node: Node, segment: Optional[Segment], nominal: bool, handedness: Handedness) -> int:
    """Platform a train uses at `node` when nothing more specific is configured.

    `nominal` is True when the train travels the segment from its source to its target.
    """
    count = node.platform_count
    if count == 0:
        return 0
    if segment is not None:
        configured = segment.default_platform_target if node.id == segment.target else segment.default_platform_source
        if node.valid_platform(configured):
            return int(configured)
    if count == 1:
        return 1
    near_side = nominal if handedness == Handedness.RIGHT else not nominal
    return 1 if near_side else count


def route_for(network: NetworkGraph, line: Line, direction: Direction, handedness: Handedness) -> Route:
    """Forward route, or the return route (reversed forward route when synced or unset)."""
    if direction == Direction.FORWARD:
        return line.forward_route
    if line.return_route is not None and not line.sync_return:
        return line.return_route
    if line.forward_route.is_empty:
        return Route()
    return reverse_route(network, line.forward_route, handedness)


class _Timetable:
    """Per-stop offsets (seconds from the scheduled departure) for one route and its stop data."""

    def __init__(
        self,
        nodes: List[Node],
        distances: List[float],
        stops: List[StopTiming],
        line: Line,
        settings: ProjectSettings,
    ) -> None:
        self.nodes = nodes
        self.distances = distances  # distances[i] = length of the leg arriving at stop i
        self.stops = stops
        self.line = line
        self.settings = settings

    def first_wait(self) -> Seconds:
        node, st = self.nodes[0], self.stops[0]
        if node.never_waits:
            return 0
        if st.departure is not None:
            return st.departure
        if st.wait_seconds is not None:
            return st.wait_seconds
        if self.line.first_stop_wait is not None:
            return self.line.first_stop_wait
        return 0

    def wait(self, i: int, arrival: Seconds) -> Seconds:
        node, st = self.nodes[i], self.stops[i]
        if node.never_waits:
            return 0
        if st.departure is not None:
            if st.departure < arrival:
                raise InvalidSchedule(
                    f"stop {i} ({node.name}) departs at +{st.departure}s before arriving at +{arrival}s"
                )
            return st.departure - arrival
        if st.wait_seconds is not None:
            return st.wait_seconds
        if self.line.default_wait is not None:
            return self.line.default_wait
        return self.settings.default_wait_seconds

    def derived_wait(self, i: int) -> Seconds:
        if self.nodes[i].never_waits:
            return 0
        return self.stops[i].wait_seconds or 0

    def compute(self) -> List[_StopTime]:
        n = len(self.nodes)
        first_dep = self.first_wait()
        if first_dep < 0:
            raise InvalidSchedule(f"first stop wait cannot be negative, got {first_dep}")
        times: List[Optional[_StopTime]] = [_StopTime(0, first_dep)] + [None] * (n - 1)
        anchor = 0  # last stop with a known time
        explicit_time = 0
        explicit_dist = 0.0

        for i in range(1, n):
            st = self.stops[i]
            pending = anchor != i - 1
            if st.arrival is not None:
                arrival = st.arrival
            elif st.travel_seconds is not None and not pending:
                arrival = times[i - 1].departure + st.travel_seconds
            elif st.departure is not None:
                arrival = st.departure
            else:
                continue
            prev_dep = times[anchor].departure
            if arrival < prev_dep:
                raise InvalidSchedule(
                    f"stop {i} ({self.nodes[i].name}) arrives at +{arrival}s before the previous departure at +{prev_dep}s"
                )
            if pending:
                self._inherit(times, anchor, i, arrival)
            else:
                explicit_time += arrival - prev_dep
                explicit_dist += self.distances[i]
            times[i] = _StopTime(arrival, arrival + self.wait(i, arrival))
            anchor = i

        # Past the last known time: extrapolate at the average explicit pace
        pace = explicit_time / explicit_dist if explicit_dist > 0 else 0.0
        for i in range(anchor + 1, n):
            arrival = times[i - 1].departure + _round(pace * self.distances[i])
            wait = 0 if self.nodes[i].never_waits else self.wait(i, arrival)
            times[i] = _StopTime(arrival, arrival + wait, derived=True)
        return [t for t in times if t is not None]

    def _inherit(self, times: List[Optional[_StopTime]], anchor: int, target: int, arrival: Seconds) -> None:
        """Share the span between two timed stops across the untimed stops in between."""
        start = times[anchor].departure
        between = range(anchor + 1, target)
        waits = {j: self.derived_wait(j) for j in between}
        travel = arrival - start - sum(waits.values())
        if travel < 0:
            # Explicit waits do not fit the span
            waits = {j: 0 for j in between}
            travel = arrival - start
        legs = list(range(anchor + 1, target + 1))
        total = sum(self.distances[j] for j in legs)
        cumulative = 0.0
        t = start
        last_pos = 0
        for k, j in enumerate(legs, start=1):
            cumulative += self.distances[j]
            share = cumulative / total if total > 0 else k / len(legs)
            pos = _round(travel * share)
            t += pos - last_pos
            last_pos = pos
            if j == target:
                break
            times[j] = _StopTime(t, t + waits[j], derived=True)
            t += waits[j]


def _slice_bounds(node_ids: List[str], from_node: Optional[str], to_node: Optional[str]) -> Tuple[int, int]:
    start, end = 0, len(node_ids) - 1
    if from_node is not None:
        if from_node not in node_ids:
            raise InvalidSchedule(f"departure starts at {from_node!r}, which is not on the route")
        start = node_ids.index(from_node)
    if to_node is not None:
        try:
            end = node_ids.index(to_node, start + 1)
        except ValueError:
            raise InvalidSchedule(f"departure ends at {to_node!r}, which does not follow {node_ids[start]!r} on the route") from None
    if end <= start:
        raise InvalidSchedule("a departure must cover at least one segment")
    return start, end


def itinerary_id(line_id: str, direction: Direction, departure: datetime) -> str:
    return f"{line_id}:{direction.value}:{departure:%Y%m%dT%H%M%S}"


def build_itinerary(
    network: NetworkGraph,
    line: Line,
    direction: Direction,
    departure: Union[ScheduledDeparture, datetime],
    settings: Optional[ProjectSettings] = None,
    route: Optional[Route] = None,
    label: str = "",
) -> Itinerary:
    """Timed stop list for one departure of `line`.

    The route is re-validated against the current graph first (StaleRoute on mismatch).
    Untimed stops between two timed ones are placed by distance and marked `timing_derived`;
    junctions and passing loops never wait.
    """
    settings = settings or ProjectSettings()
    direction = Direction(direction)
    if isinstance(departure, ScheduledDeparture):
        sched = departure
    else:
        sched = ScheduledDeparture(
            departure=departure,
            service_date=departure.date(),
            day_anchor=DaysOfWeek.for_date(departure.date()),
            rolled_over=False,
            direction=direction,
            source="manual",
        )
    if route is None:
        route = route_for(network, line, direction, settings.handedness)
    validate_route(network, route)

    entries = route.entries
    stop_data = line.stops_for(direction)
    nodes = [network.get_node(e.node_id) for e in entries]
    segments: List[Optional[Segment]] = [None] + [network.get_segment(e.segment_id) for e in entries[1:]]
    distances = [0.0] + [s.distance for s in segments[1:]]

    start, end = _slice_bounds([e.node_id for e in entries], sched.from_node, sched.to_node)
    if start or end != len(entries) - 1:
        entries = entries[start : end + 1]
        nodes = nodes[start : end + 1]
        segments = [None] + segments[start + 1 : end + 1]
        distances = [0.0] + distances[start + 1 : end + 1]
        stop_data = stop_data[start : end + 1]
    stops = [stop_data[i] if i < len(stop_data) else StopTiming() for i in range(len(entries))]
    if start:
        # Offsets are relative to the full route; a partial run re-anchors at its first stop
        stops = [StopTiming(travel_seconds=s.travel_seconds, wait_seconds=s.wait_seconds, platform=s.platform) for s in stops]

    times = _Timetable(nodes, distances, stops, line, settings).compute()

    records: List[StopRecord] = []
    base = sched.departure
    for i, (entry, node, t) in enumerate(zip(entries, nodes, times)):
        if i == 0:
            seg = segments[1]
            nominal = seg is not None and node.id == seg.source
        else:
            seg = segments[i]
            nominal = seg is not None and entries[i - 1].node_id == seg.source
        override = node.valid_platform(stops[i].platform)
        platform = override or default_platform(node, seg, nominal, settings.handedness)
        records.append(
            StopRecord(
                node_id=node.id,
                arrival=base + timedelta(seconds=t.arrival),
                departure=base + timedelta(seconds=t.departure),
                platform=platform,
                segment_id=entry.segment_id if i else None,
                track_index=entry.track_index if i else None,
                timing_derived=t.derived,
            )
        )

    return Itinerary(
        id=itinerary_id(line.id, direction, sched.departure),
        line_id=line.id,
        label=label or line.display_name,
        direction=direction,
        service_date=sched.service_date,
        day_anchor=sched.day_anchor,
        departure=sched.departure,
        stops=records,
        rolled_over=sched.rolled_over,
    )


def train_label(line: Line, number: int) -> str:
    return f"{line.display_name} {number:04d}"


def build_itineraries(
    line: Line,
    date_range: DateRange,
    network: NetworkGraph,
    settings: Optional[ProjectSettings] = None,
    max_per_day: int = MAX_DEPARTURES_PER_DAY,
) -> List[Itinerary]:
    """Every itinerary of `line` over `date_range`, sorted by departure.

    Train numbers restart at 0001 on each service date and count both directions in
    departure order. Disabled lines and directions without a route produce nothing.
    """
    settings = settings or ProjectSettings()
    if not line.enabled:
        return []
    departures: List[ScheduledDeparture] = []
    routes: Dict[Direction, Route] = {}
    for direction in (Direction.FORWARD, Direction.RETURN):
        seq = list(expand_departures(line.schedule, date_range, direction, max_per_day))
        if not seq:
            continue
        route = route_for(network, line, direction, settings.handedness)
        if route.is_empty:
            logger.debug("line %s has no %s route; %d departure(s) skipped", line.id, direction.value, len(seq))
            continue
        validate_route(network, route)
        routes[direction] = route
        departures.extend(seq)

    departures.sort(key=lambda d: (d.service_date, d.departure, d.direction != Direction.FORWARD))
    out: List[Itinerary] = []
    seen: Dict[str, int] = {}
    numbers: Dict[date, int] = {}
    for dep in departures:
        numbers[dep.service_date] = numbers.get(dep.service_date, 0) + 1
        it = build_itinerary(
            network,
            line,
            dep.direction,
            dep,
            settings,
            route=routes[dep.direction],
            label=train_label(line, numbers[dep.service_date]),
        )
        # Same line, direction and instant from two sources
        if it.id in seen:
            seen[it.id] += 1
            it.id = f"{it.id}#{seen[it.id]}"
        else:
            seen[it.id] = 1
        out.append(it)
    logger.debug("line %s: %d itinerary(ies) over %d day(s)", line.id, len(out), date_range.days)
    return out
