from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from railplan.core.models import Conflict, ConflictKind, DaysOfWeek, Itinerary, ProjectSettings
from railplan.core.network import NetworkGraph

logger = logging.getLogger(__name__)

MAX_CONFLICTS = 9999


@dataclass
class _Leg:
    """One itinerary's occupancy of one segment."""

    owner: int  # index into the itinerary list
    segment_id: str
    track: Optional[int]
    forward: bool  # travelling source -> target
    start: datetime
    end: datetime
    from_node: str
    to_node: str
    derived: bool


@dataclass
class _Visit:
    """One itinerary's occupancy of a platform."""

    owner: int
    station_id: str
    platform: int
    start: datetime
    end: datetime
    arrived_via: Optional[Tuple[str, bool]]  # (segment, forward) of the arriving leg
    derived: bool


def _window(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> Tuple[datetime, datetime, float]:
    """(start, end, gap seconds) of the overlap of two intervals, or of the gap between them."""
    lo, hi = max(a_start, b_start), min(a_end, b_end)
    gap = (lo - hi).total_seconds()
    return (hi, lo, gap) if gap > 0 else (lo, hi, gap)


def _overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def _collect(itineraries: Sequence[Itinerary], network: NetworkGraph) -> Tuple[Dict[str, List[_Leg]], Dict[str, List[_Visit]]]:
    legs: Dict[str, List[_Leg]] = defaultdict(list)
    visits: Dict[str, List[_Visit]] = defaultdict(list)
    for idx, it in enumerate(itineraries):
        prev = None
        for stop in it.stops:
            via = None
            if prev is not None and stop.segment_id is not None and network.has_segment(stop.segment_id):
                seg = network.get_segment(stop.segment_id)
                forward = prev.node_id == seg.source
                via = (seg.id, forward)
                legs[seg.id].append(
                    _Leg(
                        owner=idx,
                        segment_id=seg.id,
                        track=stop.track_index,
                        forward=forward,
                        start=prev.departure,
                        end=stop.arrival,
                        from_node=prev.node_id,
                        to_node=stop.node_id,
                        derived=prev.timing_derived or stop.timing_derived,
                    )
                )
            if stop.platform:
                visits[stop.node_id].append(
                    _Visit(
                        owner=idx,
                        station_id=stop.node_id,
                        platform=stop.platform,
                        start=stop.arrival,
                        end=stop.departure,
                        arrived_via=via,
                        derived=stop.timing_derived,
                    )
                )
            prev = stop
    return legs, visits


class _Detector:
    def __init__(self, itineraries: Sequence[Itinerary], network: NetworkGraph, settings: ProjectSettings) -> None:
        self.itineraries = itineraries
        self.network = network
        self.settings = settings
        self.margin = settings.station_margin_seconds
        self.buffer = settings.platform_buffer_seconds
        self.found: List[Conflict] = []
        self.pairs_checked = 0

    def _rank(self, owner: int) -> Tuple[datetime, str]:
        it = self.itineraries[owner]
        return it.departure, it.id

    def _emit(self, kind: ConflictKind, first, second, start: datetime, end: datetime, **where) -> None:
        a, b = self.itineraries[first.owner], self.itineraries[second.owner]
        self.found.append(
            Conflict(
                kind=kind,
                itineraries=(a.id, b.id),
                labels=(a.label, b.label),
                start=start,
                end=end,
                intervals=((first.start, first.end), (second.start, second.end)),
                day_anchors=(a.day_anchor, b.day_anchor),
                timing_uncertain=first.derived or second.derived,
                **where,
            )
        )

    def _sweep(self, items: List, reach: float) -> Iterable[Tuple[object, object]]:
        """Pairs from different itineraries whose intervals come within `reach` seconds."""
        items = sorted(items, key=lambda x: (x.start, x.end, self._rank(x.owner)))
        for i, a in enumerate(items):
            for b in items[i + 1 :]:
                if (b.start - a.end).total_seconds() > reach:
                    break
                if a.owner == b.owner:
                    continue
                self.pairs_checked += 1
                # canonical orientation: earlier departure first, then id
                if self._rank(b.owner) < self._rank(a.owner):
                    yield b, a
                else:
                    yield a, b

    def segments(self, legs: Dict[str, List[_Leg]]) -> None:
        for seg_id, seg_legs in legs.items():
            if len(seg_legs) < 2:
                continue
            single = self.network.get_segment(seg_id).is_single_track
            for a, b in self._sweep(seg_legs, self.margin):
                self._segment_pair(a, b, single)

    def _segment_pair(self, a: _Leg, b: _Leg, single: bool) -> None:
        overlap = _overlaps(a.start, a.end, b.start, b.end)
        start, end, gap = _window(a.start, a.end, b.start, b.end)
        if a.track == b.track:
            if a.forward != b.forward:
                if overlap:
                    self._emit(ConflictKind.HEAD_ON, a, b, start, end, segment_id=a.segment_id, between=(a.from_node, a.to_node))
                return
            # entered first; on a tie the one leaving later is the one caught up with
            if a.start < b.start or (a.start == b.start and a.end >= b.end):
                lead, chase = a, b
            else:
                lead, chase = b, a
            if chase.end < lead.end:
                self._emit(
                    ConflictKind.OVERTAKING, lead, chase, start, end, segment_id=a.segment_id, between=(lead.from_node, lead.to_node)
                )
            elif single and overlap:
                self._emit(ConflictKind.BLOCK_VIOLATION, a, b, start, end, segment_id=a.segment_id, between=(a.from_node, a.to_node))
        elif gap <= self.margin:
            self._emit(ConflictKind.CROSSING, a, b, start, end, segment_id=a.segment_id, between=(a.from_node, a.to_node))

    def stations(self, visits: Dict[str, List[_Visit]]) -> None:
        reach = max(self.buffer, self.margin)
        for station_id, station_visits in visits.items():
            if len(station_visits) < 2:
                continue
            for a, b in self._sweep(station_visits, reach):
                self._station_pair(a, b)

    def _station_pair(self, a: _Visit, b: _Visit) -> None:
        start, end, gap = _window(a.start, a.end, b.start, b.end)
        if a.platform == b.platform:
            if gap >= self.buffer:
                return
            if (
                self.settings.ignore_same_direction_platform_conflicts
                and a.arrived_via is not None
                and a.arrived_via == b.arrived_via
            ):
                return
            self._emit(ConflictKind.PLATFORM_VIOLATION, a, b, start, end, station_id=a.station_id, platform=a.platform)
        elif gap <= self.margin:
            self._emit(ConflictKind.CROSSING, a, b, start, end, station_id=a.station_id)


def _sort_key(c: Conflict):
    return (c.start, c.end, c.kind.value, c.itineraries, c.segment_id or "", c.station_id or "")


def detect_conflicts(
    itineraries: Sequence[Itinerary],
    network: NetworkGraph,
    settings: Optional[ProjectSettings] = None,
    window_start: Optional[datetime] = None,
    max_conflicts: int = MAX_CONFLICTS,
) -> List[Conflict]:
    """Every conflict and crossing between `itineraries`, sorted by start time.

    Only itineraries sharing a segment or a station are compared. The result does not depend
    on input order. Conflicts starting before `window_start` are dropped and at most
    `max_conflicts` are returned.
    """
    t0 = time.perf_counter()
    settings = settings or ProjectSettings()
    legs, visits = _collect(itineraries, network)
    det = _Detector(itineraries, network, settings)
    det.segments(legs)
    det.stations(visits)

    found = det.found
    if window_start is not None:
        found = [c for c in found if c.start >= window_start]
    found.sort(key=_sort_key)
    if len(found) > max_conflicts:
        logger.warning("conflict list truncated to %d of %d", max_conflicts, len(found))
        found = found[:max_conflicts]
    logger.debug(
        "%d itineraries, %d resource pair(s) checked, %d result(s) in %.1f ms",
        len(itineraries),
        det.pairs_checked,
        len(found),
        (time.perf_counter() - t0) * 1000,
    )
    return found


def split_crossings(conflicts: Iterable[Conflict]) -> Tuple[List[Conflict], List[Conflict]]:
    """(real conflicts, informational crossings)."""
    real: List[Conflict] = []
    crossings: List[Conflict] = []
    for c in conflicts:
        (real if c.is_conflict else crossings).append(c)
    return real, crossings


def group_by_day(conflicts: Iterable[Conflict]) -> Dict[DaysOfWeek, List[Conflict]]:
    """Conflicts keyed by the originating service day of each itinerary involved."""
    out: Dict[DaysOfWeek, List[Conflict]] = {}
    for c in conflicts:
        for day in dict.fromkeys(c.day_anchors):
            out.setdefault(day, []).append(c)
    return out
