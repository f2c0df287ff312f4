from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntFlag
from typing import Dict, List, Optional, Tuple

from railplan.core.timeutil import Seconds


class DaysOfWeek(IntFlag):
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 4
    THURSDAY = 8
    FRIDAY = 16
    SATURDAY = 32
    SUNDAY = 64
    WEEKDAYS = MONDAY | TUESDAY | WEDNESDAY | THURSDAY | FRIDAY
    WEEKENDS = SATURDAY | SUNDAY
    ALL_DAYS = WEEKDAYS | WEEKENDS

    @classmethod
    def from_index(cls, index: int) -> Optional["DaysOfWeek"]:
        """0 = Monday ... 6 = Sunday; None outside that range."""
        if 0 <= index <= 6:
            return cls(1 << index)
        return None

    @classmethod
    def for_date(cls, day: date) -> "DaysOfWeek":
        return cls(1 << day.weekday())

    def display(self) -> str:
        if self == DaysOfWeek.ALL_DAYS:
            return "All days"
        if self == DaysOfWeek.WEEKDAYS:
            return "Weekdays"
        if self == DaysOfWeek.WEEKENDS:
            return "Weekends"
        names = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        return ", ".join(n for i, n in enumerate(names) if self & (1 << i))


class TrackDirection(str, Enum):
    FORWARD = "forward"  # source -> target only
    REVERSE = "reverse"  # target -> source only
    BIDIRECTIONAL = "bidirectional"


class Handedness(str, Enum):
    RIGHT = "right"
    LEFT = "left"


class NodeKind(str, Enum):
    STATION = "station"
    JUNCTION = "junction"


class Direction(str, Enum):
    FORWARD = "forward"
    RETURN = "return"


@dataclass
class Track:
    direction: TrackDirection = TrackDirection.BIDIRECTIONAL


@dataclass
class Platform:
    name: str


@dataclass
class RoutingRule:
    from_segment: str
    to_segment: str
    allowed: bool = False


@dataclass
class Node:
    id: str
    name: str
    kind: NodeKind = NodeKind.STATION
    position: Optional[Tuple[float, float]] = None  # layout only
    platforms: List[Platform] = field(default_factory=list)
    is_passing_loop: bool = False
    # Junctions only; a transition without a rule is allowed
    routing_rules: List[RoutingRule] = field(default_factory=list)

    @property
    def is_junction(self) -> bool:
        return self.kind == NodeKind.JUNCTION

    @property
    def never_waits(self) -> bool:
        return self.is_junction or self.is_passing_loop

    @property
    def platform_count(self) -> int:
        return 0 if self.is_junction else len(self.platforms)

    def valid_platform(self, index: Optional[int]) -> int:
        """Return `index` if it names one of this station's platforms, else 0 (unassigned)."""
        if index is None or index < 1 or index > self.platform_count:
            return 0
        return index

    def is_routing_allowed(self, from_segment: str, to_segment: str) -> bool:
        if from_segment == to_segment:
            return False
        for rule in self.routing_rules:
            if rule.from_segment == from_segment and rule.to_segment == to_segment:
                return rule.allowed
        return True

    def set_routing_rule(self, from_segment: str, to_segment: str, allowed: bool) -> None:
        if from_segment == to_segment:
            return
        for rule in self.routing_rules:
            if rule.from_segment == from_segment and rule.to_segment == to_segment:
                rule.allowed = allowed
                return
        self.routing_rules.append(RoutingRule(from_segment, to_segment, allowed))


@dataclass
class Segment:
    id: str
    source: str
    target: str
    tracks: List[Track]
    distance: float = 0.0  # km
    # Platform used when arriving at the source end (travelling target -> source)
    default_platform_source: Optional[int] = None
    # Platform used when arriving at the target end (travelling source -> target)
    default_platform_target: Optional[int] = None

    @property
    def track_count(self) -> int:
        return len(self.tracks)

    @property
    def is_single_track(self) -> bool:
        return len(self.tracks) == 1

    def connects(self, a: str, b: str) -> bool:
        return (self.source == a and self.target == b) or (self.source == b and self.target == a)

    def other_end(self, node_id: str) -> Optional[str]:
        if node_id == self.source:
            return self.target
        if node_id == self.target:
            return self.source
        return None


@dataclass(frozen=True)
class RouteEntry:
    node_id: str
    segment_id: Optional[str] = None  # segment used to arrive; None for the first entry
    track_index: Optional[int] = None


@dataclass
class Route:
    """Ordered (node, arriving segment, track) triples; revisits are separate entries."""

    entries: List[RouteEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def node_ids(self) -> List[str]:
        return [e.node_id for e in self.entries]

    @property
    def segment_ids(self) -> List[str]:
        return [e.segment_id for e in self.entries[1:] if e.segment_id is not None]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) < 2


@dataclass
class StopTiming:
    travel_seconds: Optional[Seconds] = None  # leg arriving at this stop
    arrival: Optional[Seconds] = None  # offset from the journey's first departure
    departure: Optional[Seconds] = None
    wait_seconds: Optional[Seconds] = None
    platform: Optional[int] = None


@dataclass
class AutoSchedule:
    interval: Seconds
    first_departure: Seconds
    # Exclusive; earlier than first_departure means the service runs past midnight
    last_departure_before: Optional[Seconds] = None
    days: DaysOfWeek = DaysOfWeek.ALL_DAYS


@dataclass
class ManualDeparture:
    time: Seconds
    direction: Direction = Direction.FORWARD
    repeat_interval: Optional[Seconds] = None
    repeat_until: Optional[Seconds] = None  # inclusive
    days: DaysOfWeek = DaysOfWeek.ALL_DAYS
    from_node: Optional[str] = None
    to_node: Optional[str] = None


@dataclass
class ScheduleConfig:
    forward: Optional[AutoSchedule] = None
    return_schedule: Optional[AutoSchedule] = None
    # Return departures = forward departures + locked_offset when set
    locked_offset: Optional[Seconds] = None
    manual: List[ManualDeparture] = field(default_factory=list)


@dataclass
class Line:
    id: str
    name: str = ""
    forward_route: Route = field(default_factory=Route)
    return_route: Optional[Route] = None
    sync_return: bool = False
    forward_stops: List[StopTiming] = field(default_factory=list)
    return_stops: List[StopTiming] = field(default_factory=list)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    default_wait: Optional[Seconds] = None
    first_stop_wait: Optional[Seconds] = None
    enabled: bool = True
    color: str = "#4ECDC4"
    visible: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def stops_for(self, direction: Direction) -> List[StopTiming]:
        return self.forward_stops if direction == Direction.FORWARD else self.return_stops


@dataclass
class ProjectSettings:
    handedness: Handedness = Handedness.RIGHT
    platform_buffer_seconds: Seconds = 60
    station_margin_seconds: Seconds = 30
    default_wait_seconds: Seconds = 30
    ignore_same_direction_platform_conflicts: bool = False


@dataclass
class StopRecord:
    node_id: str
    arrival: datetime
    departure: datetime
    platform: int = 0  # 0 = unassigned
    segment_id: Optional[str] = None  # segment used to arrive
    track_index: Optional[int] = None
    timing_derived: bool = False

    @property
    def wait_seconds(self) -> Seconds:
        return int((self.departure - self.arrival).total_seconds())


@dataclass
class Itinerary:
    id: str
    line_id: str
    label: str
    direction: Direction
    service_date: date
    day_anchor: DaysOfWeek
    departure: datetime
    stops: List[StopRecord]
    rolled_over: bool = False

    @property
    def start(self) -> datetime:
        return self.stops[0].arrival

    @property
    def end(self) -> datetime:
        return self.stops[-1].departure

    @property
    def timing_uncertain(self) -> bool:
        return any(s.timing_derived for s in self.stops)


class ConflictKind(str, Enum):
    HEAD_ON = "head_on"
    OVERTAKING = "overtaking"
    BLOCK_VIOLATION = "block_violation"
    PLATFORM_VIOLATION = "platform_violation"
    CROSSING = "crossing"


_TYPE_NAMES: Dict[ConflictKind, str] = {
    ConflictKind.HEAD_ON: "Head-on Conflict",
    ConflictKind.OVERTAKING: "Overtaking",
    ConflictKind.BLOCK_VIOLATION: "Block Violation",
    ConflictKind.PLATFORM_VIOLATION: "Platform Violation",
    ConflictKind.CROSSING: "Crossing",
}

_UNCERTAIN_SUFFIX = " (timing uncertain - at least one train has no explicit time, but conflict must be assumed)"


@dataclass(frozen=True)
class Conflict:
    kind: ConflictKind
    itineraries: Tuple[str, ...]
    labels: Tuple[str, ...]
    start: datetime
    end: datetime
    intervals: Tuple[Tuple[datetime, datetime], ...]
    day_anchors: Tuple[DaysOfWeek, ...]
    segment_id: Optional[str] = None
    station_id: Optional[str] = None
    platform: Optional[int] = None
    # (node, node) the segment legs ran between, in the first itinerary's travel order
    between: Optional[Tuple[str, str]] = None
    timing_uncertain: bool = False

    @property
    def is_conflict(self) -> bool:
        return self.kind != ConflictKind.CROSSING

    @property
    def type_name(self) -> str:
        return _TYPE_NAMES[self.kind]

    def format_message(self, names: Optional[Dict[str, str]] = None) -> str:
        """Human-readable description; `names` maps node ids to display names."""
        names = names or {}
        first, second = self.labels[0], self.labels[1] if len(self.labels) > 1 else "?"
        if self.kind in (ConflictKind.PLATFORM_VIOLATION, ConflictKind.CROSSING) and self.station_id:
            station = names.get(self.station_id, self.station_id)
            if self.kind == ConflictKind.CROSSING:
                msg = f"{first} crosses {second} at {station}"
            else:
                msg = f"{first} conflicts with {second} at {station} Platform {self.platform or '?'}"
        else:
            a, b = self.between or ("?", "?")
            a, b = names.get(a, a), names.get(b, b)
            if self.kind == ConflictKind.OVERTAKING:
                msg = f"{second} overtakes {first} between {a} and {b}"
            elif self.kind == ConflictKind.BLOCK_VIOLATION:
                msg = f"{first} block violation with {second} between {a} and {b}"
            elif self.kind == ConflictKind.CROSSING:
                msg = f"{first} crosses {second} between {a} and {b}"
            else:
                msg = f"{first} conflicts with {second} between {a} and {b}"
        if self.timing_uncertain:
            return msg + _UNCERTAIN_SUFFIX
        return msg
