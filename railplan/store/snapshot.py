"""Stable structural form of a project.

Every field introduced after version 1 has a default, so older payloads keep loading;
structural changes go through `migrate_snapshot`.
"""
from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Annotated, Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ValidationError

from railplan.core.errors import SnapshotError
from railplan.core.models import (
    AutoSchedule,
    DaysOfWeek,
    Direction,
    Handedness,
    Line,
    ManualDeparture,
    Node,
    NodeKind,
    Platform,
    ProjectSettings,
    Route,
    RouteEntry,
    RoutingRule,
    ScheduleConfig,
    StopTiming,
    Track,
    TrackDirection,
)
from railplan.core.network import NetworkGraph
from railplan.core.project import Project
from railplan.core.timeutil import parse_clock

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# Seconds, or an "HH:MM[:SS]" string
Clock = Annotated[int, BeforeValidator(parse_clock)]


class RoutingRuleSchema(BaseModel):
    from_segment: str
    to_segment: str
    allowed: bool = False


class NodeSchema(BaseModel):
    id: str
    name: str
    kind: NodeKind = NodeKind.STATION
    position: Optional[Tuple[float, float]] = None
    platforms: List[str] = []
    is_passing_loop: bool = False
    routing_rules: List[RoutingRuleSchema] = []


class SegmentSchema(BaseModel):
    id: str
    source: str
    target: str
    # explicit per-track directions win over track_count
    tracks: Optional[List[TrackDirection]] = None
    track_count: int = 1
    distance: float = 0.0
    default_platform_source: Optional[int] = None
    default_platform_target: Optional[int] = None


class RouteEntrySchema(BaseModel):
    node_id: str
    segment_id: Optional[str] = None
    track_index: Optional[int] = None


class StopTimingSchema(BaseModel):
    travel_seconds: Optional[Clock] = None
    arrival: Optional[Clock] = None
    departure: Optional[Clock] = None
    wait_seconds: Optional[Clock] = None
    platform: Optional[int] = None


class AutoScheduleSchema(BaseModel):
    interval: Clock
    first_departure: Clock
    last_departure_before: Optional[Clock] = None
    days: int = int(DaysOfWeek.ALL_DAYS)


class ManualDepartureSchema(BaseModel):
    time: Clock
    direction: Direction = Direction.FORWARD
    repeat_interval: Optional[Clock] = None
    repeat_until: Optional[Clock] = None
    days: int = int(DaysOfWeek.ALL_DAYS)
    from_node: Optional[str] = None
    to_node: Optional[str] = None


class ScheduleSchema(BaseModel):
    forward: Optional[AutoScheduleSchema] = None
    return_schedule: Optional[AutoScheduleSchema] = None
    locked_offset: Optional[int] = None
    manual: List[ManualDepartureSchema] = []


class LineSchema(BaseModel):
    id: str
    name: str = ""
    forward_route: List[RouteEntrySchema] = []
    return_route: Optional[List[RouteEntrySchema]] = None
    sync_return: bool = False
    forward_stops: List[StopTimingSchema] = []
    return_stops: List[StopTimingSchema] = []
    schedule: ScheduleSchema = ScheduleSchema()
    default_wait: Optional[Clock] = None
    first_stop_wait: Optional[Clock] = None
    enabled: bool = True
    color: str = "#4ECDC4"
    visible: bool = True


class SettingsSchema(BaseModel):
    handedness: Handedness = Handedness.RIGHT
    platform_buffer_seconds: int = 60
    station_margin_seconds: int = 30
    default_wait_seconds: int = 30
    ignore_same_direction_platform_conflicts: bool = False


class ProjectSnapshot(BaseModel):
    version: int = SCHEMA_VERSION
    name: str = "Untitled"
    nodes: List[NodeSchema] = []
    segments: List[SegmentSchema] = []
    lines: List[LineSchema] = []
    settings: SettingsSchema = SettingsSchema()


# -- migrations --------------------------------------------------------------


def _v1_time(value: Any) -> int:
    """Version 1 stored departures as full "YYYY-mm-dd HH:MM:SS" timestamps."""
    if isinstance(value, str) and " " in value.strip():
        t = datetime.strptime(value.strip(), "%Y-%m-%d %H:%M:%S")
        return t.hour * 3600 + t.minute * 60 + t.second
    return parse_clock(value)


def _v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    for line in data.get("lines", []):
        frequency = line.pop("frequency", None)
        first = line.pop("first_departure", None)
        return_first = line.pop("return_first_departure", None)
        days = line.pop("days_of_week", int(DaysOfWeek.ALL_DAYS))
        if frequency is None or first is None:
            continue
        interval = parse_clock(frequency)
        schedule = line.setdefault("schedule", {})
        schedule["forward"] = {"interval": interval, "first_departure": _v1_time(first), "days": days}
        if return_first is not None:
            schedule["return_schedule"] = {"interval": interval, "first_departure": _v1_time(return_first), "days": days}
    data["version"] = 2
    return data


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: _v1_to_v2,
}


def migrate_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a raw payload to the current version; the input is not modified."""
    data = copy.deepcopy(data)
    version = int(data.get("version", 1))
    if version > SCHEMA_VERSION:
        raise SnapshotError(f"cannot downgrade from version {version} to {SCHEMA_VERSION}")
    while version < SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SnapshotError(f"no migration from version {version}")
        data = step(data)
        logger.info("snapshot migrated from version %d to %d", version, data["version"])
        version = int(data["version"])
    return data


# -- conversion --------------------------------------------------------------


def _route_out(route: Optional[Route]) -> Optional[List[Dict[str, Any]]]:
    if route is None:
        return None
    return [{"node_id": e.node_id, "segment_id": e.segment_id, "track_index": e.track_index} for e in route.entries]


def _stop_out(s: StopTiming) -> Dict[str, Any]:
    return {
        "travel_seconds": s.travel_seconds,
        "arrival": s.arrival,
        "departure": s.departure,
        "wait_seconds": s.wait_seconds,
        "platform": s.platform,
    }


def _auto_out(a: Optional[AutoSchedule]) -> Optional[Dict[str, Any]]:
    if a is None:
        return None
    return {
        "interval": a.interval,
        "first_departure": a.first_departure,
        "last_departure_before": a.last_departure_before,
        "days": int(a.days),
    }


def to_snapshot(project: Project) -> Dict[str, Any]:
    net = project.network
    payload = {
        "version": SCHEMA_VERSION,
        "name": project.name,
        "nodes": [
            {
                "id": n.id,
                "name": n.name,
                "kind": n.kind,
                "position": n.position,
                "platforms": [p.name for p in n.platforms],
                "is_passing_loop": n.is_passing_loop,
                "routing_rules": [vars(r) for r in n.routing_rules],
            }
            for n in net.nodes
        ],
        "segments": [
            {
                "id": s.id,
                "source": s.source,
                "target": s.target,
                "tracks": [t.direction for t in s.tracks],
                "track_count": s.track_count,
                "distance": s.distance,
                "default_platform_source": s.default_platform_source,
                "default_platform_target": s.default_platform_target,
            }
            for s in net.segments
        ],
        "lines": [
            {
                "id": line.id,
                "name": line.name,
                "forward_route": _route_out(line.forward_route),
                "return_route": _route_out(line.return_route),
                "sync_return": line.sync_return,
                "forward_stops": [_stop_out(s) for s in line.forward_stops],
                "return_stops": [_stop_out(s) for s in line.return_stops],
                "schedule": {
                    "forward": _auto_out(line.schedule.forward),
                    "return_schedule": _auto_out(line.schedule.return_schedule),
                    "locked_offset": line.schedule.locked_offset,
                    "manual": [
                        {
                            "time": m.time,
                            "direction": m.direction,
                            "repeat_interval": m.repeat_interval,
                            "repeat_until": m.repeat_until,
                            "days": int(m.days),
                            "from_node": m.from_node,
                            "to_node": m.to_node,
                        }
                        for m in line.schedule.manual
                    ],
                },
                "default_wait": line.default_wait,
                "first_stop_wait": line.first_stop_wait,
                "enabled": line.enabled,
                "color": line.color,
                "visible": line.visible,
            }
            for line in project.lines
        ],
        "settings": vars(project.settings),
    }
    # Round-trip through the schema so the output is plain JSON
    return ProjectSnapshot.model_validate(payload).model_dump(mode="json")


def _route_in(entries: Optional[List[RouteEntrySchema]]) -> Optional[Route]:
    if entries is None:
        return None
    return Route(entries=[RouteEntry(e.node_id, e.segment_id, e.track_index) for e in entries])


def _auto_in(a: Optional[AutoScheduleSchema]) -> Optional[AutoSchedule]:
    if a is None:
        return None
    return AutoSchedule(
        interval=a.interval,
        first_departure=a.first_departure,
        last_departure_before=a.last_departure_before,
        days=DaysOfWeek(a.days & int(DaysOfWeek.ALL_DAYS)),
    )


def line_from_schema(ls: LineSchema) -> Line:
    return Line(
        id=ls.id,
        name=ls.name,
        forward_route=_route_in(ls.forward_route) or Route(),
        return_route=_route_in(ls.return_route),
        sync_return=ls.sync_return,
        forward_stops=[StopTiming(**s.model_dump()) for s in ls.forward_stops],
        return_stops=[StopTiming(**s.model_dump()) for s in ls.return_stops],
        schedule=ScheduleConfig(
            forward=_auto_in(ls.schedule.forward),
            return_schedule=_auto_in(ls.schedule.return_schedule),
            locked_offset=ls.schedule.locked_offset,
            manual=[
                ManualDeparture(
                    time=m.time,
                    direction=m.direction,
                    repeat_interval=m.repeat_interval,
                    repeat_until=m.repeat_until,
                    days=DaysOfWeek(m.days & int(DaysOfWeek.ALL_DAYS)),
                    from_node=m.from_node,
                    to_node=m.to_node,
                )
                for m in ls.schedule.manual
            ],
        ),
        default_wait=ls.default_wait,
        first_stop_wait=ls.first_stop_wait,
        enabled=ls.enabled,
        color=ls.color,
        visible=ls.visible,
    )


def network_from_schema(snap: ProjectSnapshot) -> NetworkGraph:
    net = NetworkGraph()
    for n in snap.nodes:
        net.add_node(
            Node(
                id=n.id,
                name=n.name,
                kind=n.kind,
                position=n.position,
                platforms=[Platform(name=p) for p in n.platforms],
                is_passing_loop=n.is_passing_loop,
                routing_rules=[RoutingRule(r.from_segment, r.to_segment, r.allowed) for r in n.routing_rules],
            )
        )
    for s in snap.segments:
        seg = net.add_segment(
            s.source,
            s.target,
            track_count=s.track_count,
            distance=s.distance,
            tracks=[Track(direction=d) for d in s.tracks] if s.tracks else None,
            segment_id=s.id,
        )
        seg.default_platform_source = s.default_platform_source
        seg.default_platform_target = s.default_platform_target
    return net


def from_snapshot(data: Dict[str, Any]) -> Project:
    """Rebuild a project from a payload of any supported version."""
    try:
        snap = ProjectSnapshot.model_validate(migrate_snapshot(data))
    except ValidationError as e:
        raise SnapshotError(f"invalid project snapshot: {e.error_count()} error(s); first: {e.errors()[0]['msg']}") from e
    return Project(
        name=snap.name,
        network=network_from_schema(snap),
        settings=ProjectSettings(**snap.settings.model_dump()),
        lines=[line_from_schema(ls) for ls in snap.lines],
    )
