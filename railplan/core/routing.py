from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from railplan.core.errors import NoPathFound, RouteError, StaleRoute
from railplan.core.models import Handedness, Route, RouteEntry, Segment, TrackDirection
from railplan.core.network import NetworkGraph
from railplan.core.pathfinding import allows_travel, find_path as default_find_path

logger = logging.getLogger(__name__)

FindPath = Callable[[NetworkGraph, str, str], List[str]]


class ResolveMode(str, Enum):
    CREATE_MISSING = "create_missing"
    EXISTING_ONLY = "existing_only"


def pick_track(segment: Segment, forward: bool, handedness: Handedness = Handedness.RIGHT) -> int:
    """Index of the track a train uses on `segment`.

    `forward` is True when travelling source -> target. Tracks running in the travel
    direction are preferred over bidirectional ones; right-hand traffic takes the
    lowest-indexed candidate and left-hand traffic the highest.
    """
    if all(t.direction == TrackDirection.BIDIRECTIONAL for t in segment.tracks):
        return 0
    wanted = TrackDirection.FORWARD if forward else TrackDirection.REVERSE
    candidates = [i for i, t in enumerate(segment.tracks) if t.direction == wanted]
    if not candidates:
        candidates = [i for i, t in enumerate(segment.tracks) if t.direction == TrackDirection.BIDIRECTIONAL]
    if not candidates:
        a, b = (segment.source, segment.target) if forward else (segment.target, segment.source)
        raise NoPathFound(a, b, reason=f"no track on segment {segment.id!r} runs from {a!r} to {b!r}")
    return candidates[0] if handedness == Handedness.RIGHT else candidates[-1]


def _check_links(network: NetworkGraph, route: Route) -> List[Segment]:
    """Re-resolve every id of `route` against the current graph; returns the arriving segments."""
    if route.is_empty:
        raise StaleRoute("route needs at least two stops")
    first = route.entries[0]
    if not network.has_node(first.node_id):
        raise StaleRoute(f"node {first.node_id!r} no longer exists", position=0)
    segments: List[Segment] = []
    for i in range(1, len(route.entries)):
        prev, entry = route.entries[i - 1], route.entries[i]
        if not network.has_node(entry.node_id):
            raise StaleRoute(f"node {entry.node_id!r} no longer exists", position=i)
        if entry.segment_id is None or not network.has_segment(entry.segment_id):
            raise StaleRoute(f"segment {entry.segment_id!r} no longer exists", position=i)
        seg = network.get_segment(entry.segment_id)
        if not seg.connects(prev.node_id, entry.node_id):
            raise StaleRoute(
                f"segment {seg.id!r} no longer connects {prev.node_id!r} and {entry.node_id!r}", position=i
            )
        segments.append(seg)
    return segments


def validate_route(network: NetworkGraph, route: Route) -> None:
    """Raise StaleRoute unless every node, segment and track of `route` still exists and connects.

    A stored track must also still run in the direction the route travels it.
    """
    segments = _check_links(network, route)
    for i, (prev, entry, seg) in enumerate(zip(route.entries, route.entries[1:], segments), start=1):
        if entry.track_index is None or not 0 <= entry.track_index < seg.track_count:
            raise StaleRoute(f"track {entry.track_index!r} does not exist on segment {seg.id!r}", position=i)
        direction = seg.tracks[entry.track_index].direction
        wanted = TrackDirection.FORWARD if prev.node_id == seg.source else TrackDirection.REVERSE
        if direction not in (wanted, TrackDirection.BIDIRECTIONAL):
            raise StaleRoute(
                f"track {entry.track_index} on segment {seg.id!r} no longer runs from {prev.node_id!r} to {entry.node_id!r}",
                position=i,
            )


def assign_tracks(network: NetworkGraph, route: Route, handedness: Handedness = Handedness.RIGHT) -> Route:
    """Recompute the track of every leg; raises StaleRoute when the graph no longer matches."""
    segments = _check_links(network, route)
    entries = [RouteEntry(node_id=route.entries[0].node_id)]
    for i, (prev, entry, seg) in enumerate(zip(route.entries, route.entries[1:], segments), start=1):
        try:
            track = pick_track(seg, forward=prev.node_id == seg.source, handedness=handedness)
        except NoPathFound as e:
            raise StaleRoute(str(e), position=i) from e
        entries.append(RouteEntry(node_id=entry.node_id, segment_id=seg.id, track_index=track))
    return Route(entries=entries)


def _walk(network: NetworkGraph, start: str, segment_ids: Sequence[str], handedness: Handedness) -> Route:
    entries = [RouteEntry(node_id=start)]
    current = start
    for i, sid in enumerate(segment_ids, start=1):
        if not network.has_segment(sid):
            raise StaleRoute(f"segment {sid!r} does not exist", position=i)
        seg = network.get_segment(sid)
        nxt = seg.other_end(current)
        if nxt is None:
            raise StaleRoute(f"segment {sid!r} does not touch {current!r}", position=i)
        track = pick_track(seg, forward=current == seg.source, handedness=handedness)
        entries.append(RouteEntry(node_id=nxt, segment_id=sid, track_index=track))
        current = nxt
    return Route(entries=entries)


def route_from_segments(
    network: NetworkGraph, segment_ids: Sequence[str], handedness: Handedness = Handedness.RIGHT
) -> Route:
    """Build a route from an ordered list of segment ids.

    The start node is the end of the first segment that the second segment does not share.
    """
    if not segment_ids:
        raise RouteError("a route needs at least one segment")
    for i, sid in enumerate(segment_ids, start=1):
        if not network.has_segment(sid):
            raise StaleRoute(f"segment {sid!r} does not exist", position=i)
    first = network.get_segment(segment_ids[0])
    start = first.source
    if len(segment_ids) > 1:
        second = network.get_segment(segment_ids[1])
        shared = {first.source, first.target} & {second.source, second.target}
        if not shared:
            raise StaleRoute(f"segments {first.id!r} and {second.id!r} do not connect", position=2)
        if first.source in shared and first.target not in shared:
            start = first.target
    return _walk(network, start, segment_ids, handedness)


def reverse_route(network: NetworkGraph, route: Route, handedness: Handedness = Handedness.RIGHT) -> Route:
    """The same path travelled backwards, with tracks re-picked for the opposite direction."""
    entries = route.entries
    if len(entries) < 2:
        return Route(entries=list(entries))
    rev = [RouteEntry(node_id=entries[-1].node_id)]
    for j in range(len(entries) - 2, -1, -1):
        rev.append(RouteEntry(node_id=entries[j].node_id, segment_id=entries[j + 1].segment_id))
    return assign_tracks(network, Route(entries=rev), handedness)


def _direct_segment(network: NetworkGraph, a: str, b: str, usable_only: bool = True) -> Optional[Segment]:
    """A segment joining `a` and `b`, preferring one that can be travelled from `a`.

    With `usable_only` a one-way segment pointing the other way does not count.
    """
    between = network.segments_between(a, b)
    for seg in between:
        if allows_travel(seg, a):
            return seg
    if usable_only or not between:
        return None
    return between[0]


def resolve_route(
    network: NetworkGraph,
    waypoints: Sequence[str],
    mode: ResolveMode = ResolveMode.EXISTING_ONLY,
    handedness: Handedness = Handedness.RIGHT,
    find_path: FindPath = default_find_path,
    default_distance: float = 1.0,
) -> Route:
    """Turn an ordered list of waypoints (node ids or station names) into a Route.

    CREATE_MISSING adds stations for unknown waypoints and single-track segments between
    unconnected consecutive waypoints. Everything is planned first, so a failure leaves the
    graph untouched. EXISTING_ONLY uses a direct segment usable in the direction of travel and otherwise
    asks `find_path`, raising NoPathFound when the waypoints are not connected.
    """
    mode = ResolveMode(mode)
    if len(waypoints) < 2:
        raise RouteError("a route needs at least two waypoints")

    node_ids: List[str] = []
    new_nodes: List[str] = []
    for w in waypoints:
        if network.has_node(w):
            node_ids.append(w)
            continue
        station = network.find_station(w)
        if station is not None:
            node_ids.append(station.id)
        elif mode == ResolveMode.CREATE_MISSING:
            if w not in new_nodes:
                new_nodes.append(w)
            node_ids.append(w)
        else:
            network.get_node(w)  # raises NotFound
    for i, (a, b) in enumerate(zip(node_ids, node_ids[1:]), start=1):
        if a == b:
            raise RouteError(f"waypoint {i} repeats {a!r}")

    if mode == ResolveMode.CREATE_MISSING:
        planned: List[Tuple[str, str]] = []
        for a, b in zip(node_ids, node_ids[1:]):
            known = a not in new_nodes and b not in new_nodes
            existing = _direct_segment(network, a, b, usable_only=False) if known else None
            if existing is not None:
                pick_track(existing, forward=a == existing.source, handedness=handedness)
                continue
            if (a, b) not in planned and (b, a) not in planned:
                planned.append((a, b))
        for name in new_nodes:
            network.add_station(name=name, node_id=name)
        for a, b in planned:
            network.add_segment(a, b, track_count=1, distance=default_distance)
        if new_nodes or planned:
            logger.info("route resolution created %d station(s) and %d segment(s)", len(new_nodes), len(planned))

    segment_ids: List[str] = []
    for a, b in zip(node_ids, node_ids[1:]):
        seg = _direct_segment(network, a, b, usable_only=mode == ResolveMode.EXISTING_ONLY)
        if seg is not None:
            segment_ids.append(seg.id)
        elif mode == ResolveMode.CREATE_MISSING:  # pragma: no cover - planned above
            raise NoPathFound(a, b)
        else:
            segment_ids.extend(find_path(network, a, b))
    return _walk(network, node_ids[0], segment_ids, handedness)
