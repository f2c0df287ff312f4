from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import count
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from railplan.core.errors import InvalidNetwork, NotFound
from railplan.core.models import Node, NodeKind, Platform, Segment, Track, TrackDirection

logger = logging.getLogger(__name__)


def track_directions(n: int) -> List[TrackDirection]:
    """Direction convention for `n` parallel tracks.

    1 track is bidirectional; otherwise the first half runs forward, the second half
    reverse, and an odd count leaves one bidirectional middle track.
    """
    if n < 1:
        raise InvalidNetwork(f"track count must be at least 1, got {n}")
    if n == 1:
        return [TrackDirection.BIDIRECTIONAL]
    half = n // 2
    middle = [TrackDirection.BIDIRECTIONAL] if n % 2 else []
    return [TrackDirection.FORWARD] * half + middle + [TrackDirection.REVERSE] * half


def make_tracks(n: int) -> List[Track]:
    return [Track(direction=d) for d in track_directions(n)]


@dataclass
class NodeRemoval:
    node: Node
    removed_segments: List[str] = field(default_factory=list)
    # (old_segment_a, old_segment_b) -> new bypass segment id
    bypass: Dict[Tuple[str, str], str] = field(default_factory=dict)


class NetworkGraph:
    """Stations, junctions and multi-track segments keyed by stable string ids."""

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._segments: Dict[str, Segment] = {}
        # node id -> ids of incident segments, insertion ordered
        self._incident: Dict[str, List[str]] = {}
        self._node_ids = count(1)
        self._segment_ids = count(1)
        self._listeners: List[Callable[[], None]] = []

    # -- change notification ---------------------------------------------

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _changed(self) -> None:
        for cb in list(self._listeners):
            cb()

    # -- nodes -------------------------------------------------------------

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def segments(self) -> List[Segment]:
        return list(self._segments.values())

    def _next_id(self, prefix: str, counter: Iterable[int], taken: Dict[str, object]) -> str:
        for i in counter:
            ident = f"{prefix}{i}"
            if ident not in taken:
                return ident
        raise RuntimeError("id counter exhausted")  # pragma: no cover

    def add_node(self, node: Node) -> Node:
        if not node.id:
            node.id = self._next_id("n", self._node_ids, self._nodes)
        if node.id in self._nodes:
            raise InvalidNetwork(f"node {node.id!r} already exists")
        if node.is_junction and node.platforms:
            raise InvalidNetwork(f"junction {node.id!r} cannot carry platforms")
        self._nodes[node.id] = node
        self._incident[node.id] = []
        self._changed()
        return node

    def add_station(
        self,
        name: str,
        platforms: int = 0,
        is_passing_loop: bool = False,
        node_id: Optional[str] = None,
        position: Optional[Tuple[float, float]] = None,
    ) -> Node:
        node = Node(
            id=node_id or "",
            name=name,
            kind=NodeKind.STATION,
            position=position,
            platforms=[Platform(name=str(i + 1)) for i in range(platforms)],
            is_passing_loop=is_passing_loop,
        )
        return self.add_node(node)

    def add_junction(self, name: str = "", node_id: Optional[str] = None, position: Optional[Tuple[float, float]] = None) -> Node:
        node = self.add_node(Node(id=node_id or "", name=name, kind=NodeKind.JUNCTION, position=position))
        if not node.name:
            node.name = node.id
        return node

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFound("node", node_id) from None

    def find_station(self, name: str) -> Optional[Node]:
        for node in self._nodes.values():
            if node.name == name and not node.is_junction:
                return node
        return None

    def set_platform_count(self, node_id: str, n: int) -> None:
        node = self.get_node(node_id)
        if node.is_junction:
            raise InvalidNetwork(f"junction {node_id!r} cannot carry platforms")
        if n < 0:
            raise InvalidNetwork(f"platform count cannot be negative, got {n}")
        current = node.platforms[:n]
        current.extend(Platform(name=str(i + 1)) for i in range(len(current), n))
        node.platforms = current
        self._changed()

    def remove_node(self, node_id: str) -> NodeRemoval:
        """Delete a node and its segments.

        A node with exactly two connections is bypassed: its neighbours are joined by a new
        segment whose distance is the sum of the two removed ones and whose track count is
        the larger of the two. Routes through nodes with more connections become stale.
        """
        node = self.get_node(node_id)
        incident = list(self._incident[node_id])
        removal = NodeRemoval(node=node, removed_segments=incident)

        bypass: Optional[Segment] = None
        if len(incident) == 2:
            seg_a, seg_b = self._segments[incident[0]], self._segments[incident[1]]
            end_a, end_b = seg_a.other_end(node_id), seg_b.other_end(node_id)
            # Two parallel segments to the same neighbour leave nothing to join
            if end_a is not None and end_b is not None and end_a != end_b:
                bypass = Segment(
                    id=self._next_id("s", self._segment_ids, self._segments),
                    source=end_a,
                    target=end_b,
                    tracks=make_tracks(max(seg_a.track_count, seg_b.track_count)),
                    distance=seg_a.distance + seg_b.distance,
                    default_platform_source=seg_a.default_platform_source if seg_a.target == node_id else seg_a.default_platform_target,
                    default_platform_target=seg_b.default_platform_target if seg_b.source == node_id else seg_b.default_platform_source,
                )

        for sid in incident:
            self._detach(sid)
        del self._nodes[node_id]
        del self._incident[node_id]

        if bypass is not None:
            self._attach(bypass)
            removal.bypass[(incident[0], incident[1])] = bypass.id
            logger.info("removed %s; bypass segment %s joins %s and %s", node_id, bypass.id, bypass.source, bypass.target)
        else:
            logger.info("removed %s with %d segment(s)", node_id, len(incident))

        # Routing rules at remaining junctions must not name deleted segments
        gone = set(incident)
        for other in self._nodes.values():
            if other.routing_rules:
                other.routing_rules = [
                    r for r in other.routing_rules if r.from_segment not in gone and r.to_segment not in gone
                ]
        self._changed()
        return removal

    # -- segments ----------------------------------------------------------

    def add_segment(
        self,
        source: str,
        target: str,
        track_count: int = 1,
        distance: float = 0.0,
        tracks: Optional[List[Track]] = None,
        segment_id: Optional[str] = None,
    ) -> Segment:
        self.get_node(source)
        self.get_node(target)
        if source == target:
            raise InvalidNetwork(f"segment cannot connect {source!r} to itself")
        if distance < 0:
            raise InvalidNetwork(f"segment distance cannot be negative, got {distance}")
        if segment_id is not None and segment_id in self._segments:
            raise InvalidNetwork(f"segment {segment_id!r} already exists")
        if tracks is not None and not tracks:
            raise InvalidNetwork("a segment needs at least one track")
        segment = Segment(
            id=segment_id or self._next_id("s", self._segment_ids, self._segments),
            source=source,
            target=target,
            tracks=list(tracks) if tracks is not None else make_tracks(track_count),
            distance=float(distance),
        )
        self._attach(segment)
        self._changed()
        return segment

    def _attach(self, segment: Segment) -> None:
        self._segments[segment.id] = segment
        self._incident[segment.source].append(segment.id)
        self._incident[segment.target].append(segment.id)

    def _detach(self, segment_id: str) -> Segment:
        segment = self._segments.pop(segment_id)
        for end in (segment.source, segment.target):
            if end in self._incident and segment_id in self._incident[end]:
                self._incident[end].remove(segment_id)
        return segment

    def has_segment(self, segment_id: str) -> bool:
        return segment_id in self._segments

    def get_segment(self, segment_id: str) -> Segment:
        try:
            return self._segments[segment_id]
        except KeyError:
            raise NotFound("segment", segment_id) from None

    def remove_segment(self, segment_id: str) -> Segment:
        self.get_segment(segment_id)
        segment = self._detach(segment_id)
        self._changed()
        return segment

    def set_track_count(self, segment_id: str, n: int) -> Segment:
        segment = self.get_segment(segment_id)
        segment.tracks = make_tracks(n)
        self._changed()
        return segment

    def set_tracks(self, segment_id: str, tracks: List[Track]) -> Segment:
        segment = self.get_segment(segment_id)
        if not tracks:
            raise InvalidNetwork("a segment needs at least one track")
        segment.tracks = list(tracks)
        self._changed()
        return segment

    def set_distance(self, segment_id: str, distance: float) -> Segment:
        segment = self.get_segment(segment_id)
        if distance < 0:
            raise InvalidNetwork(f"segment distance cannot be negative, got {distance}")
        segment.distance = float(distance)
        self._changed()
        return segment

    def set_default_platforms(self, segment_id: str, at_source: Optional[int] = None, at_target: Optional[int] = None) -> Segment:
        segment = self.get_segment(segment_id)
        segment.default_platform_source = at_source
        segment.default_platform_target = at_target
        self._changed()
        return segment

    # -- queries -----------------------------------------------------------

    def incident_segments(self, node_id: str) -> List[Segment]:
        self.get_node(node_id)
        return [self._segments[sid] for sid in self._incident[node_id]]

    def neighbors(self, node_id: str) -> List[Tuple[Segment, str]]:
        """(segment, other node) for every segment touching `node_id`."""
        out: List[Tuple[Segment, str]] = []
        for segment in self.incident_segments(node_id):
            other = segment.other_end(node_id)
            if other is not None:
                out.append((segment, other))
        return out

    def segments_between(self, a: str, b: str) -> List[Segment]:
        self.get_node(a)
        self.get_node(b)
        return [s for s in self.incident_segments(a) if s.connects(a, b)]

    def other_end(self, segment_id: str, node_id: str) -> str:
        segment = self.get_segment(segment_id)
        other = segment.other_end(node_id)
        if other is None:
            raise NotFound("segment end", f"{segment_id}@{node_id}")
        return other

    def node_names(self) -> Dict[str, str]:
        return {n.id: n.name for n in self._nodes.values()}
