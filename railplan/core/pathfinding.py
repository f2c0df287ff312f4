from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import networkx as nx

from railplan.core.errors import NoPathFound
from railplan.core.models import Segment, TrackDirection
from railplan.core.network import NetworkGraph

logger = logging.getLogger(__name__)

# Small per-hop cost so equal-distance alternatives prefer fewer segments
HOP_PENALTY = 1e-6

State = Tuple[str, str]  # (segment id used to arrive, node arrived at)


def allows_travel(segment: Segment, from_node: str) -> bool:
    forward = from_node == segment.source
    wanted = TrackDirection.FORWARD if forward else TrackDirection.REVERSE
    return any(t.direction in (wanted, TrackDirection.BIDIRECTIONAL) for t in segment.tracks)


def build_movement_graph(network: NetworkGraph) -> nx.DiGraph:
    """Edge-expanded graph: one vertex per (segment, arrival node) movement.

    Transitions respect track directions and junction routing rules.
    """
    g = nx.DiGraph()
    for seg in network.segments:
        for frm in (seg.source, seg.target):
            to = seg.other_end(frm)
            if to is None or not allows_travel(seg, frm):
                continue
            state: State = (seg.id, to)
            g.add_node(state)
            node = network.get_node(to)
            for nxt, beyond in network.neighbors(to):
                if nxt.id == seg.id or not allows_travel(nxt, to):
                    continue
                if node.is_junction and not node.is_routing_allowed(seg.id, nxt.id):
                    continue
                g.add_edge(state, (nxt.id, beyond), weight=nxt.distance + HOP_PENALTY)
    return g


def find_path(network: NetworkGraph, source: str, target: str, graph: Optional[nx.DiGraph] = None) -> List[str]:
    """Shortest (by distance) ordered list of segment ids leading from `source` to `target`.

    Raises NotFound for unknown nodes and NoPathFound when the nodes are not connected.
    """
    network.get_node(source)
    network.get_node(target)
    if source == target:
        return []
    g = graph.copy() if graph is not None else build_movement_graph(network)
    start, goal = ("__start__", source), ("__goal__", target)
    g.add_node(start)
    g.add_node(goal)
    for seg, beyond in network.neighbors(source):
        if allows_travel(seg, source):
            g.add_edge(start, (seg.id, beyond), weight=seg.distance + HOP_PENALTY)
    for seg, _ in network.neighbors(target):
        if (seg.id, target) in g:
            g.add_edge((seg.id, target), goal, weight=0.0)
    try:
        states = nx.shortest_path(g, start, goal, weight="weight")
    except nx.NetworkXNoPath:
        raise NoPathFound(source, target) from None
    path = [seg_id for seg_id, _ in states[1:-1]]
    logger.debug("path %s -> %s via %s", source, target, path)
    return path
