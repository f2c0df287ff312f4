"""Synthetic corridor network with random lines, written as a project snapshot."""
import argparse, random, json, os, sys
from typing import List

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from railplan.core.models import AutoSchedule, DaysOfWeek, Line, StopTiming  # type: ignore
from railplan.core.project import Project  # type: ignore
from railplan.core.routing import ResolveMode  # type: ignore
from railplan.store.snapshot import to_snapshot  # type: ignore


def build_network(project: Project, n_stations: int, branch_every: int) -> List[str]:
    net = project.network
    main: List[str] = []
    for i in range(n_stations):
        st = net.add_station(f"Station {i+1}", platforms=random.choice([1, 2, 2, 3]),
                             is_passing_loop=random.random() < 0.1, node_id=f"ST{i+1}")
        if main:
            net.add_segment(main[-1], st.id, track_count=random.choice([1, 1, 2, 3]),
                            distance=round(random.uniform(1.5, 8.0), 1))
        main.append(st.id)
    # short branches hanging off junctions along the corridor
    for i in range(branch_every, n_stations - 1, branch_every):
        j = net.add_junction(f"Junction {i}", node_id=f"J{i}")
        net.add_segment(main[i], j.id, distance=0.5)
        end = net.add_station(f"Branch {i}", platforms=1, node_id=f"BR{i}")
        net.add_segment(j.id, end.id, distance=round(random.uniform(2.0, 6.0), 1))
    return main


def build_lines(project: Project, main: List[str], n_lines: int, route_len: int) -> None:
    branches = [n.id for n in project.network.nodes if n.id.startswith("BR")]
    for i in range(n_lines):
        length = max(2, min(len(main), int(random.gauss(route_len, 2))))
        start = random.randint(0, len(main) - length)
        waypoints = main[start:start + length]
        if branches and random.random() < 0.3:
            waypoints = waypoints + [random.choice(branches)]
        line = project.add_line(Line(id=f"L{i+1}", name=f"Line {i+1}", sync_return=True))
        project.set_route(line.id, waypoints, ResolveMode.EXISTING_ONLY)
        legs = len(line.forward_route) - 1
        line.forward_stops = [StopTiming()] + [StopTiming(travel_seconds=random.randint(120, 420)) for _ in range(legs)]
        line.return_stops = [StopTiming()] + [StopTiming(travel_seconds=random.randint(120, 420)) for _ in range(legs)]
        first = random.randint(5 * 3600, 7 * 3600) // 60 * 60
        line.schedule.forward = AutoSchedule(
            interval=random.choice([900, 1200, 1800, 3600]),
            first_departure=first,
            last_departure_before=random.choice([21 * 3600, 23 * 3600, 1 * 3600]),
            days=random.choice([DaysOfWeek.ALL_DAYS, DaysOfWeek.WEEKDAYS]),
        )
        line.schedule.locked_offset = random.randint(10, 40) * 60


def build_project(stations: int, lines: int, route_len: int, branch_every: int = 6) -> Project:
    project = Project(name=f"Synthetic {stations}x{lines}")
    main = build_network(project, stations, branch_every)
    build_lines(project, main, lines, route_len)
    return project


def main():
    p = argparse.ArgumentParser()
    p.add_argument('-Stations', type=int, default=30)
    p.add_argument('-Lines', type=int, default=10)
    p.add_argument('-RouteLen', type=int, default=8)
    p.add_argument('-BranchEvery', type=int, default=6)
    p.add_argument('-Seed', type=int, default=42)
    p.add_argument('-Out', type=str, default='large_network.json')
    a = p.parse_args()

    random.seed(a.Seed)
    project = build_project(a.Stations, a.Lines, a.RouteLen, a.BranchEvery)
    with open(a.Out, 'w') as f:
        json.dump(to_snapshot(project), f, indent=2)
    print(f"Wrote {len(project.network.nodes)} nodes, {len(project.network.segments)} segments & {len(project.lines)} lines -> {a.Out}")


if __name__ == '__main__':
    main()
