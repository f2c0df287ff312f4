import pytest

from railplan.core.errors import InvalidNetwork, InvalidSchedule, NotFound
from railplan.core.models import AutoSchedule, ConflictKind, Direction, Line, ScheduleConfig, StopTiming
from railplan.core.network import NetworkGraph
from railplan.core.project import Project
from railplan.core.timeutil import BASE_DATE, DateRange, week_window_start
from railplan.main import load_project


def _hourly():
    return ScheduleConfig(forward=AutoSchedule(interval=3600, first_departure=8 * 3600, last_departure_before=10 * 3600))


def _project():
    project = Project(name="Test")
    net = project.network
    for name in ("A", "B", "C"):
        net.add_station(name, platforms=1, node_id=name)
    net.add_segment("A", "B", track_count=2, distance=3.0, segment_id="s1")
    net.add_segment("B", "C", track_count=1, distance=4.0, segment_id="s2")
    line = project.add_line(
        Line(
            id="",
            name="Green",
            forward_stops=[StopTiming(), StopTiming(travel_seconds=180), StopTiming(travel_seconds=240)],
            schedule=_hourly(),
        )
    )
    project.set_route(line.id, ["A", "B", "C"])
    return project, line


def test_lines_are_managed_by_id():
    project, line = _project()
    assert line.id == "l1"
    assert project.get_line("l1") is line
    with pytest.raises(InvalidNetwork):
        project.add_line(Line(id="l1"))
    with pytest.raises(InvalidSchedule):
        project.add_line(Line(id="bad", schedule=ScheduleConfig(forward=AutoSchedule(interval=0, first_departure=0))))

    replacement = Line(id="l1", name="Green fast", forward_route=line.forward_route, schedule=_hourly())
    assert project.update_line(replacement) is project.get_line("l1")
    with pytest.raises(InvalidSchedule):
        project.update_line(Line(id="l1", schedule=ScheduleConfig(forward=AutoSchedule(interval=-5, first_departure=0))))
    assert project.get_line("l1").name == "Green fast"
    with pytest.raises(NotFound):
        project.update_line(Line(id="nope"))

    project.remove_line("l1")
    with pytest.raises(NotFound):
        project.get_line("l1")


def test_set_route_for_return_direction_unsyncs():
    project, line = _project()
    line.sync_return = True
    route = project.set_route(line.id, ["C", "B", "A"], direction=Direction.RETURN)
    assert line.return_route is route
    assert not line.sync_return
    assert route.node_ids == ["C", "B", "A"]


def _run_time(project):
    items, _ = project.itineraries(DateRange.single(BASE_DATE))
    return items[0].stops[-1].arrival - items[0].departure


def test_remove_node_rewrites_routes_over_bypass():
    project, line = _project()
    before = _run_time(project)
    assert before.total_seconds() == 180 + 30 + 240
    removal = project.remove_node("B")
    (new_segment,) = removal.bypass.values()
    assert line.forward_route.node_ids == ["A", "C"]
    assert line.forward_route.segment_ids == [new_segment]
    assert line.forward_route.entries[1].track_index == 0
    assert len(line.forward_stops) == 2
    assert line.forward_stops[1].travel_seconds == 450

    items, failures = project.itineraries(DateRange.single(BASE_DATE))
    assert failures == {}
    assert len(items) == 2
    assert _run_time(project) == before


def test_doubling_a_shared_single_track_invalidates_the_reverse_route():
    project = Project()
    net = project.network
    net.add_station("A", platforms=1, node_id="A")
    net.add_station("B", platforms=1, node_id="B")
    net.add_segment("A", "B", track_count=1, distance=5.0, segment_id="s1")
    for line_id, start, waypoints in (("up", 8 * 3600, ["A", "B"]), ("down", 8 * 3600 + 300, ["B", "A"])):
        project.add_line(
            Line(
                id=line_id,
                forward_stops=[StopTiming(), StopTiming(travel_seconds=600)],
                schedule=ScheduleConfig(forward=AutoSchedule(interval=3600, first_departure=start, last_departure_before=start + 1)),
            )
        )
        project.set_route(line_id, waypoints)
    day = DateRange.single(BASE_DATE)
    assert [c.kind for c in project.detect(day).real] == [ConflictKind.HEAD_ON]

    net.set_track_count("s1", 2)
    report = project.detect(day)
    assert report.failures["down"].startswith("StaleRoute:")
    assert report.real == []

    project.set_route("down", ["B", "A"])
    report = project.detect(day)
    assert report.failures == {}
    assert report.real == []


def test_removing_a_hub_leaves_routes_stale():
    project = Project()
    net = project.network
    for name in ("A", "B", "C"):
        net.add_station(name, platforms=1, node_id=name)
    net.add_junction("J", node_id="J")
    for name in ("A", "B", "C"):
        net.add_segment("J", name, distance=1.0)
    line = project.add_line(Line(id="x", schedule=_hourly()))
    project.set_route(line.id, ["A", "J", "B"])

    project.remove_node("J")
    items, failures = project.itineraries(DateRange.single(BASE_DATE))
    assert items == []
    assert failures["x"].startswith("StaleRoute:")
    report = project.detect(DateRange.single(BASE_DATE))
    assert report.failures == failures
    assert report.conflicts == []


def test_changes_are_announced():
    project, line = _project()
    calls = []
    project.subscribe(lambda: calls.append(1))
    project.network.set_distance("s1", 5.0)
    project.touch()
    project.remove_line(line.id)
    assert len(calls) == 3


def test_sample_project_detects_week_conflicts():
    project = load_project()
    report = project.detect()
    assert report.failures == {}
    assert report.real
    assert all(c.start >= week_window_start() for c in report.conflicts)
    assert len(report.real) + len(report.crossings) == len(report.conflicts)


def test_empty_project_has_nothing_to_report():
    report = Project(network=NetworkGraph()).detect()
    assert report.itineraries == [] and report.conflicts == [] and report.failures == {}
