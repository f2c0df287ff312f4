from datetime import datetime, timedelta

import pytest

from railplan.core.errors import InvalidSchedule, StaleRoute
from railplan.core.itinerary import build_itineraries, build_itinerary, default_platform
from railplan.core.models import (
    AutoSchedule,
    Direction,
    Handedness,
    Line,
    ManualDeparture,
    ProjectSettings,
    ScheduleConfig,
    StopTiming,
)
from railplan.core.network import NetworkGraph
from railplan.core.routing import resolve_route
from railplan.core.timeutil import BASE_DATE, DateRange, service_week
from railplan.main import load_project

EIGHT = datetime(2024, 1, 1, 8, 0)


def _abc(distances=(4.0, 6.0)):
    net = NetworkGraph()
    for name in ("A", "B", "C"):
        net.add_station(name, platforms=2, node_id=name)
    net.add_segment("A", "B", track_count=2, distance=distances[0], segment_id="s1")
    net.add_segment("B", "C", track_count=2, distance=distances[1], segment_id="s2")
    return net, resolve_route(net, ["A", "B", "C"])


def _times(it):
    return [(s.arrival - it.departure, s.departure - it.departure) for s in it.stops]


def _m(minutes, seconds=0):
    return timedelta(minutes=minutes, seconds=seconds)


def test_untimed_stop_inherits_by_distance():
    net, route = _abc()
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(), StopTiming(arrival=600)])
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert it.stops[1].arrival == datetime(2024, 1, 1, 8, 4)
    assert it.stops[1].departure == it.stops[1].arrival
    assert it.stops[1].timing_derived
    assert it.stops[2].arrival == datetime(2024, 1, 1, 8, 10)
    assert not it.stops[2].timing_derived
    assert it.timing_uncertain


def test_inherited_positions_use_cumulative_distance():
    net = NetworkGraph()
    for name in "ABCD":
        net.add_station(name, platforms=1, node_id=name)
    for a, b, km in (("A", "B", 2.0), ("B", "C", 3.0), ("C", "D", 0.0)):
        net.add_segment(a, b, distance=km)
    route = resolve_route(net, list("ABCD"))
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(), StopTiming(), StopTiming(arrival=600)])
    it = build_itinerary(net, line, Direction.FORWARD, datetime(2024, 1, 1, 0, 0))
    assert [s.arrival for s in it.stops[1:3]] == [datetime(2024, 1, 1, 0, 4), datetime(2024, 1, 1, 0, 10)]
    assert [s.timing_derived for s in it.stops] == [False, True, True, False]


def test_zero_distances_split_evenly():
    net, route = _abc(distances=(0.0, 0.0))
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(), StopTiming(arrival=600)])
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert it.stops[1].arrival == datetime(2024, 1, 1, 8, 5)


def test_explicit_waits_are_kept_inside_inherited_span():
    net, route = _abc(distances=(1.0, 1.0))
    line = Line(
        id="red",
        forward_route=route,
        forward_stops=[StopTiming(), StopTiming(wait_seconds=60), StopTiming(arrival=660)],
    )
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert _times(it)[1] == (_m(5), _m(6))


def test_junctions_and_passing_loops_never_wait():
    net = NetworkGraph()
    net.add_station("A", platforms=1, node_id="A")
    net.add_junction("J", node_id="J")
    net.add_station("L", platforms=1, is_passing_loop=True, node_id="L")
    net.add_station("B", platforms=1, node_id="B")
    for a, b in (("A", "J"), ("J", "L"), ("L", "B")):
        net.add_segment(a, b, distance=1.0)
    route = resolve_route(net, ["A", "J", "L", "B"])
    line = Line(
        id="g",
        forward_route=route,
        forward_stops=[StopTiming(), StopTiming(travel_seconds=120, wait_seconds=300), StopTiming(travel_seconds=120), StopTiming(travel_seconds=120)],
    )
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT, ProjectSettings(default_wait_seconds=30))
    assert _times(it) == [(_m(0), _m(0)), (_m(2), _m(2)), (_m(4), _m(4)), (_m(6), _m(6, 30))]
    assert it.stops[1].platform == 0


def test_wait_priority():
    net, route = _abc()
    stops = [StopTiming(), StopTiming(travel_seconds=240, wait_seconds=10), StopTiming(travel_seconds=300)]
    line = Line(id="red", forward_route=route, forward_stops=stops, default_wait=45)
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT, ProjectSettings(default_wait_seconds=30))
    assert _times(it)[1] == (_m(4), _m(4, 10))
    assert _times(it)[2] == (_m(9, 10), _m(9, 55))

    stops[1] = StopTiming(travel_seconds=240, departure=300)
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert _times(it)[1] == (_m(4), _m(5))

    line.default_wait = None
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT, ProjectSettings(default_wait_seconds=20))
    assert _times(it)[2][1] - _times(it)[2][0] == timedelta(seconds=20)


def test_first_stop_wait():
    net, route = _abc()
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(travel_seconds=240)], first_stop_wait=60)
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert it.stops[0].arrival == EIGHT
    assert it.stops[0].departure == EIGHT + _m(1)
    assert it.stops[1].arrival == EIGHT + _m(5)

    line.forward_stops[0] = StopTiming(wait_seconds=20)
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert it.stops[0].departure == EIGHT + timedelta(seconds=20)


def test_arrival_before_previous_departure_is_rejected():
    net, route = _abc()
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(arrival=600), StopTiming(arrival=300)])
    with pytest.raises(InvalidSchedule):
        build_itinerary(net, line, Direction.FORWARD, EIGHT)


def test_trailing_untimed_stops_are_extrapolated():
    net, route = _abc()
    line = Line(id="red", forward_route=route, forward_stops=[StopTiming(), StopTiming(travel_seconds=240)])
    it = build_itinerary(net, line, Direction.FORWARD, EIGHT, ProjectSettings(default_wait_seconds=30))
    # 60 s/km over the explicit leg, so 6 km takes 6 minutes
    assert _times(it)[2] == (_m(10, 30), _m(11))
    assert it.stops[2].timing_derived
    assert not it.stops[1].timing_derived


def test_default_platform_handedness_and_segment_default():
    net, _ = _abc()
    b = net.get_node("B")
    s1 = net.get_segment("s1")
    assert default_platform(b, s1, nominal=True, handedness=Handedness.RIGHT) == 1
    assert default_platform(b, s1, nominal=False, handedness=Handedness.RIGHT) == 2
    assert default_platform(b, s1, nominal=True, handedness=Handedness.LEFT) == 2
    net.set_default_platforms("s1", at_target=2)
    assert default_platform(b, s1, nominal=True, handedness=Handedness.RIGHT) == 2
    net.set_default_platforms("s1", at_target=7)
    assert default_platform(b, s1, nominal=True, handedness=Handedness.RIGHT) == 1


def test_platform_override_and_return_direction():
    net, route = _abc()
    line = Line(
        id="red",
        forward_route=route,
        sync_return=True,
        forward_stops=[StopTiming(), StopTiming(travel_seconds=240, platform=2), StopTiming(travel_seconds=360, platform=9)],
        return_stops=[StopTiming(), StopTiming(travel_seconds=360), StopTiming(travel_seconds=240)],
    )
    fwd = build_itinerary(net, line, Direction.FORWARD, EIGHT)
    assert [s.platform for s in fwd.stops] == [1, 2, 1]
    back = build_itinerary(net, line, Direction.RETURN, EIGHT)
    assert [s.node_id for s in back.stops] == ["C", "B", "A"]
    assert [s.track_index for s in back.stops] == [None, 1, 1]
    assert [s.platform for s in back.stops] == [2, 2, 2]


def test_partial_run_from_intermediate_node():
    net, route = _abc()
    line = Line(
        id="red",
        name="Red",
        forward_route=route,
        forward_stops=[StopTiming(), StopTiming(arrival=240), StopTiming(travel_seconds=360)],
        schedule=ScheduleConfig(manual=[ManualDeparture(time=8 * 3600, from_node="B")]),
    )
    (it,) = build_itineraries(line, DateRange.single(BASE_DATE), net)
    assert [s.node_id for s in it.stops] == ["B", "C"]
    assert it.stops[0].departure == EIGHT
    assert it.stops[1].arrival == EIGHT + _m(6)

    line.schedule.manual[0].from_node = "Z"
    with pytest.raises(InvalidSchedule):
        build_itineraries(line, DateRange.single(BASE_DATE), net)


def test_build_itineraries_labels_and_rollover():
    net, route = _abc()
    line = Line(
        id="red",
        name="Red",
        forward_route=route,
        forward_stops=[StopTiming(), StopTiming(travel_seconds=240), StopTiming(travel_seconds=360)],
        schedule=ScheduleConfig(
            forward=AutoSchedule(interval=1800, first_departure=23 * 3600 + 1800, last_departure_before=1800)
        ),
    )
    its = build_itineraries(line, DateRange(start=BASE_DATE, days=2), net)
    assert [it.label for it in its] == ["Red 0001", "Red 0002", "Red 0001", "Red 0002"]
    assert [it.rolled_over for it in its] == [False, True, False, True]
    assert its[1].departure == datetime(2024, 1, 2, 0, 0)
    assert its[1].service_date == BASE_DATE
    assert its[1].id == "red:forward:20240102T000000"


def test_duplicate_departures_get_distinct_ids():
    net, route = _abc()
    line = Line(
        id="red",
        forward_route=route,
        schedule=ScheduleConfig(
            forward=AutoSchedule(interval=3600, first_departure=8 * 3600, last_departure_before=9 * 3600),
            manual=[ManualDeparture(time=8 * 3600)],
        ),
    )
    its = build_itineraries(line, DateRange.single(BASE_DATE), net)
    assert [it.id for it in its] == ["red:forward:20240101T080000", "red:forward:20240101T080000#2"]


def test_disabled_line_and_missing_return_route():
    net, route = _abc()
    line = Line(
        id="red",
        forward_route=route,
        schedule=ScheduleConfig(
            forward=AutoSchedule(interval=3600, first_departure=8 * 3600, last_departure_before=10 * 3600),
            return_schedule=AutoSchedule(interval=3600, first_departure=8 * 3600, last_departure_before=10 * 3600),
        ),
    )
    # An unset return route falls back to the reversed forward route
    line.return_route = None
    line.sync_return = False
    its = build_itineraries(line, DateRange.single(BASE_DATE), net)
    assert {it.direction for it in its} == {Direction.FORWARD, Direction.RETURN}

    line.enabled = False
    assert build_itineraries(line, DateRange.single(BASE_DATE), net) == []


def test_stale_route_is_reported():
    net, route = _abc()
    line = Line(
        id="red",
        forward_route=route,
        schedule=ScheduleConfig(forward=AutoSchedule(interval=3600, first_departure=8 * 3600, last_departure_before=9 * 3600)),
    )
    net.remove_segment("s2")
    with pytest.raises(StaleRoute):
        build_itineraries(line, DateRange.single(BASE_DATE), net)


def test_sample_project_itineraries_are_consistent():
    project = load_project()
    items, failures = project.itineraries(service_week())
    assert failures == {}
    assert items
    for it in items:
        for prev, stop in zip(it.stops, it.stops[1:]):
            assert prev.arrival <= prev.departure <= stop.arrival
        for stop in it.stops:
            node = project.network.get_node(stop.node_id)
            if node.never_waits:
                assert stop.departure == stop.arrival
            assert 0 <= stop.platform <= node.platform_count
    red = [it for it in items if it.line_id == "red" and it.service_date == BASE_DATE]
    assert red[0].label == "Red 0001"
    assert any(it.rolled_over for it in red)
