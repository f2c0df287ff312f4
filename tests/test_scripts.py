import random

from railplan.core.timeutil import BASE_DATE, DateRange
from railplan.store.snapshot import from_snapshot, to_snapshot
from scripts.generate_large_network import build_project


def test_synthetic_project_is_valid_and_round_trips():
    random.seed(7)
    project = build_project(stations=12, lines=4, route_len=5)
    assert len(project.lines) == 4
    assert project.network.has_node("J6")

    report = project.detect(DateRange.single(BASE_DATE))
    assert report.failures == {}
    assert report.itineraries

    snap = to_snapshot(project)
    again = from_snapshot(snap)
    assert to_snapshot(again) == snap
