from typing import Any, Dict, List, Optional

from railplan.core.models import Conflict, Itinerary
from railplan.core.project import Project
from railplan.core.timeutil import DateRange
from railplan.sim.simulator import conflicts_per_day, summarize_report


def run_scenario(project: Project, date_range: Optional[DateRange] = None, max_conflicts: Optional[int] = None) -> Dict[str, Any]:
    kwargs = {"max_conflicts": max_conflicts} if max_conflicts is not None else {}
    report = project.detect(date_range, **kwargs)
    summary = summarize_report(report)
    summary["per_day"] = conflicts_per_day(report)
    return {
        "report": report,
        "summary": summary,
    }


def conflict_json(conflicts: List[Conflict], names: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    return [
        {
            "kind": c.kind.value,
            "type": c.type_name,
            "itineraries": list(c.itineraries),
            "labels": list(c.labels),
            "start": c.start.isoformat(),
            "end": c.end.isoformat(),
            "segment_id": c.segment_id,
            "station_id": c.station_id,
            "platform": c.platform,
            "days": [d.display() for d in c.day_anchors],
            "timing_uncertain": c.timing_uncertain,
            "message": c.format_message(names),
        }
        for c in conflicts
    ]


def itinerary_json(itineraries: List[Itinerary]) -> List[Dict[str, Any]]:
    return [
        {
            "id": it.id,
            "line_id": it.line_id,
            "label": it.label,
            "direction": it.direction.value,
            "service_date": it.service_date.isoformat(),
            "day": it.day_anchor.display(),
            "rolled_over": it.rolled_over,
            "stops": [
                {
                    "node_id": s.node_id,
                    "arrival": s.arrival.isoformat(),
                    "departure": s.departure.isoformat(),
                    "platform": s.platform,
                    "segment_id": s.segment_id,
                    "track_index": s.track_index,
                    "timing_derived": s.timing_derived,
                }
                for s in it.stops
            ],
        }
        for it in itineraries
    ]


def timeline_json(itineraries: List[Itinerary]) -> List[Dict[str, Any]]:
    # One entry per segment leg, for time-distance style plotting
    out: List[Dict[str, Any]] = []
    for it in itineraries:
        for prev, stop in zip(it.stops, it.stops[1:]):
            out.append(
                {
                    "train": it.label,
                    "segment": stop.segment_id,
                    "track": stop.track_index,
                    "from": prev.node_id,
                    "to": stop.node_id,
                    "start": prev.departure.isoformat(),
                    "end": stop.arrival.isoformat(),
                }
            )
    return out
