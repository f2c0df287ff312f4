from typing import Any, Dict

from railplan.core.conflicts import group_by_day
from railplan.core.models import ConflictKind
from railplan.core.project import ConflictReport


def summarize_report(report: ConflictReport) -> Dict[str, Any]:
    # basic KPIs of one detection pass
    by_kind = {k.value: 0 for k in ConflictKind}
    for c in report.conflicts:
        by_kind[c.kind.value] += 1
    real = [c for c in report.conflicts if c.is_conflict]
    return {
        "total_itineraries": len(report.itineraries),
        "lines": len({it.line_id for it in report.itineraries}),
        "conflicts": len(real),
        "crossings": len(report.conflicts) - len(real),
        "by_kind": by_kind,
        "timing_uncertain": sum(1 for c in real if c.timing_uncertain),
        "failed_lines": sorted(report.failures),
    }


def conflicts_per_day(report: ConflictReport) -> Dict[str, int]:
    """Real conflicts per originating service day, e.g. {"Mon": 3}."""
    real = [c for c in report.conflicts if c.is_conflict]
    return {day.display(): len(items) for day, items in sorted(group_by_day(real).items())}
