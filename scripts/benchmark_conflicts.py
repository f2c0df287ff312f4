"""Benchmark conflict detection for a growing number of lines.

Usage:
    python scripts/benchmark_conflicts.py -Min 5 -Max 25 -Step 5 -Stations 30
    python -m scripts.benchmark_conflicts -Min 5 -Max 25 -Step 5 -Json

Notes:
    - Only itineraries sharing a segment or station are compared, so cost grows with
      traffic per resource rather than with the square of all itineraries.
"""

from __future__ import annotations
import argparse, random, statistics, json, time, os, sys

# Ensure project root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from railplan.core.conflicts import detect_conflicts  # type: ignore
from railplan.core.timeutil import service_week, week_window_start  # type: ignore
from scripts.generate_large_network import build_project  # type: ignore


def run_once(n_lines: int, stations: int, route_len: int) -> dict:
    project = build_project(stations, n_lines, route_len)
    t0 = time.perf_counter()
    itineraries, failures = project.itineraries(service_week())
    t1 = time.perf_counter()
    conflicts = detect_conflicts(itineraries, project.network, project.settings, week_window_start())
    t2 = time.perf_counter()
    return {
        "n_lines": n_lines,
        "itineraries": len(itineraries),
        "failed_lines": len(failures),
        "build_s": t1 - t0,
        "detect_s": t2 - t1,
        "conflicts": sum(1 for c in conflicts if c.is_conflict),
        "crossings": sum(1 for c in conflicts if not c.is_conflict),
    }


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('-Min', type=int, default=5)
    ap.add_argument('-Max', type=int, default=25)
    ap.add_argument('-Step', type=int, default=5)
    ap.add_argument('-Stations', type=int, default=30)
    ap.add_argument('-RouteLen', type=int, default=8)
    ap.add_argument('-Repeats', type=int, default=3)
    ap.add_argument('-Json', action='store_true')
    args = ap.parse_args()

    random.seed(42)
    rows = []
    for n in range(args.Min, args.Max + 1, args.Step):
        for _ in range(args.Repeats):
            row = run_once(n, args.Stations, args.RouteLen)
            rows.append(row)
            if args.Json:
                print(json.dumps(row))
            else:
                print(f"Lines={row['n_lines']:<3} itineraries={row['itineraries']:<5} build={row['build_s']*1000:8.2f} ms "
                      f"detect={row['detect_s']*1000:8.2f} ms conflicts={row['conflicts']:<5} crossings={row['crossings']}")
    if not args.Json:
        from collections import defaultdict
        by_n = defaultdict(list)
        for r in rows:
            by_n[r['n_lines']].append(r['detect_s'])
        print('\nSummary (mean detection ms per line count)')
        for n in sorted(by_n):
            ms = statistics.fmean(by_n[n]) * 1000
            print(f"  {n:>3}: {ms:8.2f} ms")


if __name__ == '__main__':
    main()
