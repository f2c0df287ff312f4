import argparse
import json
import logging
from pathlib import Path

from railplan.core.config import RuntimeConfig
from railplan.core.project import Project
from railplan.sim.scenario import conflict_json, run_scenario
from railplan.store.snapshot import from_snapshot

DATA_DIR = Path(__file__).parent / "data"


def load_project(path: Path = DATA_DIR / "sample_project.json") -> Project:
    return from_snapshot(json.loads(Path(path).read_text(encoding="utf-8")))


def main() -> None:
    cfg = RuntimeConfig()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    ap = argparse.ArgumentParser(description="Detect timetable conflicts in a saved project")
    ap.add_argument("project", nargs="?", default=str(DATA_DIR / "sample_project.json"))
    ap.add_argument("--show", type=int, default=5, help="number of conflicts to print")
    args = ap.parse_args()

    project = load_project(Path(args.project))
    result = run_scenario(project, max_conflicts=cfg.max_conflicts)
    report = result["report"]

    print("Summary:", json.dumps(result["summary"], indent=2))
    print(f"First {args.show} conflicts:")
    for c in conflict_json(report.real[: args.show], project.network.node_names()):
        print(f"  {c['start']}  {c['type']}: {c['message']}")


if __name__ == "__main__":
    main()
