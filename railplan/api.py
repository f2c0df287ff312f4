import csv
import io
import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response, StreamingResponse
from pydantic import BaseModel

from railplan.core.config import RuntimeConfig
from railplan.core.errors import NotFound, RailPlanError
from railplan.core.project import Project
from railplan.core.routing import ResolveMode, resolve_route
from railplan.core.timeutil import DateRange
from railplan.main import load_project
from railplan.sim.audit import write_audit
from railplan.sim.scenario import conflict_json, itinerary_json, run_scenario, timeline_json
from railplan.store.db import (
    delete_project,
    delete_run,
    get_project,
    get_run,
    init_db,
    list_projects,
    list_runs_by_project,
    save_project,
    save_run,
    update_project,
)
from railplan.store.snapshot import from_snapshot, to_snapshot

logger = logging.getLogger(__name__)

config = RuntimeConfig()
app = FastAPI(title="Railplan Timetable Conflict API")
init_db()


@app.exception_handler(RailPlanError)
async def railplan_error(request: Request, exc: RailPlanError) -> JSONResponse:
    status = 404 if isinstance(exc, NotFound) else 422
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


@app.get("/")
async def root() -> RedirectResponse:
    # Redirect base URL to interactive docs to avoid 404 confusion
    return RedirectResponse(url="/docs")


@app.get("/favicon.ico")
async def favicon() -> Response:
    # Return empty 204 for favicon to avoid noisy 404s in logs
    return Response(status_code=204)


class ResolveIn(BaseModel):
    project: Dict[str, Any]
    waypoints: List[str]
    mode: ResolveMode = ResolveMode.EXISTING_ONLY


class RangeIn(BaseModel):
    project: Dict[str, Any]
    # Without a start date the service week (plus its Sunday lead-in) is used
    start: Optional[date] = None
    days: int = 7
    line_id: Optional[str] = None


class ConflictsIn(RangeIn):
    include_crossings: bool = True


class ProjectIn(BaseModel):
    name: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class ProjectCreate(BaseModel):
    name: Optional[str] = None
    payload: Dict[str, Any]


def _range(body: RangeIn) -> Optional[DateRange]:
    return DateRange(start=body.start, days=body.days) if body.start is not None else None


def _detect(project: Project, date_range: Optional[DateRange], include_crossings: bool = True) -> Dict[str, Any]:
    result = run_scenario(project, date_range, max_conflicts=config.max_conflicts)
    report = result["report"]
    conflicts = report.conflicts if include_crossings else report.real
    return {
        "summary": result["summary"],
        "conflicts": conflict_json(conflicts, project.network.node_names()),
        "failures": report.failures,
    }


@app.post("/routes/resolve")
async def resolve_route_api(body: ResolveIn) -> Dict[str, Any]:
    """Resolve waypoints against the posted project.

    In `create_missing` mode the returned project includes the stations and segments that
    were added.
    """
    project = from_snapshot(body.project)
    route = resolve_route(project.network, body.waypoints, body.mode, project.settings.handedness)
    return {
        "route": [{"node_id": e.node_id, "segment_id": e.segment_id, "track_index": e.track_index} for e in route.entries],
        "segments": route.segment_ids,
        "project": to_snapshot(project),
    }


@app.post("/itineraries")
async def itineraries_api(body: RangeIn) -> Dict[str, Any]:
    project = from_snapshot(body.project)
    if body.line_id is not None:
        project.get_line(body.line_id)
    items, failures = project.itineraries(_range(body), config.max_departures_per_day)
    if body.line_id is not None:
        items = [it for it in items if it.line_id == body.line_id]
    return {
        "count": len(items),
        "itineraries": itinerary_json(items),
        "timeline": timeline_json(items),
        "failures": failures,
    }


@app.post("/conflicts")
async def conflicts_api(body: ConflictsIn) -> Dict[str, Any]:
    project = from_snapshot(body.project)
    resp = _detect(project, _range(body), body.include_crossings)
    write_audit({"type": "conflicts", "project": project.name, "summary": resp["summary"]})
    return resp


@app.get("/demo")
async def demo(include_crossings: bool = False) -> Dict[str, Any]:
    project = load_project()
    return {"project": project.name, **_detect(project, None, include_crossings)}


# Persistence APIs
@app.post("/projects")
async def create_project(body: ProjectCreate) -> Dict[str, Any]:
    project = from_snapshot(body.payload)
    pid = save_project(body.name or project.name, to_snapshot(project))
    return {"id": pid}


@app.get("/projects")
async def projects(offset: int = 0, limit: int = 50) -> Dict[str, Any]:
    return {"items": list_projects(offset=offset, limit=limit)}


def _load(pid: int) -> Dict[str, Any]:
    p = get_project(pid)
    if not p:
        raise NotFound("project", pid)
    p["payload"] = json.loads(p["payload"])
    return p


@app.get("/projects/{pid}")
async def get_project_api(pid: int) -> Dict[str, Any]:
    return {"project": _load(pid)}


@app.put("/projects/{pid}")
async def update_project_api(pid: int, body: ProjectIn) -> Dict[str, Any]:
    _load(pid)
    payload = to_snapshot(from_snapshot(body.payload)) if body.payload is not None else None
    ok = update_project(pid, name=body.name, payload=payload)
    return {"updated": bool(ok)}


@app.delete("/projects/{pid}")
async def delete_project_api(pid: int) -> Dict[str, Any]:
    ok = delete_project(pid)
    return {"deleted": bool(ok)}


@app.post("/projects/{pid}/detect")
async def detect_saved_project(pid: int, name: Optional[str] = None, include_crossings: bool = False) -> Dict[str, Any]:
    p = _load(pid)
    project = from_snapshot(p["payload"])
    resp = _detect(project, None, include_crossings)
    rid = save_run(project_id=pid, summary=resp["summary"], conflicts=resp["conflicts"], name=name)
    write_audit({"type": "detect", "project_id": pid, "run_id": rid, "summary": resp["summary"]})
    return {"run_id": rid, "summary": resp["summary"]}


@app.get("/projects/{pid}/runs")
async def list_runs_for_project(pid: int, offset: int = 0, limit: int = 50) -> Dict[str, Any]:
    runs = list_runs_by_project(pid, offset=offset, limit=limit)
    for r in runs:
        r["summary"] = json.loads(r["summary"])
    return {"items": runs}


def _run(rid: int) -> Dict[str, Any]:
    r = get_run(rid)
    if not r:
        raise NotFound("run", rid)
    r["summary"] = json.loads(r["summary"])
    r["conflicts"] = json.loads(r["conflicts"])
    return r


@app.get("/runs/{rid}")
async def get_run_details(rid: int) -> Dict[str, Any]:
    return {"run": _run(rid)}


@app.delete("/runs/{rid}")
async def delete_run_api(rid: int) -> Dict[str, Any]:
    ok = delete_run(rid)
    return {"deleted": bool(ok)}


@app.get("/runs/{rid}/conflicts.csv")
async def download_conflicts_csv(rid: int) -> StreamingResponse:
    r = _run(rid)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=["start", "end", "type", "trains", "where", "timing_uncertain", "message"])
    writer.writeheader()
    for c in r["conflicts"]:
        writer.writerow(
            {
                "start": c["start"],
                "end": c["end"],
                "type": c["type"],
                "trains": " / ".join(c["labels"]),
                "where": c.get("segment_id") or c.get("station_id") or "",
                "timing_uncertain": int(bool(c.get("timing_uncertain"))),
                "message": c["message"],
            }
        )
    buf.seek(0)
    return StreamingResponse(buf, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename=run_{rid}_conflicts.csv"})


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
