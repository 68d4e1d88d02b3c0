from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from innoscout import services
from innoscout.config import Settings, get_settings
from innoscout.db import get_session, init_db, session_generator
from innoscout.errors import ConfigError, ProjectSourceError, ScoutError
from innoscout.report import aggregate
from innoscout.schemas import (
    BriefingRequest,
    EvaluatorTestRequest,
    ProjectPage,
    ProjectQuery,
    Report,
    ReportRequest,
    ScoreRequest,
    ScoreResponse,
    SettingsOut,
    SettingsUpdate,
    StoredScore,
)
from innoscout.store import ScoreStore, SettingsStore
from innoscout.worldbank import fetch_projects

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="innoscout",
    version="0.1.0",
    description=(
        "Research-augmented innovation scoring for World Bank projects. "
        "Search the project pipeline, score projects on emerging technology, "
        "strategic foresight and collective intelligence, and build ranked reports."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "Search the World Bank project API."},
        {"name": "Scoring", "description": "Research-augmented LLM scoring, or heuristic demo scoring."},
        {"name": "Reports", "description": "Ranked reports and executive briefings."},
        {"name": "Settings", "description": "Active model and editable prompt templates."},
        {"name": "Admin", "description": "Administrative operations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def app_settings() -> Settings:
    return get_settings()


def _request_defaults(session: Session, model: str | None, prompt: str | None) -> tuple[str, str]:
    """Fill a missing model or prompt from the stored settings."""
    stored = SettingsStore(session)
    return (
        model if model is not None else stored.get("active_model"),
        prompt if prompt is not None else stored.get("scoring_prompt"),
    )


def _plan_or_400(body: ScoreRequest, session: Session, settings: Settings) -> services.ScoringPlan:
    model, prompt = _request_defaults(session, body.model, body.prompt)
    try:
        return services.plan_scoring(model, body.credential, prompt, settings)
    except ConfigError as exc:
        raise HTTPException(400, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Projects
# ---------------------------------------------------------------------------


@app.get("/api/projects", response_model=ProjectPage,
         tags=["Projects"], summary="Search World Bank projects")
async def list_projects(
    region: str = Query("All", description="Region name, or All"),
    statuses: str = Query("Pipeline", description="Comma-separated: Pipeline, Active, Closed"),
    keyword: str = Query("", description="Free-text search term"),
    year_from: int | None = Query(None, description="Approval year from (ignored for Pipeline only)"),
    year_to: int | None = Query(None, description="Approval year to (ignored for Pipeline only)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    settings: Settings = Depends(app_settings),
):
    query = ProjectQuery(
        region=region,
        statuses=[s.strip() for s in statuses.split(",") if s.strip()],
        keyword=keyword,
        year_from=year_from,
        year_to=year_to,
        page=page,
        page_size=page_size,
    )
    try:
        return await fetch_projects(query, settings)
    except ProjectSourceError as exc:
        raise HTTPException(502, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Scoring (stream before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/score", response_model=ScoreResponse,
          tags=["Scoring"], summary="Score a batch of projects (one result per project)")
async def score_projects(
    body: ScoreRequest,
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    plan = _plan_or_400(body, session, settings)
    results = [
        r async for r in services.iter_scores(body.projects, plan, settings=settings, session=session)
    ]
    return services.summarize(results)


def _score_stream(projects, plan: services.ScoringPlan, settings: Settings):
    """SSE progress stream for a scoring batch."""
    async def stream():
        session = get_session()
        try:
            total = len(projects)
            results = []
            idx = 0
            yield f"data: {json.dumps({'type': 'start', 'total': total, 'model': plan.model})}\n\n"
            async for result in services.iter_scores(projects, plan, settings=settings, session=session):
                project = projects[idx]
                idx += 1
                results.append(result)
                event = {
                    "type": "progress",
                    "current": idx,
                    "total": total,
                    "name": project.project_name,
                    "result": result.model_dump(mode="json"),
                }
                yield f"data: {json.dumps(event)}\n\n"
            summary = services.summarize(results)
            stats = {"succeeded": summary.succeeded, "failed": summary.failed}
            yield f"data: {json.dumps({'type': 'complete', 'stats': stats})}\n\n"
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return StreamingResponse(stream(), media_type="text/event-stream")


@app.post("/api/score/stream", tags=["Scoring"], summary="Score a batch of projects (SSE progress stream)")
async def score_projects_stream(
    body: ScoreRequest,
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    plan = _plan_or_400(body, session, settings)
    return _score_stream(body.projects, plan, settings)


@app.get("/api/scores", response_model=dict[str, StoredScore],
         tags=["Scoring"], summary="Stored scores, optionally for specific project ids")
async def list_scores(
    ids: str | None = Query(None, description="Comma-separated project ids"),
    session: Session = Depends(db_session),
):
    project_ids = [i.strip() for i in ids.split(",") if i.strip()] if ids else None
    return ScoreStore(session).get(project_ids)


@app.get("/api/scores/{project_id}", response_model=StoredScore,
         tags=["Scoring"], summary="Stored score for one project")
async def get_score(project_id: str, session: Session = Depends(db_session)):
    stored = ScoreStore(session).get([project_id]).get(project_id)
    if stored is None:
        raise HTTPException(404, "Score not found")
    return stored


# ---------------------------------------------------------------------------
# Routes: Reports
# ---------------------------------------------------------------------------


@app.post("/api/report", response_model=Report,
          tags=["Reports"], summary="Ranked report over scored projects")
async def build_report(body: ReportRequest):
    return aggregate(body.scored_projects, body.generated_at, body.page, body.per_page)


@app.post("/api/report/briefing", tags=["Reports"], summary="Executive briefing over scored projects")
async def build_briefing(
    body: BriefingRequest,
    session: Session = Depends(db_session),
    settings: Settings = Depends(app_settings),
):
    stored = SettingsStore(session)
    model = body.model if body.model is not None else stored.get("active_model")
    template = body.prompt if body.prompt is not None else stored.get("briefing_prompt")
    try:
        return await services.generate_briefing(
            body.scored_projects, template=template, model=model,
            credential=body.credential, settings=settings,
        )
    except ConfigError as exc:
        raise HTTPException(400, str(exc)) from exc
    except ScoutError as exc:
        raise HTTPException(502, f"Briefing failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Routes: Settings
# ---------------------------------------------------------------------------


@app.get("/api/settings", response_model=SettingsOut, tags=["Settings"], summary="Current app settings")
async def read_settings(session: Session = Depends(db_session)):
    return services.get_app_settings(session)


@app.put("/api/settings", response_model=SettingsOut,
         tags=["Settings"], summary="Update app settings (partial update, null fields ignored)")
async def write_settings(body: SettingsUpdate, session: Session = Depends(db_session)):
    try:
        result = services.update_app_settings(session, body)
    except ConfigError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return result


@app.post("/api/evaluators/test", tags=["Settings"], summary="Check a model and credential")
async def evaluator_check(body: EvaluatorTestRequest, settings: Settings = Depends(app_settings)):
    return await services.check_evaluator(body.model, body.credential, settings)


# ---------------------------------------------------------------------------
# Routes: Reset
# ---------------------------------------------------------------------------


@app.delete("/api/reset", tags=["Admin"], summary="Delete stored scores and restore default settings")
async def reset_db(session: Session = Depends(db_session)):
    deleted = ScoreStore(session).clear()
    SettingsStore(session).reset()
    session.commit()
    return {"ok": True, "scores_deleted": deleted}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("innoscout.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
