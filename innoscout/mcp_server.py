from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from innoscout import services
from innoscout.config import get_settings
from innoscout.db import init_db, session_scope
from innoscout.errors import ProjectSourceError, ScoutError
from innoscout.report import aggregate
from innoscout.schemas import APPROACHES, DIMENSION_LABELS, DIMENSION_WEIGHTS, Project, ProjectQuery
from innoscout.store import ScoreStore, SettingsStore
from innoscout.worldbank import fetch_projects

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def innoscout_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "innoscout",
    instructions=(
        "innoscout scores World Bank projects for innovation engagement potential. "
        "Use search_projects() to find projects, score_projects() to score them, "
        "get_scores() to read stored scores and generate_report() for a ranked report."
    ),
    lifespan=innoscout_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("innoscout://overview")
def innoscout_overview() -> str:
    """Overview of the scoring model and workflow."""
    return json.dumps({
        "system": "innoscout: research-augmented innovation scoring for World Bank projects",
        "dimensions": DIMENSION_LABELS,
        "weights": DIMENSION_WEIGHTS,
        "approaches": list(APPROACHES),
        "workflow": [
            "1. search_projects(region, statuses, keyword) to list candidate projects.",
            "2. score_projects(projects) to research and score them (demo model scores locally).",
            "3. get_scores(project_ids) to read stored scores.",
            "4. generate_report() for the ranked report over stored scores.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def search_projects(
    region: str = "All", statuses: str = "Pipeline", keyword: str = "",
    year_from: int | None = None, year_to: int | None = None,
    page: int = 1, page_size: int = 50,
) -> dict:
    """Search World Bank projects.

    Args:
        region: Region name, or "All".
        statuses: Comma-separated from: Pipeline, Active, Closed.
        keyword: Free-text search term.
        year_from: Approval year range start (ignored for Pipeline only).
        year_to: Approval year range end (ignored for Pipeline only).
        page: 1-based page number.
        page_size: Projects per page (max 500).
    """
    query = ProjectQuery(
        region=region,
        statuses=[s.strip() for s in statuses.split(",") if s.strip()],
        keyword=keyword, year_from=year_from, year_to=year_to,
        page=max(1, page), page_size=max(1, min(page_size, 500)),
    )
    try:
        result = await fetch_projects(query, get_settings())
    except ProjectSourceError as exc:
        return {"error": str(exc)}
    return result.model_dump(mode="json")


@mcp.tool()
async def score_projects(
    projects: list[dict], model: str | None = None, prompt: str | None = None,
) -> dict:
    """Research and score projects; each result is stored.

    Args:
        projects: Project records as returned by search_projects (id, project_name,
                  countryname, regionname, status, totalamt, sector).
        model: Evaluator model, e.g. "gpt-4o" or "claude-sonnet-4-5". Defaults to the
               stored active model; "demo" scores locally without research.
        prompt: Scoring template; defaults to the stored scoring prompt.
    """
    items = [Project.model_validate(p) for p in projects]
    with session_scope() as session:
        stored = SettingsStore(session)
        try:
            response = await services.score_batch(
                items,
                model=model if model is not None else stored.get("active_model"),
                prompt=prompt if prompt is not None else stored.get("scoring_prompt"),
                session=session,
            )
        except ScoutError as exc:
            return {"error": str(exc)}
        return response.model_dump(mode="json", exclude={"results": {"__all__": {"research"}}})


@mcp.tool()
def get_scores(project_ids: list[str] | None = None) -> dict:
    """Stored scores keyed by project id; all stored scores when no ids are given."""
    with session_scope() as session:
        stored = ScoreStore(session).get(project_ids)
        return {pid: s.model_dump(mode="json", exclude={"research"}) for pid, s in stored.items()}


@mcp.tool()
def generate_report(project_ids: list[str] | None = None, page: int = 1, per_page: int | None = None) -> dict:
    """Ranked report over stored scores (all of them unless project_ids is given)."""
    with session_scope() as session:
        scored = services.scored_projects_from_store(session, project_ids)
    report = aggregate(scored, page=max(1, page), per_page=per_page if per_page and per_page > 0 else None)
    return report.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the innoscout MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
