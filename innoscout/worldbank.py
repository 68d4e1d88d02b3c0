"""Client for the World Bank project search API."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from innoscout.config import Settings
from innoscout.errors import ProjectSourceError
from innoscout.schemas import Project, ProjectPage, ProjectQuery

log = logging.getLogger(__name__)

FIELDS = (
    "id,project_name,countryname,countryshortname,regionname,status,projectstatusdisplay,"
    "totalamt,sector1,mjsector1Name,theme1,mjtheme_namecode,boardapprovaldate,approvalfy,url"
)


def build_params(query: ProjectQuery) -> dict[str, str]:
    """Query-string parameters for *query*.

    The approval-year range only applies when the status filter is something
    other than Pipeline alone, since pipeline projects have no approval date.
    """
    params: dict[str, str] = {"format": "json", "fl": FIELDS}
    terms: list[str] = []
    if query.region and query.region != "All":
        terms.append(f'regionname:"{query.region}"')
    statuses = [s for s in query.statuses if s]
    if statuses:
        terms.append("(" + " OR ".join(f'projectstatusdisplay:"{s}"' for s in statuses) + ")")
    if query.keyword.strip():
        terms.append(query.keyword.strip())
    if terms:
        params["qterm"] = " AND ".join(terms)

    pipeline_only = statuses == ["Pipeline"]
    if not pipeline_only and query.year_from and query.year_to:
        params["appr_yr"] = f"{query.year_from}:{query.year_to}"

    params["rows"] = str(query.page_size)
    params["os"] = str((query.page - 1) * query.page_size)
    params["srt"] = "boardapprovaldate desc"
    return params


def parse_projects(data: Any) -> ProjectPage:
    if not isinstance(data, dict):
        raise ProjectSourceError("Project search returned a non-object payload")
    raw = data.get("projects") or {}
    records = raw.values() if isinstance(raw, dict) else raw
    projects = []
    for record in records:
        if not isinstance(record, dict) or not record.get("id"):
            continue
        projects.append(Project.from_worldbank(record))
    try:
        total = int(str(data.get("total") or 0).replace(",", ""))
    except ValueError:
        total = len(projects)
    return ProjectPage(total=total, projects=projects)


async def fetch_projects(
    query: ProjectQuery,
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> ProjectPage:
    """Fetch one page of projects.  Raises ProjectSourceError on any upstream failure."""
    params = build_params(query)
    log.info("Fetching World Bank projects: %s", params.get("qterm", "(all)"))
    own_client = client is None
    client = client or httpx.AsyncClient()
    try:
        resp = await client.get(
            settings.worldbank_api_url,
            params=params,
            headers={"User-Agent": settings.user_agent},
            timeout=settings.worldbank_timeout_seconds,
        )
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as exc:
        raise ProjectSourceError(f"Project search failed: HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise ProjectSourceError(f"Project search unreachable: {exc}") from exc
    except ValueError as exc:
        raise ProjectSourceError(f"Project search returned invalid JSON: {exc}") from exc
    finally:
        if own_client:
            await client.aclose()
    page = parse_projects(data)
    log.info("Fetched %d of %d projects", len(page.projects), page.total)
    return page
