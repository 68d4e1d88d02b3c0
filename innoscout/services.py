"""Shared business logic for the innoscout API and MCP server."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import AsyncIterator, Callable

import httpx
from sqlalchemy.orm import Session

from innoscout.config import DEMO_MODEL, Settings, get_settings
from innoscout.errors import ConfigError, ScoutError
from innoscout.heuristic import HeuristicScorer
from innoscout.llm import EvaluatorClient, get_evaluator, is_demo, resolve_credential
from innoscout.prompts import compose_briefing
from innoscout.report import aggregate
from innoscout.research import ResearchAggregator
from innoscout.schemas import (
    DIMENSION_LABELS,
    Project,
    ProjectScoreResult,
    Report,
    ScoredProject,
    ScoreResponse,
    SettingsOut,
    SettingsUpdate,
)
from innoscout.scorer import score_with_research
from innoscout.search import build_search_chain
from innoscout.store import ScoreStore, SettingsStore

log = logging.getLogger(__name__)

EvaluatorFactory = Callable[[str, str, Settings], EvaluatorClient]

CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass
class ScoringPlan:
    """How a batch will be scored.  ``evaluator`` is None for the heuristic path."""
    model: str
    evaluator: EvaluatorClient | None = None
    template: str | None = None

    @property
    def demo(self) -> bool:
        return self.evaluator is None


def plan_scoring(
    model: str | None,
    credential: str | None,
    template: str | None,
    settings: Settings,
    evaluator_factory: EvaluatorFactory = get_evaluator,
) -> ScoringPlan:
    """Resolve the scoring mode for a batch before any project is touched.

    Raises ConfigError when a live model is requested but no vendor serves it.
    """
    if is_demo(model):
        return ScoringPlan(model=DEMO_MODEL)
    key = resolve_credential(model, credential, settings)
    if not key:
        log.info("No credential for model %s, falling back to heuristic scoring", model)
        return ScoringPlan(model=DEMO_MODEL)
    evaluator = evaluator_factory(model, key, settings)
    return ScoringPlan(model=model, evaluator=evaluator, template=template or None)


def build_aggregator(settings: Settings, client: httpx.AsyncClient) -> ResearchAggregator:
    return ResearchAggregator(
        build_search_chain(settings, client),
        limit=settings.search_result_limit,
        delay=settings.search_delay_seconds,
    )


async def _score_one(
    project: Project,
    plan: ScoringPlan,
    aggregator: ResearchAggregator | None,
    heuristic: HeuristicScorer,
) -> ProjectScoreResult:
    try:
        if plan.demo:
            score, research = heuristic.score(project), None
        else:
            score, research = await score_with_research(project, plan.template, plan.evaluator, aggregator)
    except ScoutError as exc:
        log.warning("Scoring failed for %s (%s): %s", project.id, type(exc).__name__, exc)
        return ProjectScoreResult(project_id=project.id, success=False, error=str(exc))
    except Exception as exc:
        log.exception("Unexpected error scoring %s", project.id)
        return ProjectScoreResult(project_id=project.id, success=False, error=f"Unexpected error: {exc}")
    return ProjectScoreResult(
        project_id=project.id, success=True, score=score, research=research, model=plan.model,
    )


def _persist(session: Session, project: Project, result: ProjectScoreResult) -> None:
    try:
        ScoreStore(session).put(project.id, result.score, result.research, project, model=result.model or "")
        session.commit()
    except Exception as exc:
        log.warning("Could not persist score for %s: %s", project.id, exc)
        session.rollback()


async def iter_scores(
    projects: list[Project],
    plan: ScoringPlan,
    *,
    settings: Settings | None = None,
    aggregator: ResearchAggregator | None = None,
    session: Session | None = None,
    heuristic: HeuristicScorer | None = None,
    cancel: asyncio.Event | None = None,
) -> AsyncIterator[ProjectScoreResult]:
    """Score *projects* one after another, yielding one result per project in input order.

    A failure never stops the batch.  When *cancel* is set, the remaining
    projects are yielded as ``cancelled`` failures.
    """
    settings = settings or get_settings()
    heuristic = heuristic or HeuristicScorer()
    async with AsyncExitStack() as stack:
        if not plan.demo and aggregator is None:
            client = await stack.enter_async_context(httpx.AsyncClient())
            aggregator = build_aggregator(settings, client)

        for idx, project in enumerate(projects):
            if cancel is not None and cancel.is_set():
                log.info("Batch cancelled with %d project(s) remaining", len(projects) - idx)
                for rest in projects[idx:]:
                    yield ProjectScoreResult(project_id=rest.id, success=False, error=CANCELLED)
                return
            result = await _score_one(project, plan, aggregator, heuristic)
            if result.success and session is not None:
                _persist(session, project, result)
            yield result


def summarize(results: list[ProjectScoreResult]) -> ScoreResponse:
    ok = sum(1 for r in results if r.success)
    return ScoreResponse(results=results, succeeded=ok, failed=len(results) - ok)


async def score_batch(
    projects: list[Project],
    *,
    model: str | None = None,
    credential: str | None = None,
    prompt: str | None = None,
    settings: Settings | None = None,
    session: Session | None = None,
    aggregator: ResearchAggregator | None = None,
    evaluator_factory: EvaluatorFactory = get_evaluator,
    heuristic: HeuristicScorer | None = None,
    cancel: asyncio.Event | None = None,
) -> ScoreResponse:
    """Score a batch and collect the results.  Raises ConfigError before any work."""
    settings = settings or get_settings()
    plan = plan_scoring(model, credential, prompt, settings, evaluator_factory)
    log.info("Scoring %d project(s) with %s", len(projects), plan.model)
    results = [
        r async for r in iter_scores(
            projects, plan, settings=settings, aggregator=aggregator,
            session=session, heuristic=heuristic, cancel=cancel,
        )
    ]
    response = summarize(results)
    log.info("Batch complete: %d succeeded, %d failed", response.succeeded, response.failed)
    return response


def scored_projects_from_store(session: Session, project_ids: list[str] | None = None) -> list[ScoredProject]:
    """Rebuild ScoredProjects from persisted scores that carry a project snapshot."""
    items = []
    for stored in ScoreStore(session).get(project_ids).values():
        if stored.project is None:
            continue
        items.append(ScoredProject(**stored.project.model_dump(), score=stored.score))
    return items


# ---------------------------------------------------------------------------
# Report and briefing
# ---------------------------------------------------------------------------


def local_briefing(report: Report, top: int = 5) -> str:
    """Plain-text briefing assembled from the report, used when no evaluator is available."""
    entries = report.entries[:top]
    dims = Counter(e.project.score.primary_dimension for e in report.entries)
    lines = [
        "EXECUTIVE SUMMARY",
        f"{report.total_count} projects analyzed ({report.total_financing_label} total financing), "
        f"{report.high_priority_count} rated high priority.",
        "",
        "TOP OPPORTUNITIES",
    ]
    for e in entries:
        score = e.project.score
        top_opp = score.top_opportunities[0] if score.top_opportunities else None
        lines.append(
            f"{e.rank}. {e.project.project_name} ({e.project.country or 'N/A'}): "
            f"{score.overall_score:.1f}, {DIMENSION_LABELS.get(score.primary_dimension, score.primary_dimension)}"
        )
        if top_opp is not None:
            lines.append(f"   {top_opp.opportunity} [{top_opp.approach}]")
    if dims:
        lines += ["", "THEMATIC PATTERNS"]
        lines += [f"- {DIMENSION_LABELS.get(d, d)}: {n} project(s)" for d, n in dims.most_common()]
    return "\n".join(lines)


async def generate_briefing(
    scored_projects: list[ScoredProject],
    *,
    template: str | None = None,
    model: str | None = None,
    credential: str | None = None,
    settings: Settings | None = None,
    evaluator_factory: EvaluatorFactory = get_evaluator,
) -> dict:
    """Executive briefing text, from the evaluator when one is usable."""
    settings = settings or get_settings()
    plan = plan_scoring(model, credential, template, settings, evaluator_factory)
    if plan.demo:
        return {"model": DEMO_MODEL, "briefing": local_briefing(aggregate(scored_projects))}
    prompt = compose_briefing(plan.template, scored_projects)
    text = await plan.evaluator.evaluate(prompt)
    return {"model": plan.model, "briefing": text.strip()}


async def check_evaluator(
    model: str,
    credential: str | None = None,
    settings: Settings | None = None,
    evaluator_factory: EvaluatorFactory = get_evaluator,
) -> dict:
    """Round-trip a trivial prompt to check the model and credential."""
    settings = settings or get_settings()
    if is_demo(model):
        return {"ok": True, "model": DEMO_MODEL, "detail": "Demo mode needs no evaluator"}
    key = resolve_credential(model, credential, settings)
    if not key:
        return {"ok": False, "model": model, "detail": "No API key provided or configured"}
    try:
        evaluator = evaluator_factory(model, key, settings)
        reply = await evaluator.evaluate("Reply with the single word OK.")
    except ScoutError as exc:
        return {"ok": False, "model": model, "detail": str(exc)}
    return {"ok": True, "model": model, "detail": reply.strip()[:200]}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def get_app_settings(session: Session) -> SettingsOut:
    return SettingsOut(**SettingsStore(session).all())


def update_app_settings(session: Session, updates: SettingsUpdate) -> SettingsOut:
    """Apply non-None fields (caller must commit)."""
    store = SettingsStore(session)
    for key, value in updates.model_dump(exclude_none=True).items():
        if key == "active_model" and not value.strip():
            raise ConfigError("active_model must not be empty")
        store.set(key, value)
    return SettingsOut(**store.all())
