"""Ranked innovation-opportunity report over a set of scored projects."""
from __future__ import annotations

import math
from datetime import datetime, UTC

from innoscout.schemas import HIGH_PRIORITY_THRESHOLD, Report, ReportEntry, ScoredProject
from innoscout.utils import format_amount, parse_amount


def rank(scored_projects: list[ScoredProject]) -> list[ScoredProject]:
    """Scored projects only, highest overall score first; ties keep input order."""
    scored = [p for p in scored_projects if p.score is not None]
    return sorted(scored, key=lambda p: p.score.overall_score, reverse=True)


def aggregate(
    scored_projects: list[ScoredProject],
    generated_at: datetime | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> Report:
    ranked = rank(scored_projects)
    total = len(ranked)
    high_priority = sum(1 for p in ranked if p.score.overall_score >= HIGH_PRIORITY_THRESHOLD)
    financing = sum(parse_amount(p.totalamt) for p in ranked)

    size = per_page or max(total, 1)
    total_pages = max(1, math.ceil(total / size))
    start = (page - 1) * size
    entries = [
        ReportEntry(rank=start + i + 1, project=p, amount_label=format_amount(p.totalamt))
        for i, p in enumerate(ranked[start:start + size])
    ]

    return Report(
        generated_at=generated_at or datetime.now(UTC),
        total_count=total,
        high_priority_count=high_priority,
        total_financing=financing,
        total_financing_label=format_amount(financing),
        page=page,
        per_page=size,
        total_pages=total_pages,
        entries=entries,
    )
