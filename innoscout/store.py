"""Persistence of scores and editable settings on top of a SQLAlchemy session."""
from __future__ import annotations

import json
import logging
from datetime import datetime, UTC

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from innoscout.db import DEFAULT_SETTINGS
from innoscout.models import AppSetting, ProjectScore
from innoscout.schemas import Project, ResearchBundle, Score, SearchResult, StoredScore
from innoscout.utils import json_parse

log = logging.getLogger(__name__)


def _research_json(research: ResearchBundle | None) -> str:
    if not research:
        return "{}"
    return json.dumps({facet: [r.model_dump() for r in results] for facet, results in research.items()})


def _research_from_json(raw: str | None) -> ResearchBundle:
    data = json_parse(raw, {})
    if not isinstance(data, dict):
        return {}
    return {
        facet: [SearchResult.model_validate(r) for r in results if isinstance(r, dict)]
        for facet, results in data.items()
        if isinstance(results, list)
    }


class ScoreStore:
    """Latest score per project id.  Callers commit."""

    def __init__(self, session: Session):
        self.session = session

    def put(
        self,
        project_id: str,
        score: Score,
        research: ResearchBundle | None = None,
        project: Project | None = None,
        model: str = "",
    ) -> ProjectScore:
        row = self.session.get(ProjectScore, project_id)
        if row is None:
            row = ProjectScore(project_id=project_id)
            self.session.add(row)
        row.score_json = score.model_dump_json()
        row.research_json = _research_json(research)
        if project is not None:
            row.project_json = project.model_dump_json()
        row.model = model
        row.updated_at = datetime.now(UTC)
        return row

    def _to_stored(self, row: ProjectScore) -> StoredScore | None:
        try:
            score = Score.model_validate_json(row.score_json)
        except ValidationError as exc:
            log.warning("Discarding unreadable stored score for %s: %s", row.project_id, exc)
            return None
        project_data = json_parse(row.project_json, {})
        return StoredScore(
            project_id=row.project_id,
            project=Project.model_validate(project_data) if project_data else None,
            score=score,
            research=_research_from_json(row.research_json) or None,
            model=row.model or "",
            updated_at=row.updated_at,
        )

    def get(self, project_ids: list[str] | None = None) -> dict[str, StoredScore]:
        """Stored scores keyed by project id; all of them when *project_ids* is None."""
        stmt = select(ProjectScore)
        if project_ids is not None:
            if not project_ids:
                return {}
            stmt = stmt.where(ProjectScore.project_id.in_(project_ids))
        rows = self.session.execute(stmt.order_by(ProjectScore.updated_at.desc())).scalars().all()
        stored = {}
        for row in rows:
            item = self._to_stored(row)
            if item is not None:
                stored[row.project_id] = item
        return stored

    def clear(self) -> int:
        return self.session.execute(delete(ProjectScore)).rowcount or 0


class SettingsStore:
    """Key/value app settings (active model, prompts).  Callers commit."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> str:
        row = self.session.get(AppSetting, key)
        if row is None:
            return DEFAULT_SETTINGS.get(key, "")
        return row.value

    def all(self) -> dict[str, str]:
        values = dict(DEFAULT_SETTINGS)
        for row in self.session.execute(select(AppSetting)).scalars():
            values[row.key] = row.value
        return values

    def set(self, key: str, value: str) -> None:
        row = self.session.get(AppSetting, key)
        if row is None:
            self.session.add(AppSetting(key=key, value=value))
        else:
            row.value = value

    def reset(self) -> None:
        for key, value in DEFAULT_SETTINGS.items():
            self.set(key, value)
