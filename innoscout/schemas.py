"""Pydantic models: projects, search results, scores, and API request/response shapes."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Score constants
# ---------------------------------------------------------------------------

DIMENSIONS = ("emerging_tech", "foresight", "collective_intelligence")

# Weighting law for overall_score (relevance is reported but not weighted)
DIMENSION_WEIGHTS: dict[str, float] = {
    "emerging_tech": 0.35,
    "foresight": 0.35,
    "collective_intelligence": 0.30,
}

DIMENSION_LABELS: dict[str, str] = {
    "emerging_tech": "Emerging Technology",
    "foresight": "Strategic Foresight",
    "collective_intelligence": "Collective Intelligence",
}

_DIMENSION_ALIASES: dict[str, str] = {
    "collective_intel": "collective_intelligence",
    "collective": "collective_intelligence",
    "tech": "emerging_tech",
    "technology": "emerging_tech",
}

APPROACHES = (
    "Proof of Value",
    "Foresight Workshop",
    "Innovation Challenge",
    "Hackathon",
    "Scoping Study",
)
_APPROACH_LOOKUP = {a.lower(): a for a in APPROACHES}

HIGH_PRIORITY_THRESHOLD = 7.0


def compute_overall_score(tech: float, foresight: float, collective: float) -> float:
    """Weighted combination of the three dimension scores, clamped to [0, 10]."""
    raw = (
        tech * DIMENSION_WEIGHTS["emerging_tech"]
        + foresight * DIMENSION_WEIGHTS["foresight"]
        + collective * DIMENSION_WEIGHTS["collective_intelligence"]
    )
    return round(max(0.0, min(10.0, raw)), 1)


def pick_primary_dimension(tech: float, foresight: float, collective: float) -> str:
    """Argmax of the three dimensions; ties go to emerging_tech, then foresight."""
    if tech >= foresight and tech >= collective:
        return "emerging_tech"
    if foresight >= collective:
        return "foresight"
    return "collective_intelligence"


def normalize_dimension(value: Any) -> str:
    tag = str(value or "").strip().lower().replace(" ", "_")
    tag = _DIMENSION_ALIASES.get(tag, tag)
    return tag if tag in DIMENSIONS else "emerging_tech"


def normalize_approach(value: Any) -> str:
    return _APPROACH_LOOKUP.get(str(value or "").strip().lower(), "Scoping Study")


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------


class _Dimension(BaseModel):
    model_config = ConfigDict(extra="allow")

    score: float
    evidence: str = ""

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        return max(1.0, min(10.0, float(v)))

    @field_validator("evidence", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _text(v)


class EmergingTech(_Dimension):
    technologies: list[str] = []
    applications: list[str] = []

    @field_validator("technologies", "applications", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> list[str]:
        return _str_list(v)


class Foresight(_Dimension):
    disruptions: list[str] = []
    horizon: str = ""

    @field_validator("disruptions", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> list[str]:
        return _str_list(v)

    @field_validator("horizon", mode="before")
    @classmethod
    def coerce_horizon(cls, v: Any) -> str:
        return _text(v)


class CollectiveIntelligence(_Dimension):
    ecosystem_activity: str = ""
    examples: list[str] = []

    @field_validator("examples", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> list[str]:
        return _str_list(v)

    @field_validator("ecosystem_activity", mode="before")
    @classmethod
    def coerce_activity(cls, v: Any) -> str:
        return _text(v)


class Relevance(_Dimension):
    rationale: str = ""

    @field_validator("rationale", mode="before")
    @classmethod
    def coerce_rationale(cls, v: Any) -> str:
        return _text(v)


class Opportunity(BaseModel):
    model_config = ConfigDict(extra="allow")

    opportunity: str = ""
    dimension: str = "emerging_tech"
    approach: str = "Scoping Study"

    @field_validator("opportunity", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("dimension", mode="before")
    @classmethod
    def coerce_dimension(cls, v: Any) -> str:
        return normalize_dimension(v)

    @field_validator("approach", mode="before")
    @classmethod
    def coerce_approach(cls, v: Any) -> str:
        return normalize_approach(v)


class Score(BaseModel):
    """Evaluation artifact for one project.

    ``overall_score`` and ``primary_dimension`` are always derived from the
    dimension scores on validation; values supplied by an evaluator are ignored.
    """
    model_config = ConfigDict(extra="allow")

    emerging_tech: EmergingTech
    foresight: Foresight
    collective_intelligence: CollectiveIntelligence
    relevance: Relevance
    overall_score: float = 0.0
    primary_dimension: str = ""
    top_opportunities: list[Opportunity] = []
    key_insight: str = ""

    @field_validator("top_opportunities", mode="before")
    @classmethod
    def coerce_opportunities(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [o for o in v if isinstance(o, (dict, Opportunity))][:10]

    @field_validator("key_insight", mode="before")
    @classmethod
    def coerce_insight(cls, v: Any) -> str:
        return _text(v)

    @model_validator(mode="after")
    def derive_overall(self) -> Score:
        t, f, c = self.emerging_tech.score, self.foresight.score, self.collective_intelligence.score
        self.overall_score = compute_overall_score(t, f, c)
        self.primary_dimension = pick_primary_dimension(t, f, c)
        return self


# ---------------------------------------------------------------------------
# Projects and research
# ---------------------------------------------------------------------------


class Project(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    project_name: str
    countryname: list[str] = []
    regionname: str = ""
    status: str = ""
    totalamt: str = "0"
    sector: str | None = None

    @field_validator("id", "project_name", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> str:
        return _text(v)

    @field_validator("countryname", mode="before")
    @classmethod
    def coerce_countries(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            return [v.strip()] if v.strip() else []
        return _str_list(v)

    @field_validator("totalamt", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> str:
        if v is None or v == "":
            return "0"
        if isinstance(v, (int, float)):
            return f"{int(v):,}"
        return str(v).strip()

    @property
    def country(self) -> str:
        return self.countryname[0] if self.countryname else ""

    @classmethod
    def from_worldbank(cls, raw: dict[str, Any]) -> Project:
        """Build a Project from a World Bank project-search record."""
        sector = None
        sector1 = raw.get("sector1")
        if isinstance(sector1, dict) and sector1.get("Name"):
            sector = sector1["Name"]
        elif raw.get("mjsector1Name"):
            sector = raw["mjsector1Name"]
        return cls(
            id=raw.get("id", ""),
            project_name=raw.get("project_name", ""),
            countryname=raw.get("countryname") or raw.get("countryshortname") or [],
            regionname=raw.get("regionname") or "",
            status=raw.get("projectstatusdisplay") or raw.get("status") or "",
            totalamt=raw.get("totalamt"),
            sector=sector,
        )


class ScoredProject(Project):
    score: Score | None = None


class SearchResult(BaseModel):
    title: str
    description: str = ""
    url: str


ResearchBundle = dict[str, list[SearchResult]]


class ProjectQuery(BaseModel):
    region: str = "All"
    statuses: list[str] = ["Pipeline"]
    keyword: str = ""
    year_from: int | None = None
    year_to: int | None = None
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=500)


class ProjectPage(BaseModel):
    total: int
    projects: list[Project]


# ---------------------------------------------------------------------------
# Scoring request / response
# ---------------------------------------------------------------------------


class ScoreRequest(BaseModel):
    projects: list[Project]
    prompt: str | None = None
    model: str | None = None
    credential: str | None = None


class ProjectScoreResult(BaseModel):
    project_id: str
    success: bool
    score: Score | None = None
    research: ResearchBundle | None = None
    model: str | None = None
    error: str | None = None


class ScoreResponse(BaseModel):
    results: list[ProjectScoreResult]
    succeeded: int
    failed: int


class StoredScore(BaseModel):
    project_id: str
    project: Project | None = None
    score: Score
    research: ResearchBundle | None = None
    model: str = ""
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class ReportRequest(BaseModel):
    scored_projects: list[ScoredProject]
    generated_at: datetime | None = None
    page: int = Field(1, ge=1)
    per_page: int | None = Field(None, ge=1)


class ReportEntry(BaseModel):
    rank: int
    project: ScoredProject
    amount_label: str


class Report(BaseModel):
    generated_at: datetime
    total_count: int
    high_priority_count: int
    total_financing: int
    total_financing_label: str
    page: int
    per_page: int
    total_pages: int
    entries: list[ReportEntry]


class BriefingRequest(BaseModel):
    scored_projects: list[ScoredProject]
    prompt: str | None = None
    model: str | None = None
    credential: str | None = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingsOut(BaseModel):
    active_model: str
    scoring_prompt: str
    briefing_prompt: str


class SettingsUpdate(BaseModel):
    active_model: str | None = None
    scoring_prompt: str | None = None
    briefing_prompt: str | None = None


class EvaluatorTestRequest(BaseModel):
    model: str
    credential: str | None = None
