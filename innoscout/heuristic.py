"""Demo-mode scorer: keyword heuristics, no external calls.

Scores are drawn at random from a high band (7-9) when the project name hits a
dimension's keyword set and from a low band (4-6) otherwise.  This produces
varied, plausible-looking demo data, not an assessment.  The random source is
seeded by the project id unless one is injected, so a project always gets the
same demo score.
"""
from __future__ import annotations

import random
import re

from innoscout.classifier import classify
from innoscout.schemas import DIMENSION_LABELS, Project, Score

TECH_KEYWORDS = frozenset({
    "digital", "technology", "data", "innovation", "smart", "broadband",
    "connectivity", "e-government", "ict", "platform", "modernization", "automation",
})
FORESIGHT_KEYWORDS = frozenset({
    "climate", "resilience", "resilient", "sustainable", "sustainability", "green",
    "renewable", "adaptation", "transition", "future", "disaster", "risk",
})
COLLECTIVE_KEYWORDS = frozenset({
    "community", "communities", "youth", "entrepreneur", "participat", "inclusion",
    "inclusive", "local", "social", "skills", "women", "cooperative", "partnership",
})

# Short acronyms match whole words only ("ict" must not hit "district").
WHOLE_WORD_KEYWORDS = frozenset({"ict"})
_WORD_RE = re.compile(r"[a-z0-9]+")

HIGH_BAND = (7.0, 9.0)
LOW_BAND = (4.0, 6.0)

# Ordered (substring, phrases) rules; every matching rule contributes its phrases.
# Phrases may use {domain} and {country}.
Rule = tuple[str, tuple[str, ...]]

TECHNOLOGY_RULES: tuple[Rule, ...] = (
    ("digital", ("Digital Public Infrastructure (DPI)", "Cloud-based government service platforms")),
    ("health", ("Telemedicine and remote diagnostics", "AI-assisted disease surveillance")),
    ("agri", ("Precision agriculture IoT sensors", "Satellite-based crop monitoring")),
    ("energy", ("Smart grid analytics", "IoT monitoring for distributed solar")),
    ("water", ("IoT water quality and leakage sensors",)),
    ("transport", ("Intelligent transport systems",)),
    ("educat", ("Adaptive learning platforms",)),
    ("financ", ("Mobile money and digital payment rails",)),
)
TECHNOLOGY_FALLBACK = ("Data analytics and AI/ML decision support",)

DISRUPTION_RULES: tuple[Rule, ...] = (
    ("climate", ("Climate-driven shifts in risk exposure and investment priorities",)),
    ("energy", ("Rapid cost decline of distributed renewables",)),
    ("urban", ("Fast urbanization raising demand for smart city services",)),
    ("digital", ("Platform-based service delivery replacing legacy systems",)),
    ("health", ("Shift towards preventive, data-driven care models",)),
    ("agri", ("Changing crop suitability and climate-smart agriculture",)),
)
DISRUPTION_FALLBACK = ("Accelerating digital transformation across the {domain} sector",)

EXAMPLE_RULES: tuple[Rule, ...] = (
    ("youth", ("Youth innovation challenges and bootcamps",)),
    ("community", ("Community co-design workshops",)),
    ("entrepreneur", ("Startup accelerator partnerships",)),
    ("digital", ("Civic tech hackathons",)),
    ("climate", ("Climate innovation challenges",)),
)
EXAMPLE_FALLBACK = ("Regional innovation challenges in {domain} in {country}",)


def _hits(name: str, keywords: frozenset[str]) -> bool:
    words = set(_WORD_RE.findall(name))
    return any(k in words if k in WHOLE_WORD_KEYWORDS else k in name for k in keywords)


def _collect(rules: tuple[Rule, ...], fallback: tuple[str, ...], name: str, **fmt: str) -> list[str]:
    phrases = [p for needle, outcome in rules if needle in name for p in outcome]
    return [p.format(**fmt) for p in (phrases or fallback)]


def _horizon(score: float) -> str:
    if score >= 8:
        return "near-term"
    if score >= 6:
        return "medium-term"
    return "long-term"


def _activity(score: float) -> str:
    if score >= 7:
        return "high"
    if score >= 5:
        return "medium"
    return "low"


class HeuristicScorer:
    """Produce a Score for any project without research or evaluator calls."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng

    def _draw(self, rng: random.Random, hit: bool) -> float:
        low, high = HIGH_BAND if hit else LOW_BAND
        return round(rng.uniform(low, high), 1)

    def score(self, project: Project) -> Score:
        rng = self._rng or random.Random(project.id)
        name = (project.project_name or "").lower()
        domain = classify(project)
        country = project.country or "the country"

        tech = self._draw(rng, _hits(name, TECH_KEYWORDS))
        foresight = self._draw(rng, _hits(name, FORESIGHT_KEYWORDS))
        collective = self._draw(rng, _hits(name, COLLECTIVE_KEYWORDS))
        relevance = round((tech + foresight + collective) / 3, 1)

        technologies = _collect(TECHNOLOGY_RULES, TECHNOLOGY_FALLBACK, name, domain=domain, country=country)
        disruptions = _collect(DISRUPTION_RULES, DISRUPTION_FALLBACK, name, domain=domain, country=country)
        examples = _collect(EXAMPLE_RULES, EXAMPLE_FALLBACK, name, domain=domain, country=country)

        score = Score(
            emerging_tech={
                "score": tech,
                "technologies": technologies,
                "applications": [f"{t} for {domain} delivery in {country}" for t in technologies[:2]],
                "evidence": f"Project scope suggests {len(technologies)} technology entry point(s) in {domain}.",
            },
            foresight={
                "score": foresight,
                "disruptions": disruptions,
                "horizon": _horizon(foresight),
                "evidence": f"{domain.capitalize()} in {country} faces shifts that merit scenario planning.",
            },
            collective_intelligence={
                "score": collective,
                "ecosystem_activity": _activity(collective),
                "examples": examples,
                "evidence": f"Ecosystem engagement could draw on {examples[0].lower()}.",
            },
            relevance={
                "score": relevance,
                "rationale": f"Heuristic estimate from project name keywords for {domain} in {country}.",
            },
            top_opportunities=[
                {
                    "opportunity": f"Pilot {technologies[0]} within the project's {domain} components",
                    "dimension": "emerging_tech",
                    "approach": "Proof of Value",
                },
                {
                    "opportunity": f"Stress-test project design against: {disruptions[0].lower()}",
                    "dimension": "foresight",
                    "approach": "Foresight Workshop",
                },
            ],
            confidence_level="low",
            research_quality="low",
            scoring_mode="demo",
        )
        score.key_insight = (
            f"{DIMENSION_LABELS[score.primary_dimension]} is the strongest entry point for Lab "
            f"engagement on this {domain} project in {country}."
        )
        return score
