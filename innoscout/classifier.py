"""Map a project's name and sector to a coarse topical domain used in search queries."""
from __future__ import annotations

from innoscout.schemas import Project

DEFAULT_DOMAIN = "development"

# Ordered (keyword, domain) rules; the first keyword found in the name or
# sector decides the domain, so this order must not change.
DOMAIN_RULES: tuple[tuple[str, str], ...] = (
    ("digital", "digital economy"),
    ("health", "healthcare"),
    ("education", "education"),
    ("transport", "transportation"),
    ("agriculture", "agriculture"),
    ("energy", "energy"),
    ("water", "water"),
    ("urban", "urban development"),
    ("financial", "financial services"),
    ("trade", "trade"),
    ("climate", "climate"),
    ("infrastructure", "infrastructure"),
    ("governance", "governance"),
    ("environment", "environment"),
)


def classify(project: Project) -> str:
    """Return the domain label for *project*. Pure; never fails."""
    name = (project.project_name or "").lower()
    sector = (project.sector or "").strip().lower()
    for keyword, domain in DOMAIN_RULES:
        if keyword in name or keyword in sector:
            return domain
    return sector or DEFAULT_DOMAIN
