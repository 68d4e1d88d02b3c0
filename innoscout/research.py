"""Per-project web research: a fixed battery of facet queries run through the search chain."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from innoscout.schemas import Project, ResearchBundle
from innoscout.search import SearchFallbackChain

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Facet:
    name: str
    template: str  # placeholders: {sector}, {country}, {domain}


# Facet order is the order findings are shown to the evaluator.
FACETS: tuple[Facet, ...] = (
    Facet("Emerging Technology",
          '"{sector}" "{country}" AI machine learning IoT blockchain digital innovation '
          "2024 2025 technology adoption"),
    Facet("Innovation Ecosystem",
          '"{country}" "{domain}" innovation ecosystem startup accelerator tech hub '
          "incubator challenge hackathon"),
    Facet("Future Trends",
          '"{sector}" future trends 2030 disruption forecast "{country}" development '
          "digital transformation"),
    Facet("Case Studies",
          '"{domain}" "{country}" case study implementation success pilot project '
          "technology deployment"),
    Facet("Market Analysis",
          '"{country}" "{sector}" market analysis innovation investment funding startup companies'),
    Facet("Technology Companies",
          '"{domain}" technology companies "{country}" vendors solutions providers platforms startups'),
    Facet("World Bank Innovation",
          '"World Bank" "{country}" "{domain}" innovation technology digital development project'),
    Facet("Research Publications",
          '"{sector}" "{country}" research report whitepaper study analysis innovation '
          "technology 2023 2024"),
)

FACET_NAMES: tuple[str, ...] = tuple(f.name for f in FACETS)


def build_queries(project: Project, domain: str) -> list[tuple[str, str]]:
    """Return ``(facet_name, query)`` pairs in facet order."""
    tokens = {
        "sector": project.sector or domain,
        "country": project.country,
        "domain": domain,
    }
    return [(f.name, f.template.format(**tokens)) for f in FACETS]


def total_results(bundle: ResearchBundle) -> int:
    return sum(len(results) for results in bundle.values())


class ResearchAggregator:
    """Runs every facet query for a project, sequentially, with a pause between queries."""

    def __init__(
        self,
        chain: SearchFallbackChain,
        limit: int = 10,
        delay: float = 0.8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.chain = chain
        self.limit = limit
        self.delay = delay
        self._sleep = sleep

    async def research(self, project: Project, domain: str) -> ResearchBundle:
        bundle: ResearchBundle = {}
        for idx, (facet, query) in enumerate(build_queries(project, domain)):
            if idx and self.delay > 0:
                await self._sleep(self.delay)
            try:
                results = await self.chain.search(query, self.limit)
            except Exception as exc:
                log.warning("Facet %r search failed for %s: %s", facet, project.id, exc)
                results = []
            bundle[facet] = list(results)[: self.limit]
            log.info("Completed %s: %d results", facet, len(bundle[facet]))

        log.info("Total search results collected for %s: %d", project.id, total_results(bundle))
        return bundle
