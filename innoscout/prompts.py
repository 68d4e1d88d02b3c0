"""Prompt templates and composition of evaluator requests from project data and research."""
from __future__ import annotations

import json

from innoscout.schemas import Project, ResearchBundle, ScoredProject, SearchResult

# ---------------------------------------------------------------------------
# Default templates (editable via the settings API)
# ---------------------------------------------------------------------------

DEFAULT_SCORING_PROMPT = """\
You are an innovation strategist for the World Bank ITS Innovation Lab, scoring \
a project for innovation engagement potential.

The Lab creates value through three capabilities:
1. STRATEGIC FORESIGHT - future-proofing investments, Three Horizons thinking, \
scenario planning, regulatory sandboxes
2. EMERGING TECHNOLOGIES - AI/ML, Blockchain/DLT, IoT/Digital Twins, Drones/UAVs, \
Digital Public Infrastructure
3. COLLECTIVE INTELLIGENCE - innovation challenges, hackathons, bootcamps, startup \
ecosystem engagement

PROJECT TO ANALYZE:
- Name: [[project_name]]
- Country: [[country]]
- Amount: $[[amount]]
- Domain: [[domain]]

Use the web research findings above to evaluate the project's potential for \
Innovation Lab engagement.

RESPOND WITH VALID JSON ONLY (no markdown code blocks):
{
  "emerging_tech": {
    "score": <1-10>,
    "technologies": ["<relevant tech found>"],
    "applications": ["<how it applies to this project>"],
    "evidence": "<1-2 sentence summary of findings>"
  },
  "foresight": {
    "score": <1-10>,
    "disruptions": ["<anticipated changes in this domain>"],
    "horizon": "<near-term|medium-term|long-term>",
    "evidence": "<1-2 sentence summary>"
  },
  "collective_intelligence": {
    "score": <1-10>,
    "ecosystem_activity": "<high|medium|low>",
    "examples": ["<relevant challenges, hackathons, or initiatives found>"],
    "evidence": "<1-2 sentence summary>"
  },
  "relevance": {
    "score": <1-10>,
    "rationale": "<why these innovations apply to this specific project and country>"
  },
  "top_opportunities": [
    {
      "opportunity": "<specific innovation opportunity>",
      "dimension": "<foresight|emerging_tech|collective_intelligence>",
      "approach": "<Proof of Value|Foresight Workshop|Innovation Challenge|Hackathon|Scoping Study>"
    }
  ],
  "key_insight": "<one sentence strategic recommendation for Lab engagement>"
}
"""

DEFAULT_BRIEFING_PROMPT = """\
You are preparing an innovation opportunity briefing for the World Bank ITS \
Innovation Lab leadership.

Based on the scored projects below, create a concise executive briefing.

SCORED PROJECTS:
[[projects_json]]

Generate a briefing with:

1. EXECUTIVE SUMMARY (50 words max): how many projects were analyzed, the overall \
innovation landscape, and the top recommendation.

2. TOP 5 OPPORTUNITIES: for each, the project name and country, overall score and \
primary dimension, the key opportunity in one sentence, and the recommended Lab \
engagement approach.

3. THEMATIC PATTERNS: recurring technology themes, regions with the highest \
innovation potential, and the most pressing foresight concerns.

4. RECOMMENDED NEXT STEPS: 3 specific actions for the Lab team.

Keep the briefing under 500 words. Use clear, direct language suitable for senior \
leadership.
"""

NO_RESULTS = "No specific results found in search."

RESEARCH_HEADER = """\
=== WEB RESEARCH FINDINGS ===

I conducted comprehensive web searches to inform this analysis. Below are the \
actual search results:
"""

GROUNDING_INSTRUCTIONS = """\
=== END WEB RESEARCH ===

IMPORTANT: Base your scoring EXCLUSIVELY on the web research findings above. \
Reference specific:
- Named technologies, companies, and initiatives found in the search results
- Concrete examples of innovation challenges, hackathons, or ecosystem activities
- Actual trends and disruptions mentioned in the sources
- Real case studies and applications
- Include source URLs where relevant

If search results are limited, acknowledge this and provide a conservative score.
"""

# Template placeholder -> facet whose formatted results replace it
FACET_PLACEHOLDERS: dict[str, str] = {
    "[[emerging_tech_results]]": "Emerging Technology",
    "[[foresight_results]]": "Future Trends",
    "[[collective_intel_results]]": "Innovation Ecosystem",
}


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def format_results(results: list[SearchResult]) -> str:
    if not results:
        return NO_RESULTS
    return "\n\n".join(
        f"{i}. {r.title}\n   {r.description}\n   Source: {r.url}"
        for i, r in enumerate(results, start=1)
    )


def format_research(bundle: ResearchBundle) -> str:
    """Serialize a research bundle facet by facet, in bundle order."""
    sections = [
        f"### {facet} Search Results\n{format_results(results)}"
        for facet, results in bundle.items()
    ]
    return "\n\n".join(sections)


def fill_template(template: str | None, project: Project, domain: str, bundle: ResearchBundle) -> str:
    """Substitute recognized placeholders; anything unrecognized is left untouched."""
    text = template or ""
    replacements = {
        "[[project_name]]": project.project_name,
        "[[country]]": project.country,
        "[[amount]]": project.totalamt,
        "[[domain]]": domain,
    }
    for placeholder, facet in FACET_PLACEHOLDERS.items():
        replacements[placeholder] = format_results(bundle.get(facet, []))
    for placeholder, value in replacements.items():
        text = text.replace(placeholder, value)
    return text


def compose(template: str | None, project: Project, domain: str, bundle: ResearchBundle) -> str:
    """Build the full evaluator request: research findings first, then the filled template."""
    research = "\n".join([
        RESEARCH_HEADER,
        format_research(bundle),
        "",
        GROUNDING_INSTRUCTIONS,
    ])
    return f"{research}\n\n{fill_template(template, project, domain, bundle)}"


def _briefing_item(p: ScoredProject) -> dict:
    score = p.score
    top = score.top_opportunities[0] if score and score.top_opportunities else None
    return {
        "project_name": p.project_name,
        "country": p.country,
        "region": p.regionname,
        "amount": p.totalamt,
        "overall_score": score.overall_score if score else None,
        "primary_dimension": score.primary_dimension if score else None,
        "top_opportunity": top.opportunity if top else None,
        "approach": top.approach if top else None,
        "key_insight": score.key_insight if score else None,
    }


def compose_briefing(template: str | None, scored_projects: list[ScoredProject]) -> str:
    """Fill ``[[projects_json]]`` with a compact summary of each scored project."""
    payload = json.dumps([_briefing_item(p) for p in scored_projects if p.score], indent=2)
    return (template or DEFAULT_BRIEFING_PROMPT).replace("[[projects_json]]", payload)
