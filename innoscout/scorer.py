"""Research-augmented scoring: research a project, ask the evaluator, extract the Score.

Pipeline per project
--------------------

1. :func:`innoscout.classifier.classify` derives the search domain.
2. :class:`innoscout.research.ResearchAggregator` runs the facet searches.
3. :func:`innoscout.prompts.compose` builds one prompt from the template and findings.
4. An :class:`innoscout.llm.EvaluatorClient` returns raw text.
5. :func:`extract_score` isolates the JSON object in that text and validates it.

``overall_score`` is the plain weighted combination
``0.35 * tech + 0.35 * foresight + 0.30 * collective`` on every path; the
evaluator's own overall figure, if any, is discarded.
"""
from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from innoscout.classifier import classify
from innoscout.errors import MalformedResponseError, SchemaError
from innoscout.llm import EvaluatorClient
from innoscout.prompts import DEFAULT_SCORING_PROMPT, compose
from innoscout.research import ResearchAggregator
from innoscout.schemas import (
    DIMENSIONS,
    Project,
    ResearchBundle,
    Score,
    compute_overall_score,
    pick_primary_dimension,
)

log = logging.getLogger(__name__)

__all__ = [
    "compute_overall_score",
    "extract_score",
    "first_json_span",
    "pick_primary_dimension",
    "score_with_research",
]

REQUIRED_DIMENSIONS = (*DIMENSIONS, "relevance")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _balanced_end(text: str, start: int) -> int | None:
    """Index of the brace closing the one at *start*, honouring JSON strings."""
    depth = 0
    in_string = escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def first_json_span(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in *text*, or None."""
    start = text.find("{")
    if start == -1:
        return None
    end = _balanced_end(text, start)
    if end is None:
        return None
    return text[start:end + 1]


def extract_score(raw_text: str) -> Score:
    """Parse the first JSON object in *raw_text* as a Score.

    Tolerates prose and code fences around the object.  Only the first
    balanced span is considered: MalformedResponseError when there is none or
    it does not parse, SchemaError when one of the four dimension scores is
    missing or invalid.
    """
    raw_text = raw_text or ""
    span = first_json_span(raw_text)
    if span is None:
        raise MalformedResponseError(f"No JSON object in evaluator response: {raw_text[:200]!r}")
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Evaluator JSON does not parse: {exc}") from exc

    missing = [
        f"{dim}.score" for dim in REQUIRED_DIMENSIONS
        if not isinstance(data.get(dim), dict) or data[dim].get("score") is None
    ]
    if missing:
        raise SchemaError(f"Evaluator response missing required fields: {', '.join(missing)}")

    try:
        return Score.model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise SchemaError(f"Evaluator response has invalid fields: {', '.join(fields)}") from exc


# ---------------------------------------------------------------------------
# Score one project
# ---------------------------------------------------------------------------


async def score_with_research(
    project: Project,
    template: str | None,
    evaluator: EvaluatorClient,
    aggregator: ResearchAggregator,
) -> tuple[Score, ResearchBundle]:
    """Run the full research -> prompt -> evaluate -> extract chain for one project."""
    domain = classify(project)
    log.info("Scoring project %s: %s (%s in %s)", project.id, project.project_name, domain, project.country)

    bundle = await aggregator.research(project, domain)
    prompt = compose(template or DEFAULT_SCORING_PROMPT, project, domain, bundle)

    log.info("Calling %s model %s for %s", evaluator.provider, evaluator.model, project.id)
    raw = await evaluator.evaluate(prompt)
    return extract_score(raw), bundle
