"""Tests for classification, prompt composition, score extraction, heuristics and reports."""
from __future__ import annotations

import json
import random
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from innoscout.classifier import DEFAULT_DOMAIN, classify
from innoscout.config import Settings
from innoscout.errors import (
    AuthError,
    ConfigError,
    MalformedResponseError,
    SchemaError,
    TransportError,
    UpstreamError,
)
from innoscout.heuristic import TECH_KEYWORDS, HeuristicScorer, _hits
from innoscout.llm import AnthropicEvaluator, OpenAIEvaluator, get_evaluator, is_demo, resolve_credential
from innoscout.prompts import (
    DEFAULT_BRIEFING_PROMPT,
    GROUNDING_INSTRUCTIONS,
    NO_RESULTS,
    RESEARCH_HEADER,
    compose,
    compose_briefing,
    fill_template,
    format_results,
)
from innoscout.report import aggregate
from innoscout.research import FACET_NAMES
from innoscout.schemas import APPROACHES, DIMENSIONS, Project, Score, ScoredProject, SearchResult
from innoscout.scorer import compute_overall_score, extract_score, pick_primary_dimension, score_with_research
from innoscout.utils import format_amount, parse_amount


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _project(pid="P1", name="Rural Roads Program", sector=None, country="Ghana", amount="100,000,000") -> Project:
    return Project(id=pid, project_name=name, countryname=[country], regionname="Western and Central Africa",
                   status="Pipeline", totalamt=amount, sector=sector)


def _score_payload(tech=8, foresight=6, collective=5, relevance=7, **extra) -> dict:
    return {
        "emerging_tech": {"score": tech, "technologies": ["IoT"], "applications": ["sensors"], "evidence": "e"},
        "foresight": {"score": foresight, "disruptions": ["heat"], "horizon": "medium-term", "evidence": "f"},
        "collective_intelligence": {"score": collective, "ecosystem_activity": "high",
                                    "examples": ["hackathon"], "evidence": "c"},
        "relevance": {"score": relevance, "rationale": "fits"},
        "top_opportunities": [{"opportunity": "Pilot sensors", "dimension": "emerging_tech",
                               "approach": "Proof of Value"}],
        "key_insight": "Start with a pilot.",
        **extra,
    }


def _scored(pid: str, overall_dims: tuple[float, float, float], amount="1,000,000") -> ScoredProject:
    t, f, c = overall_dims
    return ScoredProject(**_project(pid=pid, amount=amount).model_dump(),
                         score=Score.model_validate(_score_payload(t, f, c)))


# ---------------------------------------------------------------------------
# Tests: classifier
# ---------------------------------------------------------------------------


class TestClassifier:
    def test_first_rule_wins(self):
        # "health" precedes "education" in the rule order
        assert classify(_project(name="Health and Education Support")) == "healthcare"
        assert classify(_project(name="Education for Health Workers")) == "healthcare"

    def test_digital_precedes_health(self):
        assert classify(_project(name="Health Digital Systems")) == "digital economy"

    def test_earlier_name_keyword_beats_later_sector_keyword(self):
        assert classify(_project(name="Rural Health Program", sector="Water Supply")) == "healthcare"

    def test_sector_is_searched(self):
        assert classify(_project(name="Program for Results", sector="Renewable Energy")) == "energy"

    def test_falls_back_to_sector_then_default(self):
        assert classify(_project(name="Program for Results", sector="Mining")) == "mining"
        assert classify(_project(name="Program for Results")) == DEFAULT_DOMAIN

    def test_case_insensitive(self):
        assert classify(_project(name="DIGITAL ACCELERATION")) == "digital economy"


# ---------------------------------------------------------------------------
# Tests: prompts
# ---------------------------------------------------------------------------


class TestPrompts:
    def test_format_results(self):
        results = [SearchResult(title="Title", description="Desc", url="https://u.org")]
        assert format_results(results) == "1. Title\n   Desc\n   Source: https://u.org"
        assert format_results([]) == NO_RESULTS

    def test_fill_template_leaves_unknown_placeholders(self):
        bundle = {"Emerging Technology": [SearchResult(title="T", description="D", url="https://u")]}
        text = fill_template(
            "[[project_name]] in [[country]] ([[domain]]) $[[amount]] [[unknown]]\n[[emerging_tech_results]]"
            "\n[[foresight_results]]",
            _project(), "transportation", bundle,
        )
        assert text.startswith("Rural Roads Program in Ghana (transportation) $100,000,000 [[unknown]]")
        assert "Source: https://u" in text
        assert text.endswith(NO_RESULTS)

    def test_compose_puts_research_first(self):
        bundle = {name: [] for name in FACET_NAMES}
        prompt = compose("Score [[project_name]]", _project(), "transportation", bundle)
        assert prompt.startswith(RESEARCH_HEADER)
        assert prompt.index(GROUNDING_INSTRUCTIONS) < prompt.index("Score Rural Roads Program")
        positions = [prompt.index(f"### {name} Search Results") for name in FACET_NAMES]
        assert positions == sorted(positions)
        assert prompt.count(NO_RESULTS) == len(FACET_NAMES)

    def test_compose_briefing_embeds_scored_projects(self):
        scored = [_scored("P1", (8, 6, 5)), ScoredProject(**_project(pid="P2").model_dump())]
        prompt = compose_briefing(None, scored)
        assert "[[projects_json]]" not in prompt
        payload = json.loads(prompt[prompt.index("["):prompt.index("]\n") + 1])
        assert len(payload) == 1
        assert payload[0]["overall_score"] == 6.4
        assert DEFAULT_BRIEFING_PROMPT.split("[[projects_json]]")[0] in prompt


# ---------------------------------------------------------------------------
# Tests: extraction and weighting
# ---------------------------------------------------------------------------


class TestExtractScore:
    def test_plain_json(self):
        score = extract_score(json.dumps(_score_payload()))
        assert score.overall_score == 6.4
        assert score.primary_dimension == "emerging_tech"

    def test_prose_and_fences_are_tolerated(self):
        raw = "Here is my analysis:\n```json\n" + json.dumps(_score_payload()) + "\n```\nHope that helps {sic}."
        assert extract_score(raw).emerging_tech.technologies == ["IoT"]

    def test_braces_inside_strings(self):
        payload = _score_payload(key_insight="Use {templates} carefully")
        assert extract_score("Result: " + json.dumps(payload)).key_insight == "Use {templates} carefully"

    def test_evaluator_overall_is_ignored(self):
        score = extract_score(json.dumps(_score_payload(overall_score=9.9, primary_dimension="foresight")))
        assert score.overall_score == 6.4
        assert score.primary_dimension == "emerging_tech"

    def test_no_json_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            extract_score("no json here")
        with pytest.raises(MalformedResponseError):
            extract_score('{"emerging_tech": {"score": 8')

    def test_only_first_span_is_considered(self):
        raw = "Scores use a {1-10} scale. " + json.dumps(_score_payload())
        with pytest.raises(MalformedResponseError):
            extract_score(raw)

    def test_missing_dimension_is_schema_error(self):
        payload = _score_payload()
        del payload["foresight"]
        payload["relevance"] = {"rationale": "no score"}
        with pytest.raises(SchemaError) as exc_info:
            extract_score(json.dumps(payload))
        assert "foresight.score" in str(exc_info.value)
        assert "relevance.score" in str(exc_info.value)

    def test_non_numeric_score_is_schema_error(self):
        with pytest.raises(SchemaError):
            extract_score(json.dumps(_score_payload(tech="high")))

    def test_scores_are_clamped_and_labels_normalized(self):
        payload = _score_payload(tech=14, collective=0)
        payload["top_opportunities"] = [{"opportunity": "x", "dimension": "collective_intel", "approach": "Party"}]
        score = extract_score(json.dumps(payload))
        assert score.emerging_tech.score == 10
        assert score.collective_intelligence.score == 1
        assert score.top_opportunities[0].dimension == "collective_intelligence"
        assert score.top_opportunities[0].approach == "Scoping Study"

    def test_unknown_fields_survive(self):
        score = extract_score(json.dumps(_score_payload(confidence_level="high")))
        assert score.model_dump()["confidence_level"] == "high"


class TestWeighting:
    def test_weighted_combination(self):
        assert compute_overall_score(8, 6, 5) == 6.4
        assert compute_overall_score(10, 10, 10) == 10.0
        assert compute_overall_score(1, 1, 1) == 1.0

    def test_primary_dimension_ties(self):
        assert pick_primary_dimension(7, 7, 7) == "emerging_tech"
        assert pick_primary_dimension(5, 7, 7) == "foresight"
        assert pick_primary_dimension(5, 6, 7) == "collective_intelligence"


class TestScoreWithResearch:
    @pytest.mark.asyncio
    async def test_pipeline(self):
        aggregator = AsyncMock()
        aggregator.research.return_value = {name: [] for name in FACET_NAMES}
        evaluator = AsyncMock()
        evaluator.provider, evaluator.model = "openai", "gpt-4o"
        evaluator.evaluate.return_value = "Sure! " + json.dumps(_score_payload())

        score, bundle = await score_with_research(
            _project(name="Digital Roads"), "Rate [[project_name]] in [[domain]]", evaluator, aggregator,
        )
        assert score.overall_score == 6.4
        assert list(bundle) == list(FACET_NAMES)
        aggregator.research.assert_awaited_once()
        assert aggregator.research.await_args.args[1] == "digital economy"
        prompt = evaluator.evaluate.await_args.args[0]
        assert prompt.endswith("Rate Digital Roads in digital economy")


# ---------------------------------------------------------------------------
# Tests: heuristic scorer
# ---------------------------------------------------------------------------


class TestHeuristicScorer:
    def test_keyword_bands(self):
        scorer = HeuristicScorer(random.Random(7))
        hit = scorer.score(_project(name="Digital Climate Youth Initiative"))
        miss = scorer.score(_project(name="Program for Results"))
        for dim in DIMENSIONS:
            assert 7.0 <= getattr(hit, dim).score <= 9.0
            assert 4.0 <= getattr(miss, dim).score <= 6.0

    def test_invariants_over_random_names(self):
        rng = random.Random(42)
        words = ["digital", "climate", "community", "roads", "health", "water", "program", "youth",
                 "energy", "support", "resilience", "agriculture", "urban", "reform"]
        scorer = HeuristicScorer(rng)
        for i in range(1000):
            name = " ".join(rng.choice(words) for _ in range(rng.randint(1, 5)))
            score = scorer.score(_project(pid=f"P{i}", name=name))
            t, f, c = score.emerging_tech.score, score.foresight.score, score.collective_intelligence.score
            assert all(4.0 <= s <= 9.0 for s in (t, f, c))
            assert score.overall_score == compute_overall_score(t, f, c)
            assert score.primary_dimension == pick_primary_dimension(t, f, c)
            assert len(score.top_opportunities) == 2
            assert all(o.approach in APPROACHES for o in score.top_opportunities)
            assert score.key_insight
            assert score.emerging_tech.technologies
            assert score.foresight.disruptions
            assert score.collective_intelligence.examples
            assert 1 <= score.relevance.score <= 10

    def test_acronym_matches_whole_words_only(self):
        assert not _hits("district roads rehabilitation", TECH_KEYWORDS)
        assert not _hits("post-conflict recovery", TECH_KEYWORDS)
        assert _hits("ict for schools", TECH_KEYWORDS)
        miss = HeuristicScorer(random.Random(3)).score(_project(name="District Roads Rehabilitation"))
        assert 4.0 <= miss.emerging_tech.score <= 6.0

    def test_reproducible_per_project(self):
        project = _project(pid="P777", name="Smart Water Platform")
        assert HeuristicScorer().score(project) == HeuristicScorer().score(project)

    def test_opportunities_and_insight(self):
        score = HeuristicScorer(random.Random(1)).score(_project(name="Digital Health Systems", country="Peru"))
        assert [(o.dimension, o.approach) for o in score.top_opportunities] == [
            ("emerging_tech", "Proof of Value"), ("foresight", "Foresight Workshop"),
        ]
        assert "Peru" in score.key_insight and "digital economy" in score.key_insight
        assert "Telemedicine and remote diagnostics" in score.emerging_tech.technologies
        assert score.model_dump()["scoring_mode"] == "demo"


# ---------------------------------------------------------------------------
# Tests: report
# ---------------------------------------------------------------------------


class TestReport:
    def test_sorted_and_counted(self):
        p1 = _scored("p1", (4.2, 4.2, 4.2), amount="200,000,000")
        p2 = _scored("p2", (8.1, 8.1, 8.1), amount="2,500,000,000")
        p3 = _scored("p3", (6.0, 6.0, 6.0), amount="n/a")
        report = aggregate([p1, p2, p3], generated_at=datetime(2025, 1, 1, tzinfo=UTC))
        assert [e.project.id for e in report.entries] == ["p2", "p3", "p1"]
        assert [e.rank for e in report.entries] == [1, 2, 3]
        assert report.high_priority_count == 1
        assert report.total_count == 3
        assert report.total_financing == 2_700_000_000
        assert report.total_financing_label == "$2.7B"
        assert [e.amount_label for e in report.entries] == ["$2.5B", "TBD", "$200M"]

    def test_unscored_excluded_and_ties_stable(self):
        a = _scored("a", (6, 6, 6))
        b = _scored("b", (6, 6, 6))
        unscored = ScoredProject(**_project(pid="u").model_dump())
        report = aggregate([a, unscored, b])
        assert [e.project.id for e in report.entries] == ["a", "b"]

    def test_pagination(self):
        projects = [_scored(f"p{i}", (i, i, i)) for i in range(1, 8)]
        report = aggregate(projects, page=2, per_page=3)
        assert report.total_pages == 3
        assert [e.rank for e in report.entries] == [4, 5, 6]
        assert [e.project.id for e in report.entries] == ["p4", "p3", "p2"]

    def test_empty(self):
        report = aggregate([])
        assert report.entries == [] and report.total_pages == 1
        assert report.total_financing_label == "TBD"


class TestAmounts:
    def test_parse_amount(self):
        assert parse_amount("150,000,000") == 150_000_000
        assert parse_amount("12abc") == 12
        assert parse_amount("abc") == 0
        assert parse_amount(None) == 0

    def test_format_amount(self):
        assert format_amount("1,200,000,000") == "$1.2B"
        assert format_amount("300,000,000") == "$300M"
        assert format_amount("999,999") == "TBD"


# ---------------------------------------------------------------------------
# Tests: evaluator routing
# ---------------------------------------------------------------------------


class TestEvaluatorRouting:
    def test_vendor_by_prefix(self):
        settings = Settings()
        assert isinstance(get_evaluator("claude-sonnet-4-5", "k", settings), AnthropicEvaluator)
        assert isinstance(get_evaluator("gpt-4o", "k", settings), OpenAIEvaluator)

    def test_unknown_model_without_base_url(self):
        with pytest.raises(ConfigError):
            get_evaluator("llama-3", "k", Settings())

    def test_unknown_model_with_base_url(self):
        evaluator = get_evaluator("llama-3", "k", Settings(openai_base_url="http://localhost:11434/v1"))
        assert isinstance(evaluator, OpenAIEvaluator)

    def test_empty_credential_is_auth_error(self):
        with pytest.raises(AuthError):
            get_evaluator("gpt-4o", "", Settings())

    def test_demo_and_credential_resolution(self):
        assert is_demo(None) and is_demo("") and is_demo("DEMO")
        assert not is_demo("gpt-4o")
        settings = Settings(openai_api_key="env-openai", anthropic_api_key="env-anthropic")
        assert resolve_credential("gpt-4o", "  ", settings) == "env-openai"
        assert resolve_credential("claude-3-haiku", None, settings) == "env-anthropic"
        assert resolve_credential("gpt-4o", "request-key", settings) == "request-key"


# ---------------------------------------------------------------------------
# Tests: evaluator requests and error mapping
# ---------------------------------------------------------------------------


_OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
_ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _openai_evaluator(model="gpt-4o", **create_kwargs) -> OpenAIEvaluator:
    evaluator = OpenAIEvaluator(model, "k")
    evaluator._client = MagicMock()
    evaluator._client.chat.completions.create = AsyncMock(**create_kwargs)
    return evaluator


def _anthropic_evaluator(**create_kwargs) -> AnthropicEvaluator:
    evaluator = AnthropicEvaluator("claude-sonnet-4-5", "k")
    evaluator._client = MagicMock()
    evaluator._client.messages.create = AsyncMock(**create_kwargs)
    return evaluator


def _openai_reply(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


class TestEvaluatorRequests:
    @pytest.mark.asyncio
    async def test_chat_models_send_temperature_and_max_tokens(self):
        evaluator = _openai_evaluator("gpt-4o", return_value=_openai_reply("{}"))
        assert await evaluator.evaluate("prompt") == "{}"
        kwargs = evaluator._client.chat.completions.create.await_args.kwargs
        assert kwargs["max_tokens"] == 4000 and kwargs["temperature"] == 0.1
        assert "max_completion_tokens" not in kwargs

    @pytest.mark.asyncio
    @pytest.mark.parametrize("model", ["o1-preview", "o3-mini", "O4-mini"])
    async def test_reasoning_models_use_completion_token_limit(self, model):
        evaluator = _openai_evaluator(model, return_value=_openai_reply("{}"))
        await evaluator.evaluate("prompt")
        kwargs = evaluator._client.chat.completions.create.await_args.kwargs
        assert kwargs["max_completion_tokens"] == 4000
        assert "max_tokens" not in kwargs and "temperature" not in kwargs
        assert kwargs["model"] == model

    @pytest.mark.asyncio
    async def test_anthropic_request(self):
        reply = MagicMock(content=[MagicMock(text=" {} ")])
        evaluator = _anthropic_evaluator(return_value=reply)
        assert await evaluator.evaluate("prompt") == "{}"
        kwargs = evaluator._client.messages.create.await_args.kwargs
        assert kwargs["max_tokens"] == 4000 and kwargs["temperature"] == 0.1


class TestEvaluatorErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc, expected", [
        (openai.AuthenticationError("bad key", response=httpx.Response(401, request=_OPENAI_REQUEST), body=None),
         AuthError),
        (openai.PermissionDeniedError("denied", response=httpx.Response(403, request=_OPENAI_REQUEST), body=None),
         AuthError),
        (openai.APIStatusError("overloaded", response=httpx.Response(503, request=_OPENAI_REQUEST), body=None),
         UpstreamError),
        (openai.APIConnectionError(request=_OPENAI_REQUEST), TransportError),
    ])
    async def test_openai_exceptions(self, exc, expected):
        with pytest.raises(expected):
            await _openai_evaluator(side_effect=exc).evaluate("prompt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc, expected", [
        (anthropic.AuthenticationError("bad key", response=httpx.Response(401, request=_ANTHROPIC_REQUEST),
                                       body=None), AuthError),
        (anthropic.PermissionDeniedError("denied", response=httpx.Response(403, request=_ANTHROPIC_REQUEST),
                                         body=None), AuthError),
        (anthropic.APIStatusError("overloaded", response=httpx.Response(529, request=_ANTHROPIC_REQUEST),
                                  body=None), UpstreamError),
        (anthropic.APIConnectionError(request=_ANTHROPIC_REQUEST), TransportError),
    ])
    async def test_anthropic_exceptions(self, exc, expected):
        with pytest.raises(expected):
            await _anthropic_evaluator(side_effect=exc).evaluate("prompt")

    @pytest.mark.asyncio
    async def test_status_errors_carry_retryability(self):
        exc = openai.APIStatusError("overloaded", response=httpx.Response(503, request=_OPENAI_REQUEST), body=None)
        with pytest.raises(UpstreamError) as exc_info:
            await _openai_evaluator(side_effect=exc).evaluate("prompt")
        assert exc_info.value.status_code == 503 and exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_empty_content_is_upstream_error(self):
        with pytest.raises(UpstreamError):
            await _openai_evaluator(return_value=_openai_reply("")).evaluate("prompt")
        with pytest.raises(UpstreamError):
            await _openai_evaluator(return_value=MagicMock(choices=[])).evaluate("prompt")
        with pytest.raises(UpstreamError):
            await _anthropic_evaluator(return_value=MagicMock(content=[])).evaluate("prompt")
