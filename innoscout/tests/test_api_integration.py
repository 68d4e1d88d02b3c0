"""Integration tests for the FastAPI endpoints.

Uses TestClient against a temporary SQLite database; no network access.
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from innoscout.config import Settings
from innoscout.db import DEFAULT_SETTINGS, init_db
from innoscout.errors import ProjectSourceError
from innoscout.schemas import ProjectPage


PROJECTS = [
    {"id": "P1", "project_name": "Digital Nepal", "countryname": ["Nepal"], "totalamt": "50,000,000"},
    {"id": "P2", "project_name": "Climate Resilient Roads", "countryname": "Bangladesh",
     "totalamt": "1,500,000,000", "sector": "Transport"},
]


@pytest.fixture()
def client(tmp_path):
    """FastAPI TestClient on a throwaway database with no configured API keys."""
    init_db(tmp_path / "test.db")
    from innoscout.app import app, app_settings

    app.dependency_overrides[app_settings] = lambda: Settings(database_path=tmp_path / "test.db")
    with patch("innoscout.app.init_db"):
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c
    app.dependency_overrides.clear()


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


class TestScoringEndpoints:
    def test_demo_scoring_and_stored_scores(self, client):
        resp = client.post("/api/score", json={"projects": PROJECTS, "model": "demo"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["succeeded"] == 2 and data["failed"] == 0
        assert [r["project_id"] for r in data["results"]] == ["P1", "P2"]
        assert 0 <= data["results"][0]["score"]["overall_score"] <= 10

        resp = client.get("/api/scores")
        assert set(resp.json()) == {"P1", "P2"}
        resp = client.get("/api/scores/P2")
        assert resp.status_code == 200
        assert resp.json()["project"]["countryname"] == ["Bangladesh"]

    def test_missing_model_uses_stored_active_model(self, client):
        resp = client.post("/api/score", json={"projects": PROJECTS[:1]})
        assert resp.status_code == 200
        assert resp.json()["results"][0]["model"] == "demo"

    def test_unknown_model_is_400(self, client):
        resp = client.post("/api/score", json={"projects": PROJECTS, "model": "llama-3", "credential": "k"})
        assert resp.status_code == 400
        assert "Unsupported model" in resp.json()["detail"]

    def test_score_404(self, client):
        assert client.get("/api/scores/NOPE").status_code == 404

    def test_stream(self, client):
        resp = client.post("/api/score/stream", json={"projects": PROJECTS, "model": "demo"})
        assert resp.status_code == 200
        events = _sse_events(resp.text)
        assert [e["type"] for e in events] == ["start", "progress", "progress", "complete"]
        assert events[1]["name"] == "Digital Nepal"
        assert events[2]["current"] == 2 and events[2]["result"]["success"]
        assert events[-1]["stats"] == {"succeeded": 2, "failed": 0}


class TestReportEndpoints:
    def test_report(self, client):
        scored = client.post("/api/score", json={"projects": PROJECTS, "model": "demo"}).json()["results"]
        body = {"scored_projects": [
            {**p, "score": r["score"]} for p, r in zip(PROJECTS, scored)
        ]}
        resp = client.post("/api/report", json=body)
        assert resp.status_code == 200
        report = resp.json()
        assert report["total_count"] == 2
        assert report["total_financing"] == 1_550_000_000
        assert report["total_financing_label"] == "$1.6B"
        overalls = [e["project"]["score"]["overall_score"] for e in report["entries"]]
        assert overalls == sorted(overalls, reverse=True)

    def test_briefing_demo(self, client):
        resp = client.post("/api/report/briefing", json={"scored_projects": [], "model": "demo"})
        assert resp.status_code == 200
        assert resp.json()["model"] == "demo"
        assert "0 projects analyzed" in resp.json()["briefing"]


class TestSettingsEndpoints:
    def test_get_and_update(self, client):
        resp = client.get("/api/settings")
        assert resp.json() == DEFAULT_SETTINGS
        resp = client.put("/api/settings", json={"scoring_prompt": "Rate [[project_name]]"})
        assert resp.status_code == 200
        assert resp.json()["scoring_prompt"] == "Rate [[project_name]]"
        assert client.get("/api/settings").json()["active_model"] == "demo"

    def test_empty_model_is_400(self, client):
        assert client.put("/api/settings", json={"active_model": ""}).status_code == 400

    def test_evaluator_check_without_key(self, client):
        resp = client.post("/api/evaluators/test", json={"model": "gpt-4o"})
        assert resp.status_code == 200
        assert resp.json()["ok"] is False

    def test_reset(self, client):
        client.post("/api/score", json={"projects": PROJECTS, "model": "demo"})
        client.put("/api/settings", json={"active_model": "gpt-4o"})
        resp = client.delete("/api/reset")
        assert resp.json() == {"ok": True, "scores_deleted": 2}
        assert client.get("/api/scores").json() == {}
        assert client.get("/api/settings").json()["active_model"] == "demo"


class TestProjectsEndpoint:
    def test_projects(self, client):
        page = ProjectPage(total=1, projects=[PROJECTS[0]])
        with patch("innoscout.app.fetch_projects", new_callable=AsyncMock, return_value=page) as fetch:
            resp = client.get("/api/projects", params={"statuses": "Active,Closed", "year_from": 2020,
                                                        "year_to": 2024})
        assert resp.status_code == 200
        assert resp.json()["projects"][0]["id"] == "P1"
        query = fetch.await_args.args[0]
        assert query.statuses == ["Active", "Closed"] and query.year_from == 2020

    def test_upstream_failure_is_502(self, client):
        with patch("innoscout.app.fetch_projects", new_callable=AsyncMock,
                   side_effect=ProjectSourceError("Project search failed: HTTP 500")):
            resp = client.get("/api/projects")
        assert resp.status_code == 502
