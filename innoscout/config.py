"""Runtime settings: defaults, an optional YAML file, then environment overrides."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEMO_MODEL = "demo"
ANTHROPIC_PREFIXES = ("claude",)


def _default_data_dir() -> Path:
    override = os.getenv("INNOSCOUT_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve() / "data"
    return Path(__file__).parent / "data"


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    database_path: Path = Field(default_factory=lambda: _default_data_dir() / "innoscout.db")
    log_level: str = "INFO"

    user_agent: str = "Mozilla/5.0 (compatible; InnoScoutBot/1.0)"
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )

    # Search
    search_backends: list[str] = Field(
        default_factory=lambda: ["duckduckgo_api", "duckduckgo", "brave_api", "brave_html"]
    )
    search_timeout_seconds: float = 15.0
    search_result_limit: int = 10
    search_delay_seconds: float = 0.8
    ddg_min_delay_seconds: float = 2.0
    ddg_max_delay_seconds: float = 60.0
    brave_api_key: str = ""

    # Evaluators
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_base_url: str = ""
    llm_timeout_seconds: float = 90.0
    llm_max_tokens: int = 4000
    llm_temperature: float = 0.1

    # Upstream project source
    worldbank_api_url: str = "https://search.worldbank.org/api/v2/projects"
    worldbank_timeout_seconds: float = 30.0

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    def credential_for(self, model: str) -> str:
        """Configured vendor key for *model*, or ``""``."""
        if model.strip().lower().startswith(ANTHROPIC_PREFIXES):
            return self.anthropic_api_key
        return self.openai_api_key


# Environment variable -> Settings field
_ENV_OVERRIDES: dict[str, str] = {
    "INNOSCOUT_DB_PATH": "database_path",
    "INNOSCOUT_LOG_LEVEL": "log_level",
    "INNOSCOUT_SEARCH_DELAY": "search_delay_seconds",
    "INNOSCOUT_SEARCH_TIMEOUT": "search_timeout_seconds",
    "INNOSCOUT_LLM_TIMEOUT": "llm_timeout_seconds",
    "OPENAI_API_KEY": "openai_api_key",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
    "OPENAI_BASE_URL": "openai_base_url",
    "BRAVE_API_KEY": "brave_api_key",
}


def load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Build Settings from an optional YAML file, then environment overrides."""
    values: dict[str, Any] = {}
    path = config_path or os.getenv("INNOSCOUT_CONFIG", "").strip()
    if path:
        values.update(load_yaml(Path(path).expanduser()))
    for env_key, field in _ENV_OVERRIDES.items():
        val = os.getenv(env_key, "").strip()
        if val:
            values[field] = val
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    settings.ensure_directories()
    return settings
