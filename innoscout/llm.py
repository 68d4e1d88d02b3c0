"""Evaluator clients: send one combined prompt to an LLM vendor, return its raw text."""
from __future__ import annotations

import logging
from typing import Any

import anthropic
import openai

from innoscout.config import ANTHROPIC_PREFIXES, DEMO_MODEL, Settings
from innoscout.errors import AuthError, ConfigError, TransportError, UpstreamError

log = logging.getLogger(__name__)

OPENAI_PREFIXES = ("gpt", "o1", "o3", "o4", "chatgpt")
# Reasoning models take max_completion_tokens and only the default temperature.
REASONING_PREFIXES = ("o1", "o3", "o4")


class EvaluatorClient:
    """Abstract base for evaluator vendors."""

    provider = "base"

    def __init__(
        self,
        model: str,
        credential: str,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        timeout: float = 90.0,
    ):
        if not credential:
            raise AuthError(f"No API key provided for {self.provider} model {model!r}")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    async def evaluate(self, prompt: str) -> str:
        raise NotImplementedError


class OpenAIEvaluator(EvaluatorClient):
    provider = "openai"

    def __init__(self, model: str, credential: str, base_url: str | None = None, **kwargs: Any):
        super().__init__(model, credential, **kwargs)
        client_kwargs: dict[str, Any] = {"api_key": credential, "timeout": self.timeout, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)

    def request_kwargs(self, prompt: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.model.strip().lower().startswith(REASONING_PREFIXES):
            kwargs["max_completion_tokens"] = self.max_tokens
        else:
            kwargs["temperature"] = self.temperature
            kwargs["max_tokens"] = self.max_tokens
        return kwargs

    async def evaluate(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(**self.request_kwargs(prompt))
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthError(f"OpenAI rejected the API key: {exc}") from exc
        except openai.APIStatusError as exc:
            raise UpstreamError(f"OpenAI API failed: {exc}", status_code=exc.status_code) from exc
        except openai.APIConnectionError as exc:
            raise TransportError(f"OpenAI API unreachable: {exc}") from exc

        if not response.choices or not response.choices[0].message.content:
            raise UpstreamError("OpenAI returned an empty response")
        return response.choices[0].message.content


class AnthropicEvaluator(EvaluatorClient):
    provider = "anthropic"

    def __init__(self, model: str, credential: str, **kwargs: Any):
        super().__init__(model, credential, **kwargs)
        self._client = anthropic.AsyncAnthropic(api_key=credential, timeout=self.timeout, max_retries=0)

    async def evaluate(self, prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise AuthError(f"Anthropic rejected the API key: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise UpstreamError(f"Anthropic API failed: {exc}", status_code=exc.status_code) from exc
        except anthropic.APIConnectionError as exc:
            raise TransportError(f"Anthropic API unreachable: {exc}") from exc

        text = "".join(getattr(block, "text", "") for block in response.content).strip()
        if not text:
            raise UpstreamError("Anthropic returned an empty response")
        return text


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def is_demo(model: str | None) -> bool:
    return not model or model.strip().lower() == DEMO_MODEL


def resolve_credential(model: str, credential: str | None, settings: Settings) -> str:
    """Request credential first, then the vendor key from settings/environment."""
    return (credential or "").strip() or settings.credential_for(model)


def get_evaluator(model: str, credential: str, settings: Settings) -> EvaluatorClient:
    """Pick the vendor client for *model*.

    Raises ConfigError if the model matches no supported vendor.
    """
    kwargs: dict[str, Any] = {
        "max_tokens": settings.llm_max_tokens,
        "temperature": settings.llm_temperature,
        "timeout": settings.llm_timeout_seconds,
    }
    name = model.strip().lower()
    if name.startswith(ANTHROPIC_PREFIXES):
        return AnthropicEvaluator(model, credential, **kwargs)
    if name.startswith(OPENAI_PREFIXES):
        return OpenAIEvaluator(model, credential, base_url=settings.openai_base_url or None, **kwargs)
    if settings.openai_base_url:
        log.info("Routing custom model %r to OpenAI-compatible endpoint %s", model, settings.openai_base_url)
        return OpenAIEvaluator(model, credential, base_url=settings.openai_base_url, **kwargs)
    raise ConfigError(
        f"Unsupported model {model!r}. Use a GPT or Claude model, or configure OPENAI_BASE_URL."
    )
