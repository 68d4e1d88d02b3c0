"""Error taxonomy shared by the scoring engine, API and MCP server."""
from __future__ import annotations


class ScoutError(Exception):
    """Base class for all innoscout errors."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ConfigError(ScoutError):
    """A live evaluator was requested but cannot be configured (rejects a whole batch)."""


class SearchBackendError(ScoutError):
    """One search backend failed for one query. Swallowed by the fallback chain."""
    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}", retryable=True)
        self.backend = backend


# ---------------------------------------------------------------------------
# Evaluator errors (per project)
# ---------------------------------------------------------------------------


class EvaluatorError(ScoutError):
    """Evaluator call failed."""


class AuthError(EvaluatorError):
    """Missing or rejected credential."""


class UpstreamError(EvaluatorError):
    """Vendor returned a non-success status or an error payload."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, retryable=status_code is not None and status_code >= 500)
        self.status_code = status_code


class TransportError(EvaluatorError):
    """Network failure or timeout talking to the vendor."""
    def __init__(self, message: str):
        super().__init__(message, retryable=True)


# ---------------------------------------------------------------------------
# Extraction errors (per project, non-retryable)
# ---------------------------------------------------------------------------


class ExtractionError(ScoutError):
    """Evaluator text could not be turned into a Score."""


class MalformedResponseError(ExtractionError):
    """No JSON object found in the response, or it does not parse."""


class SchemaError(ExtractionError):
    """JSON parsed but required score fields are missing or invalid."""


class ProjectSourceError(ScoutError):
    """The upstream project search API failed or returned an unusable payload."""
    def __init__(self, message: str):
        super().__init__(message, retryable=True)
