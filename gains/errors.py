"""Exception hierarchy shared by providers, AI backends and the job queue."""

from typing import Optional

# Error tags carried by ProviderResult / AIBackendError
ERR_RATE_LIMITED = "rate_limited"
ERR_INVALID_SYMBOL = "invalid_symbol"
ERR_TRANSPORT = "transport_error"
ERR_INVALID_RESPONSE = "invalid_response"
ERR_AUTH = "auth_error"
ERR_QUOTA = "quota_exhausted"
ERR_TIMEOUT = "timeout"

PERMANENT_ERRORS = frozenset({ERR_AUTH, ERR_QUOTA})


class GainsError(Exception):
    """Base class for all application errors."""


class ConfigurationError(GainsError):
    """Mandatory configuration is missing (e.g. no AI backend credential)."""


class AIBackendError(GainsError):
    """A single AI backend call failed."""

    def __init__(
        self,
        backend: str,
        tag: str,
        detail: str = "",
        status_code: Optional[int] = None,
    ):
        self.backend = backend
        self.tag = tag
        self.detail = detail
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"{backend}: {tag}{status} {detail}".strip())

    @property
    def permanent(self) -> bool:
        """Invalid credentials and exhausted quota will not heal by retrying."""
        return self.tag in PERMANENT_ERRORS


class RecommendationParseError(GainsError):
    """AI output could not be turned into at least one valid recommendation."""


class RecommendationError(GainsError):
    """Every recommendation source failed; message is safe to show to users."""


class JobNotFoundError(GainsError):
    """Job id does not exist in the queue."""


def truncate_body(text: Optional[str], limit: int = 200) -> str:
    """Shorten a response body for log lines."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
