"""
Error taxonomy for the Domain Expert query engine.

Every terminal failure carries a short, stable ``code`` and a fixed
human-readable ``summary``. Only those two fields ever reach the caller;
``detail`` is for server-side logs and must never contain credentials.
"""

from typing import Optional


class DomainExpertError(Exception):
    """Base class for all request-level failures."""

    code = "InternalError"
    summary = "The request could not be completed."
    http_status = 500

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.summary
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        """Convert to the structured error returned to callers."""
        return {"code": self.code, "message": self.summary}


class AuthenticationFailure(DomainExpertError):
    """Inbound credential is malformed, expired or addressed elsewhere."""

    code = "AuthenticationFailure"
    summary = "The supplied credential was not accepted."
    http_status = 401


class UnknownDomain(DomainExpertError):
    """No DomainContext is registered under the requested domain id."""

    code = "UnknownDomain"
    summary = "The requested business domain is not available."
    http_status = 404


class GenerationUnavailable(DomainExpertError):
    """The language-model call could not be completed.

    Recovered locally by the bounded regeneration loop; never surfaced.
    """

    code = "GenerationUnavailable"
    summary = "Query generation is temporarily unavailable."
    http_status = 503


class UngeneratableQuery(DomainExpertError):
    """No safe query could be produced within the attempt budget."""

    code = "UngeneratableQuery"
    summary = "A safe query could not be produced for this question."
    http_status = 422


class ExecutionDenied(DomainExpertError):
    """The data platform rejected the caller's credential or policy."""

    code = "ExecutionDenied"
    summary = "Access to the requested data was denied."
    http_status = 403


class ExecutionTimeout(DomainExpertError):
    """The warehouse query exceeded its deadline."""

    code = "ExecutionTimeout"
    summary = "The query did not complete in time."
    http_status = 504


class InternalError(DomainExpertError):
    """Catch-all for unexpected adapter failures."""

    code = "InternalError"
    summary = "The request could not be completed."
    http_status = 500


class ContextLoadError(Exception):
    """Raised when a domain context artifact is malformed."""

    pass
