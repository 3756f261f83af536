from __future__ import annotations


class RecommendationError(Exception):
    """Base class for every error raised by the recommendation engine."""


class UpstreamTimeout(RecommendationError):
    """An upstream call did not settle inside its deadline."""

    def __init__(self, label: str, timeout_ms: float) -> None:
        super().__init__(f"{label} timed out after {timeout_ms:.0f} ms")
        self.label = label
        self.timeout_ms = timeout_ms


class UpstreamFailure(RecommendationError):
    """A network or service error from an upstream data source."""


class EmptyResult(RecommendationError):
    """A tier produced nothing usable once filtering was applied."""


class InvalidRequestError(RecommendationError, ValueError):
    """The inbound request is malformed (unknown enum value, bad limit, ...)."""


class ConfigurationError(RecommendationError, ValueError):
    """Engine configuration is outside its allowed bounds."""
