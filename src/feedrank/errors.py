"""Error taxonomy for the feed ranking core."""


class FeedRankError(Exception):
    """Base class for all errors raised by the core."""


class InputValidationError(FeedRankError, ValueError):
    """Raised synchronously for a bad user id, limit, interaction type or config value."""


class UpstreamUnavailable(FeedRankError):
    """A content/user repository or analysis service could not be reached."""

    def __init__(self, service: str, message: str = "") -> None:
        self.service = service
        super().__init__(f"{service} unavailable" + (f": {message}" if message else ""))


class FeedTimeoutError(UpstreamUnavailable):
    """The caller's deadline passed before any ranking could be produced."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__("feed", f"no ranking available within {timeout:.3f}s")


class PredictorUnavailable(FeedRankError):
    """The engagement predictor cannot serve; callers degrade to base-score ranking."""


class StaleDataWarning(UserWarning):
    """A profile or the trending index is older than the freshness threshold.

    Only ever logged; never raised to callers.
    """
