"""Exception types raised across the synthesis pipeline."""


class CrucibleError(Exception):
    """Base class for all pipeline errors."""


class OracleCallError(CrucibleError):
    """A generative oracle call failed.

    Carries the HTTP-ish status code when the provider exposed one, so the
    retry envelope can classify it without string matching.
    """

    def __init__(self, message: str, *, status: int | None = None, provider: str | None = None):
        super().__init__(message)
        self.status = status
        self.provider = provider


class QuotaExhaustedError(OracleCallError):
    """The provider reported an exhausted quota (not a short-lived rate limit)."""


class PipelineCancelledError(CrucibleError):
    """Raised when a run is cancelled before it completes.

    A cancelled run never returns a partial result.
    """

    def __init__(self, stage: str | None = None):
        message = f"Pipeline cancelled at stage '{stage}'" if stage else "Pipeline cancelled"
        super().__init__(message)
        self.stage = stage
