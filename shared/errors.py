"""
Error taxonomy for the generation pipeline.

Every error carries an optional job_id and a machine-readable code so the
orchestrator can record `error_kind` on the job without string matching.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, job_id: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = str(job_id) if job_id is not None else None
        self.code = code or self.__class__.__name__

    @property
    def kind(self) -> str:
        """Error kind recorded on failed jobs."""
        return self.__class__.__name__


class ConfigError(PipelineError):
    """Invalid or missing configuration."""
    pass


class ValidationError(PipelineError):
    """Malformed job config or prompt. Raised before any backend call."""
    pass


class RetryableError(PipelineError):
    """Transient failure that may succeed on retry."""
    pass


class TransientBackendError(RetryableError):
    """Network error, timeout or 5xx from a generation backend."""
    pass


class RateLimitError(RetryableError):
    """Backend rejected the call with a rate limit (HTTP 429)."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, job_id=job_id, code=code)
        self.retry_after = retry_after


class GenerationError(PipelineError):
    """Permanent backend failure (bad request, failed prediction, bad output)."""
    pass


class QuotaExceededError(PipelineError):
    """Credit ceiling or provider quota exhausted. Job-fatal."""
    pass


class CompositeError(PipelineError):
    """Compositor subprocess failed. Job-fatal."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        code: Optional[str] = None,
        work_dir: Optional[str] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, job_id=job_id, code=code)
        self.work_dir = work_dir
        self.returncode = returncode


class CancellationError(PipelineError):
    """Job was cancelled by its owner."""
    pass


class JobNotFoundError(PipelineError):
    """No job record with the given id."""
    pass


class JobImmutableError(PipelineError):
    """Attempt to mutate a job that already reached a terminal state."""
    pass
