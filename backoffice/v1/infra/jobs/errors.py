"""
Error taxonomy for job processing.

Processors signal how a failure should be treated by the exception they raise:
anything derived from ``NonRetryableJobError`` dead-letters the job at once,
every other exception consumes one attempt of the retry budget.
"""


class JobError(Exception):
    """Base exception for job processing errors."""


class NonRetryableJobError(JobError):
    """Failure that retrying cannot fix (bad payload, missing configuration)."""


class InvalidPayloadError(NonRetryableJobError):
    """Job payload is missing required fields or has malformed values."""


class UnknownJobTypeError(NonRetryableJobError):
    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class ConfigurationError(JobError):
    """Startup configuration is invalid; the worker must not start."""
