"""Exceptions raised by the generation job queue."""


class JobQueueError(Exception):
    """Base class for job queue errors."""


class GenerationError(JobQueueError):
    """The generation backend failed or returned an unusable result."""


class MergeTargetMissingError(JobQueueError):
    """The target document or module could not be found at merge time."""


class StoreUnavailableError(JobQueueError):
    """The job store or document store cannot be reached."""


class EnumerationError(JobQueueError):
    """A batch submission produced no jobs at all."""


class BatchNotFoundError(JobQueueError):
    """No jobs exist for the requested batch."""
