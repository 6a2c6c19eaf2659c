"""
Exception hierarchy for the personalized content pipeline.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class SourceUnavailableError(PipelineError):
    """A content provider is misconfigured or returned an unusable response."""


class GenerationError(PipelineError):
    """The generation service failed or produced an empty completion."""


class StoreUnavailableError(PipelineError):
    """A persistent store could not be read and no fallback exists."""


class BudgetExhaustedError(PipelineError):
    """A paid call was refused because the daily hard limit has been reached."""
