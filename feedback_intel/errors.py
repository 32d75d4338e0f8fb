"""
Error taxonomy shared by the pipelines and the HTTP layer.
"""


class FeedbackPipelineError(Exception):
    """Base class for failures raised by the feedback pipelines."""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.message = message
        self.details = details or message


class InvalidInput(FeedbackPipelineError):
    """Client supplied a missing or malformed field. Nothing was written."""


class UpstreamFailure(FeedbackPipelineError):
    """The classifier or embedding model was unreachable or returned an error."""


class StoreUnavailable(FeedbackPipelineError):
    """The record store could not be reached or rejected the statement."""


class IndexUnavailable(FeedbackPipelineError):
    """The vector index could not be queried."""
