"""
Exceptions raised by the counting pipeline.
"""


class CountPipelineError(Exception):
    """Base class for all pipeline failures."""


class UsageError(CountPipelineError):
    """Bad input or option, detected before any checkpoint is touched."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class MissingArtifactError(CountPipelineError):
    """An artifact produced by an upstream step is not on disk."""


class StepFailedError(CountPipelineError):
    def __init__(self, scope: str, reason: str):
        super().__init__(f"Step '{scope}' failed: {reason}")
        self.scope = scope
        self.reason = reason


class ConsistencyError(CountPipelineError):
    """Produced output does not match what was expected from its inputs."""
