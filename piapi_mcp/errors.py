from typing import Optional


class MediaTaskError(Exception):
    """Base for every failure a tool caller is allowed to see"""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id

    def __str__(self) -> str:
        if self.task_id:
            return f"Task {self.task_id}: {self.message}"
        return self.message


class ConfigurationError(MediaTaskError):
    pass


class ParameterValidationError(MediaTaskError):
    pass


class SubmissionError(MediaTaskError):
    pass


class StatusCheckError(MediaTaskError):
    pass


class GenerationFailedError(MediaTaskError):
    pass


class EmptyOutputError(MediaTaskError):
    pass


class MalformedOutputError(MediaTaskError):
    pass


class NoResultError(MediaTaskError):
    pass


class TaskTimeoutError(MediaTaskError, TimeoutError):
    def __init__(self, timeout_seconds: float, task_id: Optional[str] = None):
        super().__init__(
            f"Generation did not complete within {timeout_seconds:g} seconds",
            task_id=task_id,
        )
        self.timeout_seconds = timeout_seconds


class ProviderConnectionError(MediaTaskError):
    pass
