"""Dispatch error taxonomy."""

from __future__ import annotations


class DispatchError(RuntimeError):
    """Base dispatch engine error."""


class DeliveryFailedError(DispatchError):
    """One delivery attempt returned failure or raised."""

    def __init__(self, task_id: str, attempt: int, reason: str) -> None:
        super().__init__(f"Delivery of {task_id} failed on attempt {attempt}: {reason}")
        self.task_id = task_id
        self.attempt = attempt
        self.reason = reason


class MaxRetriesExceededError(DispatchError):
    """Terminal failure after the retry budget is spent."""

    def __init__(self, task_id: str, attempts: int, last_error: str | None) -> None:
        super().__init__(
            f"Delivery of {task_id} gave up after {attempts} attempts: {last_error or 'unknown'}",
        )
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error


class DuplicateTaskIdError(DispatchError, ValueError):
    """An explicit task id collides with a task that is still active."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task id is already active: {task_id}")
        self.task_id = task_id
