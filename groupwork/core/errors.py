"""Error types raised by the classwork core.

Routes translate these into HTTP responses; the core itself never maps them
to status codes.
"""


class GroupworkError(Exception):
    """Base class for every failure the core reports."""


class ConstraintViolation(GroupworkError):
    """A proposed group breaks the pairing rule or is otherwise not allowed."""

    def __init__(self, message: str, pairs: list[tuple[int, int]] | None = None):
        super().__init__(message)
        self.pairs = pairs or []


class InvalidScore(GroupworkError):
    """A score outside the accepted range was supplied."""

    def __init__(self, score, min_score: int, max_score: int):
        super().__init__(f"Score must be between {min_score} and {max_score}, got {score!r}.")
        self.score = score


class NotFound(GroupworkError):
    """A referenced assignment or user does not exist."""

    def __init__(self, kind: str, identifier):
        super().__init__(f"{kind} {identifier} not found.")
        self.kind = kind
        self.identifier = identifier


class StorageError(GroupworkError):
    """The database failed while serving an operation."""
