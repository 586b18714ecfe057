"""
Error taxonomy shared by the store adapters, the decision ledger and the
stage progression engine.

Store and ledger errors are raised unmodified up to the progression engine,
which logs them, journals the failed attempt and re-raises for the caller.
`retryable` tells a scheduler whether invoking again can help.
"""


class CofounderError(Exception):
    """Base class for all engine errors."""
    retryable = False


class StoreError(CofounderError):
    """The versioned store rejected or could not serve a request."""

    def __init__(self, message: str, repo: str = "", status: int | None = None):
        self.repo = repo
        self.status = status
        super().__init__(message)


class StoreUnavailable(StoreError):
    """Store unreachable, timed out, or returned a server error."""
    retryable = True


class ConflictingWrite(StoreError):
    """A concurrent writer moved the target before our write landed."""
    retryable = True


class NotFound(StoreError):
    """Branch, file or pull request does not exist."""


class PermissionDenied(StoreError):
    """Credentials lack access to the repository."""


class MalformedArtifact(CofounderError):
    """An artifact exists but cannot be parsed."""

    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: {detail}")


class CollaboratorFailure(CofounderError):
    """An external collaborator (generator or reviewer) failed."""


class GeneratorFailure(CollaboratorFailure):
    pass


class GeneratorTimeout(GeneratorFailure):
    pass


class ReviewerFailure(CollaboratorFailure):
    pass


class ReviewerTimeout(ReviewerFailure):
    pass


class InvariantViolation(CofounderError):
    """Ledger state contradicts an invariant. Never resolved automatically."""


class InvalidDecision(ValueError, CofounderError):
    """A proposed decision fails its preconditions."""
