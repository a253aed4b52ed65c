"""
Error taxonomy for the build-and-publish pipeline.

Every error carries a stable ``code`` so the HTTP and CLI layers can map it
without string matching.
"""

from typing import Any, Dict, Optional


class PublisherError(Exception):
    """Base class for all pipeline errors."""

    code = "PUBLISHER_ERROR"

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            **self.extra,
        }


class NotFoundError(PublisherError):
    """Raised when a profile or build id does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity_kind: str, entity_id: str):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(
            f"{entity_kind} '{entity_id}' not found.",
            entity_kind=entity_kind,
            entity_id=entity_id,
        )


class ValidationError(PublisherError):
    """Raised when a request is rejected before any side effect."""

    code = "VALIDATION_FAILED"


class ConflictError(PublisherError):
    """Raised when a write would break a uniqueness or immutability rule."""

    code = "CONFLICT"


class BuildConflictError(ConflictError):
    """Raised when a rebuild is requested while another one is running."""

    code = "BUILD_CONFLICT"

    def __init__(self, profile_id: str, running_build_id: Optional[str] = None):
        self.profile_id = profile_id
        self.running_build_id = running_build_id
        super().__init__(
            f"Profile '{profile_id}' already has a build in progress.",
            profile_id=profile_id,
            running_build_id=running_build_id,
        )


class InvalidTransitionError(PublisherError):
    """Raised when a terminal build would change status again."""

    code = "INVALID_TRANSITION"

    def __init__(self, build_id: str, current: str, requested: str):
        super().__init__(
            f"Build '{build_id}' is {current}; cannot transition to {requested}.",
            build_id=build_id,
            current_status=current,
            requested_status=requested,
        )


class StorageError(PublisherError):
    """Raised when the object store cannot be read or written."""

    code = "STORAGE_FAILURE"


class PersistenceError(PublisherError):
    """Raised when the database rejects a write.

    Distinct from a normal build failure: the build row may not reflect the
    outcome, so callers must surface this separately.
    """

    code = "PERSISTENCE_FAILURE"


class SourceNotFoundError(PublisherError):
    """Raised when a profile's source tree is missing or empty."""

    code = "SOURCE_NOT_FOUND"


class BuildCancelledError(PublisherError):
    """Raised when a rebuild observes its cancellation token."""

    code = "BUILD_CANCELLED"

    def __init__(self, message: str = "Build was cancelled."):
        super().__init__(message)


class BuildFailedError(PublisherError):
    """A rebuild ended in the failed state; carries the build id for post-mortem."""

    code = "BUILD_FAILED"

    def __init__(self, build_id: str, cause: PublisherError):
        self.build_id = build_id
        self.cause = cause
        super().__init__(
            cause.message,
            build_id=build_id,
            cause=cause.code,
        )
