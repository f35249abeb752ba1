"""Exceptions related to syncloop."""

from enum import StrEnum
from typing import Any, ClassVar

__all__ = [
    "ErrorCause",
    "SyncLoopException",
    "InputException",
    "ManifestParseError",
    "SourceException",
    "SourceUnreachable",
    "RevisionNotFound",
    "ClusterException",
    "ClusterUnreachable",
    "Unauthorized",
    "ValidationRejected",
    "RateLimited",
    "PartialApplyFailure",
    "CommandException",
    "ApplicationNotFoundError",
]


class ErrorCause(StrEnum):
    """Tag attached to a failed sync operation describing why it failed."""

    SOURCE_UNREACHABLE = "SourceUnreachable"
    REVISION_NOT_FOUND = "RevisionNotFound"
    MANIFEST_INVALID = "ManifestInvalid"
    CLUSTER_UNREACHABLE = "ClusterUnreachable"
    UNAUTHORIZED = "Unauthorized"
    VALIDATION_REJECTED = "ValidationRejected"
    RATE_LIMITED = "RateLimited"
    PARTIAL_APPLY_FAILURE = "PartialApplyFailure"
    UNKNOWN = "Unknown"


class SyncLoopException(Exception):
    """Generic base exception used for this library."""

    cause: ClassVar[ErrorCause] = ErrorCause.UNKNOWN


class InputException(SyncLoopException):
    """Raised when the input files or values are not formatted as expected."""

    cause = ErrorCause.MANIFEST_INVALID


class ManifestParseError(InputException):
    """Raised when the manifests read from a source are malformed."""


class SourceException(SyncLoopException):
    """Base class for errors talking to the version control source."""


class SourceUnreachable(SourceException):
    """Raised when the source repository can't be reached or cloned."""

    cause = ErrorCause.SOURCE_UNREACHABLE


class RevisionNotFound(SourceException):
    """Raised when the requested revision does not exist in the source."""

    cause = ErrorCause.REVISION_NOT_FOUND

    def __init__(self, repo_url: str, revision: str) -> None:
        super().__init__(f"Revision '{revision}' not found in {repo_url}")
        self.repo_url = repo_url
        self.revision = revision


class ClusterException(SyncLoopException):
    """Base class for errors returned by the cluster control plane."""

    transient: ClassVar[bool] = False
    """Transient errors are retried by the apply executor."""


class ClusterUnreachable(ClusterException):
    """Raised when the cluster API can't be reached."""

    cause = ErrorCause.CLUSTER_UNREACHABLE
    transient = True


class Unauthorized(ClusterException):
    """Raised when the cluster rejects the credentials or the operation."""

    cause = ErrorCause.UNAUTHORIZED


class ValidationRejected(ClusterException):
    """Raised when the cluster rejects a resource as invalid."""

    cause = ErrorCause.VALIDATION_REJECTED


class RateLimited(ClusterException):
    """Raised when the cluster throttles the client."""

    cause = ErrorCause.RATE_LIMITED
    transient = True


class PartialApplyFailure(SyncLoopException):
    """Raised when an apply aborted after some resources were already applied.

    Resources applied before the failure are left in place and are listed
    in `results`.
    """

    cause = ErrorCause.PARTIAL_APPLY_FAILURE

    def __init__(
        self, resource_name: str, error: SyncLoopException, results: list[Any]
    ) -> None:
        super().__init__(f"Apply of {resource_name} failed: {error}")
        self.resource_name = resource_name
        self.error = error
        self.results = results

    @property
    def error_cause(self) -> ErrorCause:
        """Return the cause of the underlying failure."""
        return self.error.cause


class CommandException(SyncLoopException):
    """Raised when there is a failure running a subcommand."""


class ApplicationNotFoundError(SyncLoopException):
    """Raised when an application is not registered."""
