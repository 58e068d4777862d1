"""Structured exception hierarchy for Terraform state ingestion.

Every error raised while configuring backends, fetching state or producing
rows derives from :class:`TerraformIngestError`, which carries the offending
backend name and a details mapping (path, bucket, key, ...) so a failed run
can be diagnosed from the message alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "TerraformIngestError",
    "ConfigError",
    "ResolutionError",
    "StateReadError",
    "StateFormatError",
    "UnsupportedVersionError",
    "RegionDiscoveryError",
    "InvalidRoleArnError",
    "RoleAssumptionError",
    "FetchFailure",
    "ObjectFetchError",
    "SerializationError",
    "TypeMismatchError",
    "NoBackendSelectedError",
]


class TerraformIngestError(Exception):
    """Base exception for all ingestion errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.backend = backend
        self.details = details or {}
        self.suggestion = suggestion

        self.message = message

        # Build full message
        parts = [f"[{backend}] {message}" if backend else message]

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "backend": self.backend,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigError(TerraformIngestError):
    """Invalid backend configuration.

    Raised for missing or duplicate backend names, unsupported backend kinds
    and missing or unknown settings.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class ResolutionError(TerraformIngestError):
    """A declared backend could not be materialized into a state document.

    Resolution errors abort the whole ingestion run.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.cause = cause

        details = kwargs.pop("details", None) or {}
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class StateReadError(ResolutionError):
    """The local state file could not be opened."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        self.path = path

        details = kwargs.pop("details", None) or {}
        if path:
            details["path"] = path

        suggestion = kwargs.pop("suggestion", None) or (
            "Check that the path exists and is readable by the current user."
        )
        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class StateFormatError(ResolutionError):
    """The payload is not a valid Terraform state JSON document."""


class UnsupportedVersionError(ResolutionError):
    """The state document declares a schema version other than the supported one."""

    def __init__(
        self,
        message: str,
        *,
        version: Any = None,
        supported: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.version = version
        self.supported = supported

        details = kwargs.pop("details", None) or {}
        details["version"] = version
        if supported is not None:
            details["supported_version"] = supported

        super().__init__(message, details=details, **kwargs)


class RegionDiscoveryError(ResolutionError):
    """The region of an S3 bucket could not be discovered."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        suggestion = kwargs.pop("suggestion", None) or (
            "Set 'region' explicitly in the backend config."
        )
        super().__init__(message, suggestion=suggestion, **kwargs)


class InvalidRoleArnError(ResolutionError):
    """The declared role ARN is malformed."""

    def __init__(self, message: str, *, role_arn: Optional[str] = None, **kwargs: Any) -> None:
        self.role_arn = role_arn

        details = kwargs.pop("details", None) or {}
        if role_arn is not None:
            details["role_arn"] = role_arn

        suggestion = kwargs.pop("suggestion", None) or (
            "Expected a role ARN like arn:aws:iam::123456789012:role/ReadState"
        )
        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class RoleAssumptionError(ResolutionError):
    """STS refused to issue temporary credentials for the declared role."""


class FetchFailure(str, Enum):
    """Why an object fetch failed."""

    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    TRANSIENT = "transient"
    OTHER = "other"


class ObjectFetchError(ResolutionError):
    """The state object could not be fetched from the bucket.

    ``reason`` separates a missing object from a permission problem and from
    a transient (throttling, 5xx, network) failure.
    """

    _SUGGESTIONS = {
        FetchFailure.NOT_FOUND: "Check the bucket and key in the backend config.",
        FetchFailure.ACCESS_DENIED: (
            "Check that the credentials (or assumed role) allow s3:GetObject "
            "on the state object."
        ),
        FetchFailure.TRANSIENT: "The request may succeed if the run is retried.",
    }

    def __init__(self, message: str, *, reason: FetchFailure, **kwargs: Any) -> None:
        self.reason = reason

        details = kwargs.pop("details", None) or {}
        details["reason"] = reason.value

        suggestion = kwargs.pop("suggestion", None) or self._SUGGESTIONS.get(reason)
        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class SerializationError(TerraformIngestError):
    """Instance attributes could not be serialized to JSON."""


class TypeMismatchError(TerraformIngestError):
    """A walker entry point received a parent item of the wrong type."""

    def __init__(self, expected: str, actual: Any, **kwargs: Any) -> None:
        self.expected = expected
        self.actual_type = type(actual).__name__
        super().__init__(
            f"not terraform {expected}: got {self.actual_type}",
            **kwargs,
        )


class NoBackendSelectedError(TerraformIngestError):
    """An operation that needs a current backend ran against an empty registry."""
