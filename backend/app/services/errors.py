"""
Claim Resolution Engine - Exception Hierarchy

Every failure raised by the decision engine carries a deterministic code so
routers can translate it without string matching:

- NOT_FOUND: missing claim/report/request (never auto-created)
- PRECONDITION_FAILED: wrong state for the requested transition
- INVALID_ARGUMENT: malformed caller input
- MALFORMED_UPSTREAM_RESPONSE: the model returned non-JSON or out-of-domain values
- DEPENDENCY_FAILURE: storage, email, or model transport errors
"""
from typing import Any, Dict, Optional


class ClaimEngineError(Exception):
    """Base exception for all decision engine errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(ClaimEngineError):
    code = "NOT_FOUND"


class PreconditionFailedError(ClaimEngineError):
    code = "PRECONDITION_FAILED"


class InvalidArgumentError(ClaimEngineError):
    code = "INVALID_ARGUMENT"


# =============================================================================
# UPSTREAM (MODEL) RESPONSE ERRORS
# =============================================================================

class MalformedResponseError(ClaimEngineError):
    """The model returned something that cannot be trusted as data."""
    code = "MALFORMED_UPSTREAM_RESPONSE"


class InvalidClassificationError(MalformedResponseError):
    """Classifier status outside CLOSE / DISPUTE_OFFER / LEGAL_REVIEW / NEED_DOCS."""
    code = "INVALID_CLASSIFICATION"


class MissingFieldError(MalformedResponseError):
    """A required field is absent from a stored or returned payload."""
    code = "MISSING_FIELD"


# =============================================================================
# DEPENDENCY FAILURES
# =============================================================================

class DependencyError(ClaimEngineError):
    code = "DEPENDENCY_FAILURE"


class LLMClientError(DependencyError):
    code = "LLM_FAILURE"


class StorageError(DependencyError):
    code = "STORAGE_FAILURE"


class EmailDeliveryError(DependencyError):
    code = "EMAIL_FAILURE"


class ArtifactAssemblyError(DependencyError):
    """Rendering, downloading, or packing the legal package failed."""
    code = "ARTIFACT_ASSEMBLY_FAILURE"


class PackageDeliveryError(DependencyError):
    """
    The approval committed but the package never reached the legal partner.

    Callers treat this as "approved, delivery pending" and may re-trigger
    delivery; the approval itself is durable.
    """
    code = "PACKAGE_DELIVERY_FAILURE"

    def __init__(self, message: str, approval_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.approval_id = approval_id
        self.details.setdefault("approval_id", approval_id)
        self.details.setdefault("approval_committed", True)
