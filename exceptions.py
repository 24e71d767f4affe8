"""
Exception taxonomy for the verification workflow.

Validation errors: bad input, the case is unchanged and a retry will not help.
State errors: the operation is not legal for the case as it stands.
Collaborator errors: a dependency failed; retryable by the caller.
"""

from typing import Optional


class VerificationError(Exception):
    """Base exception for verification workflow errors."""

    retryable = False

    def __init__(self, message: str, case_id: Optional[str] = None):
        self.case_id = case_id
        self.message = message
        super().__init__(f"[{case_id}] {message}" if case_id else message)


# =============================================================================
# Validation errors
# =============================================================================

class ValidationError(VerificationError):
    """Raised when input fails validation."""
    pass


class InvalidDocument(ValidationError):
    """Upload rejected on size, MIME type or extension."""
    pass


class DuplicateDocument(ValidationError):
    def __init__(self, document_type: str, side: Optional[str] = None, case_id: Optional[str] = None):
        self.document_type = document_type
        self.side = side
        label = f"{document_type} ({side})" if side else document_type
        super().__init__(f"Document {label} already submitted", case_id)


class UnexpectedDocumentType(ValidationError):
    def __init__(self, document_type: str, tier: str, case_id: Optional[str] = None):
        self.document_type = document_type
        self.tier = tier
        super().__init__(f"Document type {document_type} is not accepted for {tier}", case_id)


class MissingDocuments(ValidationError):
    def __init__(self, missing: list, case_id: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(f"Missing required documents: {', '.join(self.missing)}", case_id)


class InvalidOwner(ValidationError):
    """Beneficial owner data is incomplete or out of range."""
    pass


class OwnershipExceeded(ValidationError):
    def __init__(self, total: float, case_id: Optional[str] = None):
        self.total = total
        super().__init__(f"Total ownership would be {total:g}%, exceeds 100%", case_id)


class IncompleteOwnership(ValidationError):
    """Ownership coverage is not complete enough to submit."""
    pass


class DeclarationRequired(ValidationError):
    def __init__(self, declaration: str, case_id: Optional[str] = None):
        self.declaration = declaration
        super().__init__(f"Declaration '{declaration}' must be confirmed", case_id)


# =============================================================================
# State errors
# =============================================================================

class StateError(VerificationError):
    """Raised when an operation is not legal in the case's current state."""
    pass


class InvalidTransition(StateError):
    def __init__(self, current: str, event: str, case_id: Optional[str] = None):
        self.current = current
        self.event = event
        super().__init__(f"Transition '{event}' is not allowed from {current}", case_id)


class InvalidState(StateError):
    def __init__(self, status: str, operation: str, case_id: Optional[str] = None):
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} while case is {status}", case_id)


class DuplicateActiveCase(StateError):
    def __init__(self, subject_id: str, existing_case_id: str):
        self.subject_id = subject_id
        self.existing_case_id = existing_case_id
        super().__init__(f"Subject {subject_id} already has active case {existing_case_id}", existing_case_id)


class OverrideRequired(StateError):
    """Approving a case with a sanctions match requires an explicit override."""
    pass


class CaseNotFound(StateError):
    def __init__(self, case_id: str):
        super().__init__("Verification case not found", case_id)


# =============================================================================
# Collaborator errors
# =============================================================================

class CollaboratorError(VerificationError):
    """A collaborator failed transiently. The caller may retry."""

    retryable = True


class ScreeningUnavailable(CollaboratorError):
    def __init__(self, operation: str, reason: str, case_id: Optional[str] = None):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Screening unavailable during {operation}: {reason}", case_id)


class DocumentStorageError(CollaboratorError):
    """Document capture/storage failed."""
    pass
