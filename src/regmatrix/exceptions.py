"""
Exception hierarchy for regmatrix.

Failures inside one (document, regulation) unit are represented as item
statuses, not exceptions; the classes here cover the failures that do
propagate to a caller.
"""

from typing import Sequence


class RegMatrixError(Exception):
    """Base class for all regmatrix errors."""


# =============================================================================
# Lookup failures
# =============================================================================


class NotFoundError(RegMatrixError):
    """A referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class ProductNotFoundError(NotFoundError):
    entity = "Product"


class DocumentNotFoundError(NotFoundError):
    entity = "Document"


class BatchJobNotFoundError(NotFoundError):
    entity = "Batch job"


class MatrixEntryNotFoundError(NotFoundError):
    entity = "Matrix entry"


# =============================================================================
# Input validation
# =============================================================================


class InputValidationError(RegMatrixError):
    """Caller supplied input that cannot be processed."""


class NoAnalysableDocumentsError(InputValidationError):
    """None of the requested documents can be submitted for analysis."""

    def __init__(self, document_ids: Sequence[str] = ()):
        self.document_ids = list(document_ids)
        super().__init__("No analysable documents found")


class InvalidDocumentTypeError(InputValidationError):
    """Document type is not one of the supported types."""


# =============================================================================
# Provider failures
# =============================================================================


class ProviderError(RegMatrixError):
    """The external LLM provider rejected or failed a call."""


class ProviderSubmissionError(ProviderError):
    """
    Batch submission failed.

    The targeted documents were already marked ``queued``; the caller is
    responsible for resetting them to ``pending``.
    """

    def __init__(self, message: str, document_ids: Sequence[str] = ()):
        self.document_ids = list(document_ids)
        super().__init__(message)


class ProviderStatusError(ProviderError):
    """Provider status lookup failed."""


# =============================================================================
# Decoding and result processing
# =============================================================================


class DecodeError(RegMatrixError):
    """An LLM response could not be decoded after all parse strategies."""

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class ResultProcessingError(RegMatrixError):
    """Merging a finished batch job failed part way; safe to retry."""
