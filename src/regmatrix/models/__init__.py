"""
Pydantic models for regmatrix.

This module contains the data models used throughout the application:
- Obligation models for the regulatory corpus
- Document and analysis result models
- Batch job models
- Generated clause models
- Compliance matrix models
- API models for request/response schemas
"""

from regmatrix.models.batch import (
    AnalysisPrompt,
    BatchItemStatus,
    BatchJobStatus,
    BatchJobSummary,
    BatchRequest,
    BatchResultEntry,
    ProviderBatchStatus,
    ProviderProcessingStatus,
)
from regmatrix.models.clause import GeneratedClause, GeneratedClauseList
from regmatrix.models.document import (
    AnalysisResult,
    AnalysisStatus,
    DocumentType,
    FindingStatus,
    ObligationFinding,
    ProductDocument,
    RegulationResult,
)
from regmatrix.models.matrix import (
    ComplianceStatus,
    DocumentEvidence,
    EvidenceSource,
    MatrixEntry,
)
from regmatrix.models.obligation import EvidenceScope, MatchedObligation, ObligationKind

__all__ = [
    # Obligation models
    "EvidenceScope",
    "MatchedObligation",
    "ObligationKind",
    # Document models
    "AnalysisResult",
    "AnalysisStatus",
    "DocumentType",
    "FindingStatus",
    "ObligationFinding",
    "ProductDocument",
    "RegulationResult",
    # Batch models
    "AnalysisPrompt",
    "BatchItemStatus",
    "BatchJobStatus",
    "BatchJobSummary",
    "BatchRequest",
    "BatchResultEntry",
    "ProviderBatchStatus",
    "ProviderProcessingStatus",
    # Clause models
    "GeneratedClause",
    "GeneratedClauseList",
    # Matrix models
    "ComplianceStatus",
    "DocumentEvidence",
    "EvidenceSource",
    "MatrixEntry",
]
