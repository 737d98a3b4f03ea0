"""
API request and response models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from regmatrix.models.document import AnalysisStatus, DocumentType
from regmatrix.models.matrix import ComplianceStatus


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Batch Models
# =============================================================================


class BatchCreateRequest(_ApiModel):
    """Submit documents, or all T&Cs of the given products, as one batch."""

    document_ids: list[str] | None = None
    product_ids: list[str] | None = None


class BatchCreateResponse(_ApiModel):
    batch_job_id: str
    provider_batch_id: str
    status: str
    total_requests: int


class BatchResolveResponse(_ApiModel):
    resolved: int
    jobs: list[dict] = Field(default_factory=list)


# =============================================================================
# Document Models
# =============================================================================


class AnalysisMode(str, Enum):
    BATCH = "batch"
    REALTIME = "realtime"


class DocumentUploadRequest(_ApiModel):
    document_type: DocumentType
    file_name: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class DocumentStatusResponse(_ApiModel):
    id: str
    document_type: str
    file_name: str
    analysis_status: AnalysisStatus
    analysis_result: dict | None = None
    analysis_error: str | None = None
    analysis_completed_at: datetime | None = None
    created_at: datetime | None = None


class DocumentUploadResponse(DocumentStatusResponse):
    batch_job_id: str | None = None
    batch_error: str | None = None


class AnalysisTriggerRequest(_ApiModel):
    mode: AnalysisMode = AnalysisMode.BATCH


class AnalysisTriggerResponse(_ApiModel):
    document_id: str
    mode: AnalysisMode
    analysis_status: AnalysisStatus
    batch_job_id: str | None = None


# =============================================================================
# Matrix Models
# =============================================================================


class MatrixUpdateRequest(_ApiModel):
    entry_id: str
    compliance_status: ComplianceStatus | None = None
    owner: str | None = None
    evidence: str | None = None
    notes: str | None = None


# =============================================================================
# Clause Models
# =============================================================================


class ClauseGenerationRequest(_ApiModel):
    """Restrict drafting to these obligations; all applicable ones when omitted."""

    obligation_ids: list[str] | None = None
