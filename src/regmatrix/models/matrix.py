"""
Compliance matrix models.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from regmatrix.models.document import FindingStatus


class ComplianceStatus(str, Enum):
    """Compliance status of one (product, obligation) pairing."""

    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    IN_PROGRESS = "in_progress"
    NOT_ASSESSED = "not_assessed"
    NOT_APPLICABLE = "not_applicable"
    NOT_EVIDENCED = "not_evidenced"


class EvidenceSource(str, Enum):
    """Provenance of a matrix entry's assessment."""

    MANUAL = "manual"
    DOCUMENT_ANALYSIS = "document_analysis"
    MIXED = "mixed"


class DocumentEvidence(BaseModel):
    """Evidence contributed to a matrix entry by one analysed document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    document_id: str
    document_type: str
    status: FindingStatus
    evidence: str = ""
    clause_reference: str | None = None
    quality_score: float | None = None
    gaps: list[str] = Field(default_factory=list)
    recommendation: str = ""

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MatrixEntry(BaseModel):
    """Read model of a compliance matrix entry."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    product_id: str
    obligation_id: str
    compliance_status: ComplianceStatus = ComplianceStatus.NOT_ASSESSED
    evidence_source: EvidenceSource = EvidenceSource.MANUAL
    evidence: str | None = None
    document_evidence: list[dict[str, Any]] = Field(default_factory=list)
    owner: str | None = None
    notes: str | None = None
    reviewed_at: datetime | None = None
    updated_at: datetime | None = None

    # Populated when the entry is listed alongside its obligation
    regulation_title: str | None = None
    section_number: str | None = None
    obligation_summary: str | None = None
    evidence_scope: str | None = None
