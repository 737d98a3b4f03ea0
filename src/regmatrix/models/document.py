"""
Product document models and LLM analysis result types.

Analysis results are validated at the decode boundary so that merge logic
operates on checked structures rather than raw JSON blobs.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class DocumentType(str, Enum):
    """Supported document types."""

    TERMS_AND_CONDITIONS = "terms_and_conditions"
    PRODUCT_OVERVIEW = "product_overview"


DOCUMENT_LABELS = {
    DocumentType.TERMS_AND_CONDITIONS.value: "T&Cs",
    DocumentType.PRODUCT_OVERVIEW.value: "Overview",
}


class AnalysisStatus(str, Enum):
    """
    Analysis lifecycle of a document.

    ``queued`` is only used for batch submissions, ``analysing`` only for
    real-time analysis.
    """

    PENDING = "pending"
    QUEUED = "queued"
    ANALYSING = "analysing"
    COMPLETE = "complete"
    FAILED = "failed"


class FindingStatus(str, Enum):
    """How well a document addresses one obligation."""

    ADDRESSED = "addressed"
    PARTIALLY_ADDRESSED = "partially_addressed"
    NOT_ADDRESSED = "not_addressed"
    NOT_APPLICABLE = "not_applicable"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _none_to_list(v: Any) -> Any:
    return [] if v is None else v


class ObligationFinding(_CamelModel):
    """The model's assessment of a single obligation."""

    obligation_id: str
    status: FindingStatus
    evidence: str = ""
    clause_reference: str | None = None
    quality_score: float | None = None
    gaps: list[str] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        """Accept 'Partially Addressed', 'not-addressed' and similar spellings."""
        if isinstance(v, str):
            return v.strip().lower().replace(" ", "_").replace("-", "_")
        return v

    @field_validator("quality_score", mode="before")
    @classmethod
    def clamp_quality(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        try:
            score = float(v)
        except (TypeError, ValueError):
            return None
        return min(max(score, 0.0), 1.0)

    @field_validator("gaps", mode="before")
    @classmethod
    def gaps_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v] if v else []
        return _none_to_list(v)

    @field_validator("evidence", "recommendation", mode="before")
    @classmethod
    def text_or_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class RegulationResult(_CamelModel):
    """Decoded response for one regulation group."""

    overall_assessment: str = ""
    obligation_findings: list[ObligationFinding]
    missing_clauses: list[str] = Field(default_factory=list)
    quality_concerns: list[str] = Field(default_factory=list)

    @field_validator("missing_clauses", "quality_concerns", mode="before")
    @classmethod
    def lists_or_empty(cls, v: Any) -> Any:
        return _none_to_list(v)

    @field_validator("overall_assessment", mode="before")
    @classmethod
    def assessment_or_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class AnalysisResult(_CamelModel):
    """
    Merged analysis of a T&Cs document across all regulation groups.

    ``overall_assessment`` holds one ``[Regulation Title] text`` section per
    succeeded group; when some groups failed it ends with a warning suffix and
    ``failed_regulations`` lists their titles.
    """

    document_type: Literal["terms_and_conditions"] = "terms_and_conditions"
    overall_assessment: str = ""
    obligation_findings: list[ObligationFinding] = Field(default_factory=list)
    missing_clauses: list[str] = Field(default_factory=list)
    quality_concerns: list[str] = Field(default_factory=list)
    failed_regulations: list[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_regulations)

    def to_storage(self) -> dict[str, Any]:
        """Serialize with camelCase keys for persistence."""
        return self.model_dump(mode="json", by_alias=True)


class ProductDocument(_CamelModel):
    """Read model of an uploaded product document."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    product_id: str
    document_type: str
    file_name: str
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_result: dict[str, Any] | None = None
    analysis_error: str | None = None
    analysis_completed_at: datetime | None = None
    created_at: datetime | None = None
