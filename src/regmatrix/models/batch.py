"""
Batch job models.

A batch job is one submission to the provider's batch endpoint; each item is
one (document, regulation group) unit of work correlated by ``custom_id``.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CUSTOM_ID_MAX_LENGTH = 64


class BatchJobStatus(str, Enum):
    """Internal status of a batch job."""

    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal jobs are never polled against the provider again."""
        return self in (BatchJobStatus.COMPLETED, BatchJobStatus.FAILED)


ACTIVE_JOB_STATUSES = (
    BatchJobStatus.SUBMITTED.value,
    BatchJobStatus.PROCESSING.value,
    BatchJobStatus.CANCELLED.value,
)


class BatchItemStatus(str, Enum):
    """Status of one item; provider failure kinds are kept verbatim."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    ERRORED = "errored"
    EXPIRED = "expired"
    CANCELED = "canceled"


class ProviderProcessingStatus(str, Enum):
    """Batch processing status as reported by the provider."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    CANCELING = "canceling"
    ENDED = "ended"


class AnalysisPrompt(BaseModel):
    """One LLM request: system instructions, user message and token budget."""

    system: str
    user_message: str
    max_tokens: int = Field(..., gt=0)


class BatchRequest(BaseModel):
    """A prompt bound to its correlation identity."""

    custom_id: str = Field(..., max_length=CUSTOM_ID_MAX_LENGTH)
    document_id: str
    regulation_title: str
    prompt: AnalysisPrompt


class ProviderBatchStatus(BaseModel):
    """Provider-side view of a batch."""

    provider_batch_id: str
    processing_status: ProviderProcessingStatus


class BatchResultEntry(BaseModel):
    """
    One entry from the provider result stream.

    ``type`` is ``succeeded`` (with ``text``) or a failure kind such as
    ``errored``, ``expired`` or ``canceled``.
    """

    custom_id: str
    type: str
    text: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.type == BatchItemStatus.SUCCEEDED.value


class BatchJobSummary(BaseModel):
    """Status snapshot of a batch job returned to callers."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    provider_batch_id: str
    status: BatchJobStatus
    total_requests: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    error: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
