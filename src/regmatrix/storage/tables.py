"""
SQLAlchemy table definitions for the relational store.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


# =============================================================================
# Regulatory corpus
# =============================================================================


class RegulationRow(Base):
    __tablename__ = "regulations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    citation: Mapped[str | None] = mapped_column(String(255), nullable=True)


class SectionRow(Base):
    __tablename__ = "regulation_sections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    regulation_id: Mapped[str] = mapped_column(
        ForeignKey("regulations.id"), nullable=False, index=True
    )
    number: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), default="")


class RuleRow(Base):
    __tablename__ = "rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    section_id: Mapped[str] = mapped_column(
        ForeignKey("regulation_sections.id"), nullable=False, index=True
    )
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, default="")


class ObligationRow(Base):
    __tablename__ = "obligations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    rule_id: Mapped[str] = mapped_column(ForeignKey("rules.id"), nullable=False, index=True)
    obligation_type: Mapped[str] = mapped_column(String(32), nullable=False)
    addressee: Mapped[str] = mapped_column(String(255), default="")
    action_text: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_scope: Mapped[str] = mapped_column(String(32), default="term_required")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class ProductTypeRow(Base):
    __tablename__ = "product_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class ApplicabilityRow(Base):
    """Precomputed many-to-many relation between obligations and product types."""

    __tablename__ = "obligation_product_applicability"
    __table_args__ = (UniqueConstraint("obligation_id", "product_type_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    obligation_id: Mapped[str] = mapped_column(
        ForeignKey("obligations.id"), nullable=False, index=True
    )
    product_type_id: Mapped[str] = mapped_column(
        ForeignKey("product_types.id"), nullable=False, index=True
    )
    relevance_score: Mapped[float] = mapped_column(Float, default=0.0)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)


class ClauseTemplateRow(Base):
    __tablename__ = "clause_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    obligation_id: Mapped[str] = mapped_column(
        ForeignKey("obligations.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    template_text: Mapped[str] = mapped_column(Text, default="")
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# Products and documents
# =============================================================================


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_type_id: Mapped[str] = mapped_column(
        ForeignKey("product_types.id"), nullable=False, index=True
    )
    customer_type: Mapped[str] = mapped_column(String(64), default="retail")
    distribution_channel: Mapped[str] = mapped_column(String(64), default="direct")
    jurisdictions: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DocumentRow(Base):
    __tablename__ = "product_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(
        ForeignKey("products.id"), nullable=False, index=True
    )
    document_type: Mapped[str] = mapped_column(String(64), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    analysis_status: Mapped[str] = mapped_column(String(32), default="pending")
    analysis_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    analysis_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    analysis_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# =============================================================================
# Batch jobs
# =============================================================================


class BatchJobRow(Base):
    __tablename__ = "batch_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider_batch_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), default="submitted", index=True)
    total_requests: Mapped[int] = mapped_column(Integer, default=0)
    succeeded_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Result-processing claim; see ComplianceStore.claim_batch_job
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class BatchJobItemRow(Base):
    __tablename__ = "batch_job_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    batch_job_id: Mapped[str] = mapped_column(
        ForeignKey("batch_jobs.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    custom_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # Not a foreign key: superseded documents are deleted while jobs are in flight
    document_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    regulation_title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    request: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# Compliance matrix
# =============================================================================


class MatrixEntryRow(Base):
    __tablename__ = "compliance_matrix_entries"
    __table_args__ = (UniqueConstraint("product_id", "obligation_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(
        ForeignKey("products.id"), nullable=False, index=True
    )
    obligation_id: Mapped[str] = mapped_column(
        ForeignKey("obligations.id"), nullable=False, index=True
    )
    compliance_status: Mapped[str] = mapped_column(String(32), default="not_assessed")
    evidence_source: Mapped[str] = mapped_column(String(32), default="manual")
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_evidence: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
