"""
Relational store adapter using SQLAlchemy async.

Every read and write the analysis pipeline performs goes through the entity
operations on ``ComplianceStore``; nothing else issues queries.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, AsyncGenerator, Iterable, Sequence

import structlog
from sqlalchemy import delete, exists, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from regmatrix.config import get_settings
from regmatrix.models.batch import ACTIVE_JOB_STATUSES, BatchItemStatus, BatchJobStatus, BatchRequest
from regmatrix.storage.tables import (
    ApplicabilityRow,
    Base,
    BatchJobItemRow,
    BatchJobRow,
    ClauseTemplateRow,
    DocumentRow,
    MatrixEntryRow,
    ObligationRow,
    ProductRow,
    ProductTypeRow,
    RegulationRow,
    RuleRow,
    SectionRow,
)

logger = structlog.get_logger(__name__)


class ComplianceStore:
    """
    Relational store adapter.

    Handles products, documents, batch jobs and compliance matrix entries.
    """

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        self.database_url = database_url or settings.postgres_url

        if self.database_url.startswith("sqlite"):
            self.engine = create_async_engine(
                self.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(
                self.database_url,
                echo=settings.debug,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_created")

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    async def add_all(self, rows: Iterable[Base]) -> None:
        """Insert arbitrary rows (used for seeding the corpus)."""
        async with self.session() as session:
            session.add_all(list(rows))

    # =========================================================================
    # Product and Obligation Operations
    # =========================================================================

    async def get_product(self, product_id: str) -> ProductRow | None:
        async with self.session() as session:
            return await session.get(ProductRow, product_id)

    async def get_product_type(self, product_type_id: str) -> ProductTypeRow | None:
        async with self.session() as session:
            return await session.get(ProductTypeRow, product_type_id)

    @staticmethod
    def _obligation_select(*extra_columns):
        """Obligation columns annotated with their rule, section and regulation."""
        has_template = (
            exists()
            .where(ClauseTemplateRow.obligation_id == ObligationRow.id)
            .correlate(ObligationRow)
            .label("has_clause_template")
        )
        return (
            select(
                ObligationRow.id.label("obligation_id"),
                ObligationRow.summary,
                ObligationRow.obligation_type,
                ObligationRow.addressee,
                ObligationRow.action_text,
                ObligationRow.evidence_scope,
                RegulationRow.title.label("regulation_title"),
                SectionRow.number.label("section_number"),
                RuleRow.reference.label("rule_reference"),
                *extra_columns,
                has_template,
            )
            .select_from(ObligationRow)
            .join(RuleRow, ObligationRow.rule_id == RuleRow.id)
            .join(SectionRow, RuleRow.section_id == SectionRow.id)
            .join(RegulationRow, SectionRow.regulation_id == RegulationRow.id)
        )

    async def find_applicable_obligations(
        self,
        product_type_id: str,
    ) -> list[dict[str, Any]]:
        """
        Get active obligations linked to a product type, most relevant first.

        Walks the applicability relation rather than scanning all obligations.
        """
        query = (
            self._obligation_select(ApplicabilityRow.relevance_score, ApplicabilityRow.rationale)
            .join(ApplicabilityRow, ApplicabilityRow.obligation_id == ObligationRow.id)
            .where(
                ApplicabilityRow.product_type_id == product_type_id,
                ObligationRow.is_active.is_(True),
            )
            .order_by(ApplicabilityRow.relevance_score.desc(), ObligationRow.id)
        )

        async with self.session() as session:
            result = await session.execute(query)
            return [dict(row) for row in result.mappings().all()]

    async def find_obligations(self, obligation_ids: Sequence[str]) -> list[dict[str, Any]]:
        """Get the named obligations regardless of applicability, by regulation."""
        if not obligation_ids:
            return []
        query = (
            self._obligation_select()
            .where(ObligationRow.id.in_(list(obligation_ids)))
            .order_by(RegulationRow.title, ObligationRow.id)
        )
        async with self.session() as session:
            result = await session.execute(query)
            return [dict(row) for row in result.mappings().all()]

    async def get_clause_templates(
        self,
        obligation_ids: Sequence[str],
    ) -> dict[str, ClauseTemplateRow]:
        """Map each obligation id to its first clause template."""
        if not obligation_ids:
            return {}
        async with self.session() as session:
            result = await session.execute(
                select(ClauseTemplateRow)
                .where(ClauseTemplateRow.obligation_id.in_(list(obligation_ids)))
                .order_by(ClauseTemplateRow.title, ClauseTemplateRow.id)
            )
            templates: dict[str, ClauseTemplateRow] = {}
            for row in result.scalars().all():
                templates.setdefault(row.obligation_id, row)
        return templates

    # =========================================================================
    # Document Operations
    # =========================================================================

    async def get_document(self, document_id: str) -> DocumentRow | None:
        async with self.session() as session:
            return await session.get(DocumentRow, document_id)

    async def get_documents(self, document_ids: Sequence[str]) -> list[DocumentRow]:
        """Get documents by id, preserving the requested order."""
        if not document_ids:
            return []
        async with self.session() as session:
            result = await session.execute(
                select(DocumentRow).where(DocumentRow.id.in_(list(document_ids)))
            )
            found = {row.id: row for row in result.scalars().all()}
        return [found[d] for d in document_ids if d in found]

    async def find_documents(
        self,
        product_ids: Sequence[str],
        document_type: str | None = None,
    ) -> list[DocumentRow]:
        query = select(DocumentRow).where(DocumentRow.product_id.in_(list(product_ids)))
        if document_type:
            query = query.where(DocumentRow.document_type == document_type)
        query = query.order_by(DocumentRow.created_at.desc())

        async with self.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_current_document(
        self,
        product_id: str,
        document_type: str,
    ) -> DocumentRow | None:
        """Get the product's current document of a type."""
        documents = await self.find_documents([product_id], document_type)
        return documents[0] if documents else None

    async def replace_document(
        self,
        product_id: str,
        document_type: str,
        file_name: str,
        content: str,
        analysis_status: str,
    ) -> DocumentRow:
        """
        Create a document, deleting any prior one of the same type.

        A product holds at most one current document per type; prior
        documents are deleted, not versioned.
        """
        document = DocumentRow(
            product_id=product_id,
            document_type=document_type,
            file_name=file_name,
            content=content,
            analysis_status=analysis_status,
        )
        async with self.session() as session:
            await session.execute(
                delete(DocumentRow).where(
                    DocumentRow.product_id == product_id,
                    DocumentRow.document_type == document_type,
                )
            )
            session.add(document)

        logger.info(
            "document_replaced",
            product_id=product_id,
            document_id=document.id,
            document_type=document_type,
        )
        return document

    async def update_document(self, document_id: str, **fields: Any) -> None:
        await self.update_documents([document_id], **fields)

    async def update_documents(self, document_ids: Sequence[str], **fields: Any) -> None:
        if not document_ids:
            return
        async with self.session() as session:
            await session.execute(
                update(DocumentRow)
                .where(DocumentRow.id.in_(list(document_ids)))
                .values(**fields)
                .execution_options(synchronize_session=False)
            )

    # =========================================================================
    # Batch Job Operations
    # =========================================================================

    async def create_batch_job(
        self,
        provider_batch_id: str,
        requests: Sequence[BatchRequest],
    ) -> BatchJobRow:
        """Persist a job and one item per request in a single transaction."""
        job = BatchJobRow(
            provider_batch_id=provider_batch_id,
            status=BatchJobStatus.SUBMITTED.value,
            total_requests=len(requests),
        )
        async with self.session() as session:
            session.add(job)
            await session.flush()
            session.add_all(
                BatchJobItemRow(
                    batch_job_id=job.id,
                    position=position,
                    custom_id=request.custom_id,
                    document_id=request.document_id,
                    regulation_title=request.regulation_title,
                    status=BatchItemStatus.PENDING.value,
                    request=request.prompt.model_dump(),
                )
                for position, request in enumerate(requests)
            )

        logger.info(
            "batch_job_persisted",
            job_id=job.id,
            provider_batch_id=provider_batch_id,
            items=len(requests),
        )
        return job

    async def get_batch_job(self, job_id: str) -> BatchJobRow | None:
        async with self.session() as session:
            return await session.get(BatchJobRow, job_id)

    async def list_batch_items(self, job_id: str) -> list[BatchJobItemRow]:
        async with self.session() as session:
            result = await session.execute(
                select(BatchJobItemRow)
                .where(BatchJobItemRow.batch_job_id == job_id)
                .order_by(BatchJobItemRow.position)
            )
            return list(result.scalars().all())

    async def list_active_batch_jobs(self) -> list[BatchJobRow]:
        async with self.session() as session:
            result = await session.execute(
                select(BatchJobRow)
                .where(BatchJobRow.status.in_(ACTIVE_JOB_STATUSES))
                .order_by(BatchJobRow.created_at)
            )
            return list(result.scalars().all())

    async def set_batch_job_status(self, job_id: str, status: BatchJobStatus) -> bool:
        """Move an active job to another active status. Returns False if terminal."""
        async with self.session() as session:
            result = await session.execute(
                update(BatchJobRow)
                .where(
                    BatchJobRow.id == job_id,
                    BatchJobRow.status.in_(ACTIVE_JOB_STATUSES),
                )
                .values(status=status.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def claim_batch_job(
        self,
        job_id: str,
        token: str,
        lease_seconds: int,
    ) -> bool:
        """
        Atomically claim result processing for a job.

        Succeeds for exactly one caller while the job is active and either
        unclaimed or holding an expired claim.
        """
        now = datetime.utcnow()
        stale_before = now - timedelta(seconds=lease_seconds)
        async with self.session() as session:
            result = await session.execute(
                update(BatchJobRow)
                .where(
                    BatchJobRow.id == job_id,
                    BatchJobRow.status.in_(ACTIVE_JOB_STATUSES),
                    or_(
                        BatchJobRow.claim_token.is_(None),
                        BatchJobRow.claimed_at < stale_before,
                    ),
                )
                .values(claim_token=token, claimed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def release_batch_job_claim(self, job_id: str, token: str) -> None:
        async with self.session() as session:
            await session.execute(
                update(BatchJobRow)
                .where(BatchJobRow.id == job_id, BatchJobRow.claim_token == token)
                .values(claim_token=None, claimed_at=None, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )

    async def complete_batch_job(
        self,
        job_id: str,
        token: str,
        succeeded_count: int,
        failed_count: int,
    ) -> bool:
        """Mark a claimed job completed. Only the claim holder can do this."""
        now = datetime.utcnow()
        async with self.session() as session:
            result = await session.execute(
                update(BatchJobRow)
                .where(
                    BatchJobRow.id == job_id,
                    BatchJobRow.claim_token == token,
                    BatchJobRow.status.in_(ACTIVE_JOB_STATUSES),
                )
                .values(
                    status=BatchJobStatus.COMPLETED.value,
                    succeeded_count=succeeded_count,
                    failed_count=failed_count,
                    completed_at=now,
                    updated_at=now,
                    claim_token=None,
                    claimed_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def fail_batch_job(self, job_id: str, error: str) -> bool:
        """Mark an active, unclaimed job failed."""
        now = datetime.utcnow()
        async with self.session() as session:
            result = await session.execute(
                update(BatchJobRow)
                .where(
                    BatchJobRow.id == job_id,
                    BatchJobRow.status.in_(ACTIVE_JOB_STATUSES),
                    BatchJobRow.claim_token.is_(None),
                )
                .values(
                    status=BatchJobStatus.FAILED.value,
                    error=error,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def settle_batch_item(
        self,
        item_id: str,
        status: str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """Record an item outcome. Items that are already settled are left alone."""
        async with self.session() as session:
            outcome = await session.execute(
                update(BatchJobItemRow)
                .where(
                    BatchJobItemRow.id == item_id,
                    BatchJobItemRow.status == BatchItemStatus.PENDING.value,
                )
                .values(status=status, result=result, error=error)
                .execution_options(synchronize_session=False)
            )
            return outcome.rowcount == 1

    # =========================================================================
    # Compliance Matrix Operations
    # =========================================================================

    async def list_matrix_entries(self, product_id: str) -> list[MatrixEntryRow]:
        async with self.session() as session:
            result = await session.execute(
                select(MatrixEntryRow).where(MatrixEntryRow.product_id == product_id)
            )
            return list(result.scalars().all())

    async def list_matrix_with_obligations(self, product_id: str) -> list[dict[str, Any]]:
        """Matrix entries joined with their obligation, by regulation then section."""
        query = (
            select(
                MatrixEntryRow,
                RegulationRow.title.label("regulation_title"),
                SectionRow.number.label("section_number"),
                ObligationRow.summary.label("obligation_summary"),
                ObligationRow.evidence_scope.label("evidence_scope"),
            )
            .join(ObligationRow, MatrixEntryRow.obligation_id == ObligationRow.id)
            .join(RuleRow, ObligationRow.rule_id == RuleRow.id)
            .join(SectionRow, RuleRow.section_id == SectionRow.id)
            .join(RegulationRow, SectionRow.regulation_id == RegulationRow.id)
            .where(MatrixEntryRow.product_id == product_id)
            .order_by(RegulationRow.title, SectionRow.number, ObligationRow.id)
        )
        async with self.session() as session:
            result = await session.execute(query)
            rows = []
            for entry, regulation_title, section_number, summary, scope in result.all():
                rows.append(
                    {
                        "entry": entry,
                        "regulation_title": regulation_title,
                        "section_number": section_number,
                        "obligation_summary": summary,
                        "evidence_scope": scope,
                    }
                )
            return rows

    async def create_matrix_entries(
        self,
        product_id: str,
        obligation_ids: Sequence[str],
    ) -> int:
        """
        Create ``not_assessed`` entries, skipping pairs that already exist.

        Returns the number of entries created.
        """
        for attempt in range(2):
            existing = {e.obligation_id for e in await self.list_matrix_entries(product_id)}
            missing = [o for o in dict.fromkeys(obligation_ids) if o not in existing]
            if not missing:
                return 0
            try:
                async with self.session() as session:
                    session.add_all(
                        MatrixEntryRow(
                            product_id=product_id,
                            obligation_id=obligation_id,
                            document_evidence=[],
                        )
                        for obligation_id in missing
                    )
                return len(missing)
            except IntegrityError:
                # A concurrent writer created some of the same entries
                logger.debug("matrix_entry_race", product_id=product_id, attempt=attempt)
        return 0

    async def get_matrix_entry(self, entry_id: str) -> MatrixEntryRow | None:
        async with self.session() as session:
            return await session.get(MatrixEntryRow, entry_id)

    async def update_matrix_entry(self, entry_id: str, **fields: Any) -> MatrixEntryRow | None:
        fields["updated_at"] = datetime.utcnow()
        async with self.session() as session:
            await session.execute(
                update(MatrixEntryRow)
                .where(MatrixEntryRow.id == entry_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            return await session.get(MatrixEntryRow, entry_id)


@lru_cache()
def get_compliance_store() -> ComplianceStore:
    """Get cached store instance."""
    return ComplianceStore()
