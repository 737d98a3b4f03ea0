"""
Batch Orchestrator

Submits per-regulation analysis requests as one provider batch, persists the
job and its items, and drives jobs to completion by polling. Completion
detection is pull-based: jobs advance only when something polls them.
"""

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Sequence
from uuid import uuid4

import structlog

from regmatrix.config import get_settings
from regmatrix.exceptions import (
    BatchJobNotFoundError,
    DocumentNotFoundError,
    NoAnalysableDocumentsError,
    ProviderSubmissionError,
)
from regmatrix.models.batch import (
    CUSTOM_ID_MAX_LENGTH,
    BatchJobStatus,
    BatchJobSummary,
    BatchRequest,
    ProviderProcessingStatus,
)
from regmatrix.models.document import AnalysisStatus, DocumentType
from regmatrix.pipeline.context import DocumentPromptBuilder
from regmatrix.pipeline.merger import ResultMerger
from regmatrix.pipeline.projector import MatrixProjector
from regmatrix.services.llm_service import (
    BatchProvider,
    CompletionProvider,
    get_batch_provider,
    get_completion_provider,
)
from regmatrix.services.matching import ObligationMatcher
from regmatrix.storage.store import ComplianceStore, get_compliance_store
from regmatrix.storage.tables import BatchJobRow, DocumentRow

logger = structlog.get_logger(__name__)

PROVIDER_STATUS_MAP = {
    ProviderProcessingStatus.IN_PROGRESS: BatchJobStatus.PROCESSING,
    ProviderProcessingStatus.CANCELING: BatchJobStatus.CANCELLED,
}


def make_custom_id(token: str, index: int) -> str:
    """
    Correlation id for one request of a submission.

    ``token`` is unique per submission, ``index`` is the request position.
    """
    custom_id = f"r_{token[:12]}_{index:x}"
    if len(custom_id) > CUSTOM_ID_MAX_LENGTH:
        raise ValueError(f"custom_id exceeds {CUSTOM_ID_MAX_LENGTH} characters")
    return custom_id


class BatchOrchestrator:
    """
    Orchestrates batch document analysis.

    Coordinates:
    1. Request building (matching, grouping, prompts)
    2. Provider submission and job persistence
    3. Status polling
    4. Result processing under an exclusive claim
    """

    def __init__(
        self,
        store: ComplianceStore | None = None,
        provider: BatchProvider | None = None,
        completion: CompletionProvider | None = None,
        matcher: ObligationMatcher | None = None,
    ):
        self.settings = get_settings()
        self.store = store or get_compliance_store()
        self._provider = provider
        self._completion = completion
        self.matcher = matcher or ObligationMatcher(self.store)
        self.prompts = DocumentPromptBuilder(self.store, self.matcher)
        self.projector = MatrixProjector(self.store, self.matcher)
        self._merger: ResultMerger | None = None

    @property
    def provider(self) -> BatchProvider:
        if self._provider is None:
            self._provider = get_batch_provider()
        return self._provider

    @property
    def completion(self) -> CompletionProvider:
        if self._completion is None:
            self._completion = get_completion_provider()
        return self._completion

    @property
    def merger(self) -> ResultMerger:
        if self._merger is None:
            self._merger = ResultMerger(
                self.store, self.provider, self.completion, self.projector
            )
        return self._merger

    # =========================================================================
    # Submission
    # =========================================================================

    async def _document_requests(
        self,
        document: DocumentRow,
        token: str,
        start_index: int,
    ) -> list[BatchRequest]:
        prompts = await self.prompts.build_prompts(document)
        requests = []
        for offset, (title, prompt) in enumerate(prompts.items()):
            requests.append(
                BatchRequest(
                    custom_id=make_custom_id(token, start_index + offset),
                    document_id=document.id,
                    regulation_title=title,
                    prompt=prompt,
                )
            )
        return requests

    async def preview_requests(self, document_id: str) -> list[BatchRequest]:
        """Build the requests a submission would send, without side effects."""
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return await self._document_requests(document, uuid4().hex, 0)

    async def create_batch_for_documents(self, document_ids: Sequence[str]) -> BatchJobSummary:
        """
        Submit every analysable document as one provider batch.

        Each (document, regulation group) pair becomes one request. Targeted
        documents are marked ``queued`` before submission; if submission fails
        they are left queued and the error carries their ids.

        Raises:
            DocumentNotFoundError: if any id does not exist.
            NoAnalysableDocumentsError: if no document produced a request.
            ProviderSubmissionError: if the provider rejected the batch.
        """
        document_ids = list(dict.fromkeys(document_ids))
        documents = await self.store.get_documents(document_ids)
        found = {d.id for d in documents}
        for document_id in document_ids:
            if document_id not in found:
                raise DocumentNotFoundError(document_id)

        token = uuid4().hex
        requests: list[BatchRequest] = []
        queued_ids: list[str] = []

        for document in documents:
            if document.document_type != self.settings.analysable_document_type:
                logger.info(
                    "document_not_analysable",
                    document_id=document.id,
                    document_type=document.document_type,
                )
                continue
            document_requests = await self._document_requests(document, token, len(requests))
            if not document_requests:
                continue
            requests.extend(document_requests)
            queued_ids.append(document.id)

        if not requests:
            raise NoAnalysableDocumentsError(document_ids)

        await self.store.update_documents(
            queued_ids,
            analysis_status=AnalysisStatus.QUEUED.value,
            analysis_result=None,
            analysis_error=None,
            analysis_completed_at=None,
        )

        logger.info(
            "batch_submitting",
            documents=len(queued_ids),
            requests=len(requests),
        )
        try:
            provider_batch_id = await self.provider.submit(requests)
        except Exception as e:
            logger.error("batch_submission_failed", documents=queued_ids, error=str(e))
            raise ProviderSubmissionError(f"Batch submission failed: {e}", queued_ids) from e

        job = await self.store.create_batch_job(provider_batch_id, requests)
        logger.info(
            "batch_submitted",
            job_id=job.id,
            provider_batch_id=provider_batch_id,
            requests=len(requests),
        )
        return BatchJobSummary.model_validate(job)

    async def create_batch_for_products(self, product_ids: Sequence[str]) -> BatchJobSummary:
        """Submit the current T&Cs document of each product."""
        documents = await self.store.find_documents(
            product_ids, DocumentType.TERMS_AND_CONDITIONS.value
        )
        if not documents:
            raise NoAnalysableDocumentsError()
        return await self.create_batch_for_documents([d.id for d in documents])

    async def reset_documents_to_pending(self, document_ids: Sequence[str]) -> None:
        """Return documents to ``pending`` after a failed submission."""
        await self.store.update_documents(
            document_ids,
            analysis_status=AnalysisStatus.PENDING.value,
            analysis_error=None,
        )
        logger.info("documents_reset_to_pending", documents=list(document_ids))

    # =========================================================================
    # Polling
    # =========================================================================

    async def get_batch_job(self, job_id: str) -> BatchJobSummary:
        job = await self.store.get_batch_job(job_id)
        if job is None:
            raise BatchJobNotFoundError(job_id)
        return BatchJobSummary.model_validate(job)

    async def poll_batch_job(self, job_id: str) -> BatchJobSummary:
        """
        Advance a job from the provider's status and return its latest state.

        Terminal jobs are returned without contacting the provider. When the
        provider reports the batch ended, results are processed by whichever
        caller wins the claim; other callers just read the status.
        """
        job = await self.store.get_batch_job(job_id)
        if job is None:
            raise BatchJobNotFoundError(job_id)
        if BatchJobStatus(job.status).is_terminal:
            return BatchJobSummary.model_validate(job)

        status = await self.provider.get_status(job.provider_batch_id)
        mapped = PROVIDER_STATUS_MAP.get(status.processing_status)
        if mapped is not None and mapped.value != job.status:
            await self.store.set_batch_job_status(job.id, mapped)
            logger.info("batch_job_status_changed", job_id=job.id, status=mapped.value)

        if status.processing_status == ProviderProcessingStatus.ENDED:
            await self._process_results(job)
        elif self._is_expired(job):
            await self._expire_job(job)

        return await self.get_batch_job(job_id)

    async def resolve_outstanding_batches(self) -> list[BatchJobSummary]:
        """Poll every non-terminal job; a failure on one job does not stop the rest."""
        jobs = await self.store.list_active_batch_jobs()
        if not jobs:
            return []

        logger.info("resolving_outstanding_batches", jobs=len(jobs))
        summaries = []
        for job in jobs:
            try:
                summaries.append(await self.poll_batch_job(job.id))
            except Exception as e:
                logger.error("batch_resolve_failed", job_id=job.id, error=str(e))
        return summaries

    async def _process_results(self, job: BatchJobRow) -> None:
        token = str(uuid4())
        claimed = await self.store.claim_batch_job(
            job.id, token, self.settings.batch_claim_lease_seconds
        )
        if not claimed:
            logger.info("batch_results_already_claimed", job_id=job.id)
            return

        logger.info("batch_results_processing", job_id=job.id)
        try:
            await self.merger.process_job(job, token)
        except Exception as e:
            logger.error("batch_result_processing_failed", job_id=job.id, error=str(e))
            await self.store.release_batch_job_claim(job.id, token)

    # =========================================================================
    # Expiry
    # =========================================================================

    def _is_expired(self, job: BatchJobRow) -> bool:
        hours = self.settings.batch_expiry_hours
        if not hours or job.created_at is None:
            return False
        return datetime.utcnow() - job.created_at > timedelta(hours=hours)

    async def _expire_job(self, job: BatchJobRow) -> None:
        error = f"Batch did not complete within {self.settings.batch_expiry_hours} hours"
        if not await self.store.fail_batch_job(job.id, error):
            return

        items = await self.store.list_batch_items(job.id)
        documents = await self.store.get_documents(list({i.document_id for i in items}))
        stranded = [
            d.id for d in documents if d.analysis_status == AnalysisStatus.QUEUED.value
        ]
        await self.store.update_documents(
            stranded,
            analysis_status=AnalysisStatus.FAILED.value,
            analysis_error=error,
        )
        logger.warning("batch_job_expired", job_id=job.id, documents=stranded)


@lru_cache()
def get_batch_orchestrator() -> BatchOrchestrator:
    """Get cached orchestrator instance."""
    return BatchOrchestrator()
