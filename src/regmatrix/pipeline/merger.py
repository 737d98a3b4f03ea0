"""
Result Merger

Settles every item of an ended batch job, then rebuilds each document's
analysis from the persisted item rows. Because the document and matrix
writes are recomputed from item state, a run that fails part way can be
repeated and converges to the same result.
"""

from datetime import datetime
from typing import Sequence

import structlog

from regmatrix.exceptions import DecodeError, ResultProcessingError
from regmatrix.models.batch import BatchItemStatus, BatchResultEntry
from regmatrix.models.document import AnalysisResult, AnalysisStatus, RegulationResult
from regmatrix.pipeline.projector import MatrixProjector
from regmatrix.services.json_decoder import ResilientJSONDecoder
from regmatrix.services.llm_service import BatchProvider, CompletionProvider
from regmatrix.storage.store import ComplianceStore
from regmatrix.storage.tables import BatchJobItemRow, BatchJobRow

logger = structlog.get_logger(__name__)

ALL_FAILED_ERROR = "All regulation analyses failed in batch"
MISSING_RESULT_ERROR = "missing from provider results"


def assemble_document_result(
    outcomes: Sequence[tuple[str, RegulationResult | None]],
) -> AnalysisResult | None:
    """
    Merge per-regulation outcomes into one document result.

    ``outcomes`` pairs each regulation title with its decoded result, or None
    when that group failed. Returns None when every group failed.
    """
    succeeded = [(title, result) for title, result in outcomes if result is not None]
    if not succeeded:
        return None

    failed_titles = [title for title, result in outcomes if result is None]

    sections = [
        f"[{title}] {result.overall_assessment}"
        for title, result in succeeded
        if result.overall_assessment
    ]
    if failed_titles:
        sections.append(
            f"[WARNING: Analysis incomplete — failed for: {', '.join(failed_titles)}]"
        )
    overall = "\n\n".join(sections)

    return AnalysisResult(
        overall_assessment=overall,
        obligation_findings=[f for _, r in succeeded for f in r.obligation_findings],
        missing_clauses=[c for _, r in succeeded for c in r.missing_clauses],
        quality_concerns=[c for _, r in succeeded for c in r.quality_concerns],
        failed_regulations=failed_titles,
    )


class ResultMerger:
    """Decodes batch results and writes them to documents and the matrix."""

    def __init__(
        self,
        store: ComplianceStore,
        provider: BatchProvider,
        completion: CompletionProvider | None,
        projector: MatrixProjector,
        decoder: ResilientJSONDecoder | None = None,
    ):
        self.store = store
        self.provider = provider
        self.completion = completion
        self.projector = projector
        self.decoder = decoder or ResilientJSONDecoder()

    async def process_job(self, job: BatchJobRow, claim_token: str) -> tuple[int, int]:
        """
        Process an ended job while holding its claim.

        Marking the job completed is the last write. Returns the final
        (succeeded, failed) item counts.

        Raises:
            ResultProcessingError: if the claim was lost before completion.
        """
        items = await self.store.list_batch_items(job.id)
        await self._settle_items(job, items)

        items = await self.store.list_batch_items(job.id)
        by_document: dict[str, list[BatchJobItemRow]] = {}
        for item in items:
            by_document.setdefault(item.document_id, []).append(item)

        for document_id, document_items in by_document.items():
            await self._merge_document(document_id, document_items)

        succeeded = sum(1 for i in items if i.status == BatchItemStatus.SUCCEEDED.value)
        failed = len(items) - succeeded

        if not await self.store.complete_batch_job(job.id, claim_token, succeeded, failed):
            raise ResultProcessingError(f"Lost result-processing claim on job {job.id}")

        logger.info(
            "batch_job_completed",
            job_id=job.id,
            succeeded=succeeded,
            failed=failed,
            documents=len(by_document),
        )
        return succeeded, failed

    # =========================================================================
    # Item Settlement
    # =========================================================================

    async def _settle_items(self, job: BatchJobRow, items: Sequence[BatchJobItemRow]) -> None:
        pending = {i.custom_id: i for i in items if i.status == BatchItemStatus.PENDING.value}
        if not pending:
            return

        known = {i.custom_id for i in items}
        async for entry in self.provider.stream_results(job.provider_batch_id):
            item = pending.pop(entry.custom_id, None)
            if item is None:
                if entry.custom_id not in known:
                    logger.warning("unknown_custom_id", job_id=job.id, custom_id=entry.custom_id)
                continue
            await self._settle_item(item, entry)

        for item in pending.values():
            logger.warning("batch_item_missing", job_id=job.id, custom_id=item.custom_id)
            await self.store.settle_batch_item(
                item.id, BatchItemStatus.ERRORED.value, error=MISSING_RESULT_ERROR
            )

    async def _settle_item(self, item: BatchJobItemRow, entry: BatchResultEntry) -> None:
        if not entry.succeeded:
            logger.warning(
                "batch_item_failed",
                custom_id=item.custom_id,
                regulation=item.regulation_title,
                result_type=entry.type,
            )
            await self.store.settle_batch_item(item.id, entry.type, error=entry.error)
            return

        try:
            outcome = await self.decoder.decode(
                entry.text or "",
                retry=self._retry_for(item),
                label=item.custom_id,
            )
        except DecodeError as e:
            logger.warning(
                "batch_item_decode_failed",
                custom_id=item.custom_id,
                regulation=item.regulation_title,
                attempts=e.attempts,
                error=str(e),
            )
            await self.store.settle_batch_item(
                item.id, BatchItemStatus.ERRORED.value, error=str(e)
            )
            return

        await self.store.settle_batch_item(
            item.id,
            BatchItemStatus.SUCCEEDED.value,
            result=outcome.value.model_dump(mode="json", by_alias=True),
        )
        logger.debug(
            "batch_item_decoded",
            custom_id=item.custom_id,
            stage=outcome.stage.value,
            findings=len(outcome.value.obligation_findings),
        )

    def _retry_for(self, item: BatchJobItemRow):
        if self.completion is None or not item.request:
            return None
        request = dict(item.request)

        async def retry() -> str:
            return await self.completion.complete(
                request["system"], request["user_message"], request["max_tokens"]
            )

        return retry

    # =========================================================================
    # Document Merge
    # =========================================================================

    async def _merge_document(self, document_id: str, items: Sequence[BatchJobItemRow]) -> None:
        document = await self.store.get_document(document_id)
        if document is None:
            # Superseded by a newer upload while the job was in flight
            logger.info("merged_document_missing", document_id=document_id)
            return

        outcomes = [
            (
                item.regulation_title,
                RegulationResult.model_validate(item.result)
                if item.status == BatchItemStatus.SUCCEEDED.value and item.result
                else None,
            )
            for item in sorted(items, key=lambda i: i.position)
        ]
        result = assemble_document_result(outcomes)

        if result is None:
            await self.store.update_document(
                document_id,
                analysis_status=AnalysisStatus.FAILED.value,
                analysis_error=ALL_FAILED_ERROR,
                analysis_completed_at=datetime.utcnow(),
            )
            logger.warning("document_analysis_failed", document_id=document_id, items=len(items))
            return

        await self.store.update_document(
            document_id,
            analysis_status=AnalysisStatus.COMPLETE.value,
            analysis_result=result.to_storage(),
            analysis_error=None,
            analysis_completed_at=datetime.utcnow(),
        )
        logger.info(
            "document_analysis_merged",
            document_id=document_id,
            findings=len(result.obligation_findings),
            failed_regulations=result.failed_regulations,
        )
        await self.projector.apply_analysis_to_matrix(document_id)
