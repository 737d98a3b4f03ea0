"""
Real-time document analysis.

Runs the same per-regulation requests as the batch path, but synchronously:
all groups are requested concurrently and merged with the batch merge rules.
"""

import asyncio
from datetime import datetime
from functools import lru_cache

import structlog

from regmatrix.config import get_settings
from regmatrix.exceptions import (
    DocumentNotFoundError,
    InvalidDocumentTypeError,
    NoAnalysableDocumentsError,
)
from regmatrix.models.batch import AnalysisPrompt
from regmatrix.models.document import AnalysisStatus, RegulationResult
from regmatrix.pipeline.context import DocumentPromptBuilder
from regmatrix.pipeline.merger import assemble_document_result
from regmatrix.pipeline.projector import MatrixProjector
from regmatrix.services.json_decoder import ResilientJSONDecoder
from regmatrix.services.llm_service import CompletionProvider, get_completion_provider
from regmatrix.services.matching import ObligationMatcher
from regmatrix.storage.store import ComplianceStore, get_compliance_store

logger = structlog.get_logger(__name__)

ALL_FAILED_ERROR = "All regulation analyses failed"


class RealtimeAnalyser:
    """Analyses one document immediately through the completion provider."""

    def __init__(
        self,
        store: ComplianceStore | None = None,
        completion: CompletionProvider | None = None,
        matcher: ObligationMatcher | None = None,
    ):
        self.settings = get_settings()
        self.store = store or get_compliance_store()
        self._completion = completion
        self.matcher = matcher or ObligationMatcher(self.store)
        self.prompts = DocumentPromptBuilder(self.store, self.matcher)
        self.projector = MatrixProjector(self.store, self.matcher)
        self.decoder = ResilientJSONDecoder()

    @property
    def completion(self) -> CompletionProvider:
        if self._completion is None:
            self._completion = get_completion_provider()
        return self._completion

    async def run_analysis(self, document_id: str) -> AnalysisStatus:
        """
        Analyse a document and project the findings onto the matrix.

        The document is ``analysing`` while requests are in flight and ends
        ``complete`` or ``failed``; unexpected errors are recorded on the
        document rather than raised.

        Raises:
            DocumentNotFoundError: if the document does not exist.
            InvalidDocumentTypeError: if the document type is not analysable.
        """
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.document_type != self.settings.analysable_document_type:
            raise InvalidDocumentTypeError(
                f"Cannot analyse document of type {document.document_type}"
            )

        await self.store.update_document(
            document_id,
            analysis_status=AnalysisStatus.ANALYSING.value,
            analysis_error=None,
        )
        logger.info("realtime_analysis_started", document_id=document_id)

        try:
            prompts = await self.prompts.build_prompts(document)
            if not prompts:
                raise NoAnalysableDocumentsError([document_id])

            results = await asyncio.gather(
                *(self._analyse_group(document_id, title, p) for title, p in prompts.items())
            )
            result = assemble_document_result(list(zip(prompts.keys(), results)))

            if result is None:
                await self.store.update_document(
                    document_id,
                    analysis_status=AnalysisStatus.FAILED.value,
                    analysis_error=ALL_FAILED_ERROR,
                )
                logger.warning("realtime_analysis_failed", document_id=document_id)
                return AnalysisStatus.FAILED

            await self.store.update_document(
                document_id,
                analysis_status=AnalysisStatus.COMPLETE.value,
                analysis_result=result.to_storage(),
                analysis_error=None,
                analysis_completed_at=datetime.utcnow(),
            )
            await self.projector.apply_analysis_to_matrix(document_id)

        except Exception as e:
            logger.error("realtime_analysis_error", document_id=document_id, error=str(e))
            await self.store.update_document(
                document_id,
                analysis_status=AnalysisStatus.FAILED.value,
                analysis_error=str(e),
            )
            return AnalysisStatus.FAILED

        logger.info(
            "realtime_analysis_complete",
            document_id=document_id,
            findings=len(result.obligation_findings),
            failed_regulations=result.failed_regulations,
        )
        return AnalysisStatus.COMPLETE

    async def _analyse_group(
        self,
        document_id: str,
        regulation_title: str,
        prompt: AnalysisPrompt,
    ) -> RegulationResult | None:
        """Request and decode one regulation group. Failures yield None."""
        max_tokens = min(prompt.max_tokens, self.settings.realtime_max_tokens_cap)

        async def request() -> str:
            return await self.completion.complete(prompt.system, prompt.user_message, max_tokens)

        try:
            text = await request()
            outcome = await self.decoder.decode(text, retry=request, label=regulation_title)
        except Exception as e:
            logger.warning(
                "realtime_group_failed",
                document_id=document_id,
                regulation=regulation_title,
                error=str(e),
            )
            return None
        return outcome.value


@lru_cache()
def get_realtime_analyser() -> RealtimeAnalyser:
    """Get cached real-time analyser instance."""
    return RealtimeAnalyser()
