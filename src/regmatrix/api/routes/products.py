"""
Product document, obligation and compliance matrix routes.
"""

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks

from regmatrix.exceptions import (
    DocumentNotFoundError,
    InputValidationError,
    InvalidDocumentTypeError,
    MatrixEntryNotFoundError,
    ProductNotFoundError,
    ProviderSubmissionError,
)
from regmatrix.models.api import (
    AnalysisMode,
    AnalysisTriggerRequest,
    AnalysisTriggerResponse,
    ClauseGenerationRequest,
    DocumentStatusResponse,
    DocumentUploadRequest,
    DocumentUploadResponse,
    MatrixUpdateRequest,
)
from regmatrix.models.document import AnalysisStatus, DocumentType
from regmatrix.pipeline.clauses import get_clause_generator
from regmatrix.pipeline.orchestrator import get_batch_orchestrator
from regmatrix.pipeline.realtime import get_realtime_analyser
from regmatrix.services.matching import get_obligation_matcher
from regmatrix.storage.store import get_compliance_store

logger = structlog.get_logger(__name__)
router = APIRouter()


async def _get_product_document(product_id: str, document_id: str):
    document = await get_compliance_store().get_document(document_id)
    if document is None or document.product_id != product_id:
        raise DocumentNotFoundError(document_id)
    return document


# =============================================================================
# Obligations
# =============================================================================


@router.get("/{product_id}/obligations")
async def list_obligations(product_id: str) -> list[dict[str, Any]]:
    """List obligations applicable to a product, most relevant first."""
    obligations = await get_obligation_matcher().get_applicable_obligations(product_id)
    return [o.model_dump(by_alias=True) for o in obligations]


# =============================================================================
# Documents
# =============================================================================


@router.post("/{product_id}/documents", status_code=201, response_model=DocumentUploadResponse)
async def upload_document(product_id: str, request: DocumentUploadRequest) -> DocumentUploadResponse:
    """
    Upload a document, replacing any previous document of the same type.

    T&Cs documents are submitted for batch analysis straight away; product
    overviews are context only and are stored as complete.
    """
    store = get_compliance_store()
    if await store.get_product(product_id) is None:
        raise ProductNotFoundError(product_id)

    is_terms = request.document_type == DocumentType.TERMS_AND_CONDITIONS
    document = await store.replace_document(
        product_id=product_id,
        document_type=request.document_type.value,
        file_name=request.file_name,
        content=request.content,
        analysis_status=(
            AnalysisStatus.PENDING.value if is_terms else AnalysisStatus.COMPLETE.value
        ),
    )

    batch_job_id = None
    batch_error = None
    if is_terms:
        orchestrator = get_batch_orchestrator()
        try:
            job = await orchestrator.create_batch_for_documents([document.id])
            batch_job_id = job.id
        except ProviderSubmissionError as e:
            await orchestrator.reset_documents_to_pending(e.document_ids)
            batch_error = str(e)
        except InputValidationError as e:
            batch_error = str(e)
        if batch_error:
            logger.warning("upload_batch_not_submitted", document_id=document.id, error=batch_error)

    document = await store.get_document(document.id)
    return DocumentUploadResponse.model_validate(
        {
            **DocumentStatusResponse.model_validate(document, from_attributes=True).model_dump(),
            "batch_job_id": batch_job_id,
            "batch_error": batch_error,
        }
    )


@router.get("/{product_id}/documents/{document_id}", response_model=DocumentStatusResponse)
async def get_document(product_id: str, document_id: str) -> DocumentStatusResponse:
    """Get a document's analysis status, resolving outstanding batches first."""
    await get_batch_orchestrator().resolve_outstanding_batches()
    document = await _get_product_document(product_id, document_id)
    return DocumentStatusResponse.model_validate(document, from_attributes=True)


@router.post("/{product_id}/documents/{document_id}", response_model=AnalysisTriggerResponse)
async def trigger_analysis(
    product_id: str,
    document_id: str,
    request: AnalysisTriggerRequest,
    background_tasks: BackgroundTasks,
) -> AnalysisTriggerResponse:
    """Re-run analysis of a document in batch or real-time mode."""
    document = await _get_product_document(product_id, document_id)

    if request.mode == AnalysisMode.BATCH:
        orchestrator = get_batch_orchestrator()
        try:
            job = await orchestrator.create_batch_for_documents([document.id])
        except ProviderSubmissionError as e:
            await orchestrator.reset_documents_to_pending(e.document_ids)
            raise
        return AnalysisTriggerResponse(
            document_id=document.id,
            mode=request.mode,
            analysis_status=AnalysisStatus.QUEUED,
            batch_job_id=job.id,
        )

    analyser = get_realtime_analyser()
    if document.document_type != analyser.settings.analysable_document_type:
        raise InvalidDocumentTypeError(
            f"Cannot analyse document of type {document.document_type}"
        )

    await get_compliance_store().update_document(
        document.id,
        analysis_status=AnalysisStatus.ANALYSING.value,
        analysis_result=None,
        analysis_error=None,
        analysis_completed_at=None,
    )
    background_tasks.add_task(analyser.run_analysis, document.id)
    return AnalysisTriggerResponse(
        document_id=document.id,
        mode=request.mode,
        analysis_status=AnalysisStatus.ANALYSING,
    )


# =============================================================================
# Clauses
# =============================================================================


@router.post("/{product_id}/clauses")
async def generate_clauses(
    product_id: str,
    request: ClauseGenerationRequest | None = None,
) -> list[dict[str, Any]]:
    """Template or drafted T&Cs clauses for the product's obligations."""
    obligation_ids = request.obligation_ids if request else None
    clauses = await get_clause_generator().generate_clauses_for_product(product_id, obligation_ids)
    return [c.model_dump(by_alias=True) for c in clauses]


# =============================================================================
# Compliance Matrix
# =============================================================================


@router.get("/{product_id}/matrix")
async def get_matrix(product_id: str) -> list[dict[str, Any]]:
    """Get the product's compliance matrix, creating missing entries."""
    entries = await get_obligation_matcher().generate_compliance_matrix(product_id)
    return [e.model_dump(mode="json", by_alias=True) for e in entries]


@router.patch("/{product_id}/matrix")
async def update_matrix(product_id: str, request: MatrixUpdateRequest) -> dict[str, Any]:
    """Record a manual review of one matrix entry."""
    entry = await get_compliance_store().get_matrix_entry(request.entry_id)
    if entry is None or entry.product_id != product_id:
        raise MatrixEntryNotFoundError(request.entry_id)

    updated = await get_obligation_matcher().update_matrix_entry(
        request.entry_id,
        compliance_status=request.compliance_status,
        owner=request.owner,
        evidence=request.evidence,
        notes=request.notes,
    )
    return updated.model_dump(mode="json", by_alias=True)
