"""
Batch analysis routes.
"""

from typing import Any

from fastapi import APIRouter, HTTPException

from regmatrix.exceptions import ProviderSubmissionError
from regmatrix.models.api import BatchCreateRequest, BatchCreateResponse, BatchResolveResponse
from regmatrix.pipeline.orchestrator import get_batch_orchestrator

router = APIRouter()


@router.post("", status_code=201, response_model=BatchCreateResponse)
async def create_batch(request: BatchCreateRequest) -> BatchCreateResponse:
    """
    Submit documents for batch analysis.

    Accepts either explicit document ids or product ids, in which case each
    product's T&Cs document is submitted.
    """
    if not request.document_ids and not request.product_ids:
        raise HTTPException(status_code=400, detail="documentIds or productIds required")

    orchestrator = get_batch_orchestrator()
    try:
        if request.document_ids:
            job = await orchestrator.create_batch_for_documents(request.document_ids)
        else:
            job = await orchestrator.create_batch_for_products(request.product_ids)
    except ProviderSubmissionError as e:
        await orchestrator.reset_documents_to_pending(e.document_ids)
        raise

    return BatchCreateResponse(
        batch_job_id=job.id,
        provider_batch_id=job.provider_batch_id,
        status=job.status.value,
        total_requests=job.total_requests,
    )


@router.post("/resolve", response_model=BatchResolveResponse)
async def resolve_batches() -> BatchResolveResponse:
    """Poll every outstanding batch job."""
    summaries = await get_batch_orchestrator().resolve_outstanding_batches()
    return BatchResolveResponse(
        resolved=sum(1 for s in summaries if s.status.is_terminal),
        jobs=[s.to_dict() for s in summaries],
    )


@router.get("/{job_id}")
async def get_batch(job_id: str) -> dict[str, Any]:
    """Poll a batch job and return its status."""
    summary = await get_batch_orchestrator().poll_batch_job(job_id)
    return summary.to_dict()
