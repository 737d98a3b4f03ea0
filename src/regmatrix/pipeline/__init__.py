"""
Document analysis pipeline.

Batch submission and polling, result merging, matrix projection, the
real-time analysis path and clause drafting.
"""

from regmatrix.pipeline.clauses import ClauseGenerator, get_clause_generator
from regmatrix.pipeline.merger import ResultMerger, assemble_document_result
from regmatrix.pipeline.orchestrator import (
    BatchOrchestrator,
    get_batch_orchestrator,
    make_custom_id,
)
from regmatrix.pipeline.projector import (
    MatrixProjector,
    derive_suggested_status,
)
from regmatrix.pipeline.realtime import RealtimeAnalyser, get_realtime_analyser

__all__ = [
    "ClauseGenerator",
    "get_clause_generator",
    "BatchOrchestrator",
    "get_batch_orchestrator",
    "make_custom_id",
    "ResultMerger",
    "assemble_document_result",
    "MatrixProjector",
    "derive_suggested_status",
    "RealtimeAnalyser",
    "get_realtime_analyser",
]
