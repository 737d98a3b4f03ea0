"""
Compliance Matrix Projector

Folds a completed document analysis into the product's compliance matrix.
Evidence is kept per contributing document; re-analysing a document replaces
its evidence and leaves evidence from other documents untouched.
"""

from datetime import datetime
from typing import Any, Sequence

import structlog

from regmatrix.models.document import (
    DOCUMENT_LABELS,
    AnalysisResult,
    AnalysisStatus,
    FindingStatus,
    ObligationFinding,
)
from regmatrix.models.matrix import ComplianceStatus, DocumentEvidence, EvidenceSource, MatrixEntry
from regmatrix.models.obligation import EvidenceScope
from regmatrix.services.matching import ObligationMatcher
from regmatrix.storage.store import ComplianceStore, get_compliance_store
from regmatrix.storage.tables import DocumentRow

logger = structlog.get_logger(__name__)

# Meaning of a "not_addressed" finding depends on where evidence is expected to live
NOT_ADDRESSED_BY_SCOPE = {
    EvidenceScope.MANDATORY_CLAUSE.value: ComplianceStatus.NON_COMPLIANT,
    EvidenceScope.TERM_REQUIRED.value: ComplianceStatus.NOT_EVIDENCED,
    EvidenceScope.INTERNAL_GOVERNANCE.value: ComplianceStatus.NOT_ASSESSED,
    EvidenceScope.GUIDANCE.value: ComplianceStatus.IN_PROGRESS,
}


def derive_suggested_status(
    statuses: Sequence[str],
    evidence_scope: str | None,
) -> ComplianceStatus:
    """Suggest a compliance status from the merged evidence statuses."""
    if not statuses:
        return ComplianceStatus.NOT_ASSESSED
    if all(s == FindingStatus.ADDRESSED.value for s in statuses):
        return ComplianceStatus.COMPLIANT
    if all(s == FindingStatus.NOT_APPLICABLE.value for s in statuses):
        return ComplianceStatus.NOT_APPLICABLE
    if any(s == FindingStatus.NOT_ADDRESSED.value for s in statuses):
        return NOT_ADDRESSED_BY_SCOPE.get(evidence_scope or "", ComplianceStatus.NOT_EVIDENCED)
    if any(s == FindingStatus.PARTIALLY_ADDRESSED.value for s in statuses):
        return ComplianceStatus.IN_PROGRESS
    return ComplianceStatus.NOT_ASSESSED


def merge_evidence(
    existing: Sequence[dict[str, Any]] | None,
    new: DocumentEvidence,
) -> list[dict[str, Any]]:
    """Replace the evidence contributed by ``new.document_id`` and keep the rest."""
    kept = [e for e in existing or [] if e.get("documentId") != new.document_id]
    return kept + [new.to_storage()]


def format_evidence_text(evidence: Sequence[dict[str, Any]]) -> str:
    return "\n\n".join(
        f"[{DOCUMENT_LABELS.get(e.get('documentType'), e.get('documentType'))}] {e.get('evidence', '')}"
        for e in evidence
    )


def is_manually_assessed(entry: MatrixEntry) -> bool:
    """Entries a human has assessed are annotated, never overwritten."""
    return entry.compliance_status != ComplianceStatus.NOT_ASSESSED and entry.evidence_source in (
        EvidenceSource.MANUAL,
        EvidenceSource.MIXED,
    )


class MatrixProjector:
    """Projects document findings onto compliance matrix entries."""

    def __init__(
        self,
        store: ComplianceStore | None = None,
        matcher: ObligationMatcher | None = None,
    ):
        self.store = store or get_compliance_store()
        self.matcher = matcher or ObligationMatcher(self.store)

    async def apply_analysis_to_matrix(self, document_id: str) -> int:
        """
        Merge a completed document's findings into the matrix.

        Returns the number of entries updated. Applying the same result twice
        leaves the matrix in the same state as applying it once.
        """
        document = await self.store.get_document(document_id)
        if document is None or document.analysis_status != AnalysisStatus.COMPLETE.value:
            return 0
        if not document.analysis_result:
            return 0

        result = AnalysisResult.model_validate(document.analysis_result)
        entries = {
            e.obligation_id: e
            for e in await self.matcher.generate_compliance_matrix(document.product_id)
        }

        updated = 0
        for finding in result.obligation_findings:
            entry = entries.get(finding.obligation_id)
            if entry is None:
                logger.debug(
                    "finding_without_matrix_entry",
                    document_id=document_id,
                    obligation_id=finding.obligation_id,
                )
                continue
            fields = self._entry_update(entry, document, finding)
            if fields is None:
                continue
            await self.store.update_matrix_entry(entry.id, **fields)
            entries[finding.obligation_id] = entry.model_copy(update=fields)
            updated += 1

        logger.info(
            "matrix_projected",
            document_id=document_id,
            product_id=document.product_id,
            findings=len(result.obligation_findings),
            updated=updated,
        )
        return updated

    def _entry_update(
        self,
        entry: MatrixEntry,
        document: DocumentRow,
        finding: ObligationFinding,
    ) -> dict[str, Any] | None:
        new_evidence = DocumentEvidence(
            document_id=document.id,
            document_type=document.document_type,
            status=finding.status,
            evidence=finding.evidence,
            clause_reference=finding.clause_reference,
            quality_score=finding.quality_score,
            gaps=finding.gaps,
            recommendation=finding.recommendation,
        )
        previous = next(
            (e for e in entry.document_evidence if e.get("documentId") == document.id),
            None,
        )
        merged = merge_evidence(entry.document_evidence, new_evidence)

        if is_manually_assessed(entry):
            fields: dict[str, Any] = {
                "document_evidence": merged,
                "evidence_source": EvidenceSource.MIXED.value,
            }
            if previous != new_evidence.to_storage():
                note = (
                    f"[Auto-analysis {datetime.utcnow():%Y-%m-%d}: {finding.status.value}] "
                    f"{finding.recommendation}"
                ).rstrip()
                fields["notes"] = f"{entry.notes}\n\n{note}" if entry.notes else note
            elif entry.evidence_source == EvidenceSource.MIXED:
                return None
            return fields

        suggested = derive_suggested_status(
            [e.get("status") for e in merged],
            entry.evidence_scope,
        )
        return {
            "document_evidence": merged,
            "compliance_status": suggested.value,
            "evidence": format_evidence_text(merged),
            "notes": finding.recommendation or entry.notes,
            "evidence_source": EvidenceSource.DOCUMENT_ANALYSIS.value,
        }
