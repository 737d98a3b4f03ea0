"""
Obligation matching and compliance matrix materialisation.

Applicability is a precomputed relation between obligations and product
types, so matching is a lookup rather than a search over the corpus.
"""

from datetime import datetime
from functools import lru_cache

import structlog

from regmatrix.exceptions import MatrixEntryNotFoundError, ProductNotFoundError
from regmatrix.models.matrix import ComplianceStatus, EvidenceSource, MatrixEntry
from regmatrix.models.obligation import MatchedObligation
from regmatrix.storage.store import ComplianceStore, get_compliance_store

logger = structlog.get_logger(__name__)


class ObligationMatcher:
    """Resolves the obligations that apply to a product and its matrix."""

    def __init__(self, store: ComplianceStore | None = None):
        self.store = store or get_compliance_store()

    async def get_applicable_obligations(self, product_id: str) -> list[MatchedObligation]:
        """
        Get the obligations applicable to a product, most relevant first.

        Raises:
            ProductNotFoundError: if the product does not exist.
        """
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        rows = await self.store.find_applicable_obligations(product.product_type_id)
        obligations = [MatchedObligation.model_validate(row) for row in rows]

        logger.debug(
            "obligations_matched",
            product_id=product_id,
            product_type_id=product.product_type_id,
            count=len(obligations),
        )
        return obligations

    async def generate_compliance_matrix(self, product_id: str) -> list[MatrixEntry]:
        """
        Ensure an entry exists for every applicable obligation and return the matrix.

        Missing entries are created as ``not_assessed``; existing entries are
        never touched. Ordered by regulation title, then section number.
        """
        obligations = await self.get_applicable_obligations(product_id)
        created = await self.store.create_matrix_entries(
            product_id, [o.obligation_id for o in obligations]
        )
        if created:
            logger.info("matrix_entries_created", product_id=product_id, created=created)

        rows = await self.store.list_matrix_with_obligations(product_id)
        return [
            MatrixEntry.model_validate(row["entry"]).model_copy(
                update={
                    "regulation_title": row["regulation_title"],
                    "section_number": row["section_number"],
                    "obligation_summary": row["obligation_summary"],
                    "evidence_scope": row["evidence_scope"],
                }
            )
            for row in rows
        ]

    async def update_matrix_entry(
        self,
        entry_id: str,
        compliance_status: ComplianceStatus | None = None,
        owner: str | None = None,
        evidence: str | None = None,
        notes: str | None = None,
    ) -> MatrixEntry:
        """
        Apply a human review to a matrix entry.

        A status change marks the entry as human-owned so later automated
        analysis annotates notes instead of overwriting it.
        """
        entry = await self.store.get_matrix_entry(entry_id)
        if entry is None:
            raise MatrixEntryNotFoundError(entry_id)

        fields: dict = {"reviewed_at": datetime.utcnow()}
        if owner is not None:
            fields["owner"] = owner
        if evidence is not None:
            fields["evidence"] = evidence
        if notes is not None:
            fields["notes"] = notes
        if compliance_status is not None:
            fields["compliance_status"] = ComplianceStatus(compliance_status).value
            fields["evidence_source"] = (
                EvidenceSource.MIXED.value
                if entry.document_evidence
                else EvidenceSource.MANUAL.value
            )

        updated = await self.store.update_matrix_entry(entry_id, **fields)
        logger.info(
            "matrix_entry_reviewed",
            entry_id=entry_id,
            compliance_status=fields.get("compliance_status"),
        )
        return MatrixEntry.model_validate(updated)


@lru_cache()
def get_obligation_matcher() -> ObligationMatcher:
    """Get cached matcher instance."""
    return ObligationMatcher()
