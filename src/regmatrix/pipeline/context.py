"""
Per-document prompt assembly shared by the batch and real-time paths.
"""

import structlog

from regmatrix.exceptions import ProductNotFoundError
from regmatrix.models.batch import AnalysisPrompt
from regmatrix.models.document import DocumentType
from regmatrix.services.matching import ObligationMatcher
from regmatrix.services.prompt_builder import (
    build_product_context,
    build_regulation_prompt,
    group_by_regulation,
)
from regmatrix.storage.store import ComplianceStore
from regmatrix.storage.tables import DocumentRow

logger = structlog.get_logger(__name__)


class DocumentPromptBuilder:
    """Builds one prompt per regulation group for a T&Cs document."""

    def __init__(self, store: ComplianceStore, matcher: ObligationMatcher):
        self.store = store
        self.matcher = matcher

    async def product_context(self, product_id: str) -> str:
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        product_type = await self.store.get_product_type(product.product_type_id)
        return build_product_context(
            product_type.name if product_type else "Financial",
            product.name,
            product.customer_type,
            product.distribution_channel,
            product.jurisdictions or [],
        )

    async def overview_context(self, product_id: str) -> str:
        overview = await self.store.get_current_document(
            product_id, DocumentType.PRODUCT_OVERVIEW.value
        )
        return overview.content if overview else ""

    async def build_prompts(self, document: DocumentRow) -> dict[str, AnalysisPrompt]:
        """
        Build prompts keyed by regulation title, in first-seen regulation order.

        Returns an empty mapping when no obligations apply to the product.
        """
        obligations = await self.matcher.get_applicable_obligations(document.product_id)
        groups = group_by_regulation(obligations)
        if not groups:
            logger.info("no_applicable_obligations", document_id=document.id)
            return {}

        product_context = await self.product_context(document.product_id)
        overview_context = await self.overview_context(document.product_id)

        return {
            title: build_regulation_prompt(
                title,
                group,
                document.content,
                product_context,
                overview_context,
            )
            for title, group in groups.items()
        }
