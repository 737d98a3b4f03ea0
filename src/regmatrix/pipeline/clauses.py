"""
T&Cs clause drafting for a product's obligations.

Obligations with a stored clause template use it verbatim; the rest are
drafted in one completion request. Principles are never given a clause.
"""

from functools import lru_cache
from typing import Sequence

import structlog

from regmatrix.config import get_settings
from regmatrix.exceptions import ProductNotFoundError, ProviderError
from regmatrix.models.clause import GeneratedClause, GeneratedClauseList
from regmatrix.models.obligation import MatchedObligation
from regmatrix.pipeline.context import DocumentPromptBuilder
from regmatrix.services.json_decoder import ResilientJSONDecoder
from regmatrix.services.llm_service import CompletionProvider, get_completion_provider
from regmatrix.services.matching import ObligationMatcher
from regmatrix.services.prompt_builder import build_clause_prompt
from regmatrix.storage.store import ComplianceStore, get_compliance_store

logger = structlog.get_logger(__name__)


class ClauseGenerator:
    """Produces template or drafted clauses for the obligations of a product."""

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
        self.decoder = ResilientJSONDecoder(GeneratedClauseList)

    @property
    def completion(self) -> CompletionProvider:
        if self._completion is None:
            self._completion = get_completion_provider()
        return self._completion

    async def _select_obligations(
        self,
        product_id: str,
        obligation_ids: Sequence[str] | None,
    ) -> list[MatchedObligation]:
        if not obligation_ids:
            return await self.matcher.get_applicable_obligations(product_id)

        if await self.store.get_product(product_id) is None:
            raise ProductNotFoundError(product_id)
        rows = await self.store.find_obligations(obligation_ids)
        return [MatchedObligation.model_validate(row) for row in rows]

    async def generate_clauses_for_product(
        self,
        product_id: str,
        obligation_ids: Sequence[str] | None = None,
    ) -> list[GeneratedClause]:
        """
        Get a clause for each applicable obligation, or for the named ones.

        Template clauses come first, followed by drafted clauses in the order
        the model returned them. Drafted clauses for obligations that were not
        requested are dropped.

        Raises:
            ProductNotFoundError: if the product does not exist.
            ProviderError: if the drafting request fails.
            DecodeError: if the drafting response cannot be decoded after one retry.
        """
        obligations = [
            o for o in await self._select_obligations(product_id, obligation_ids)
            if not o.is_principle
        ]
        templates = await self.store.get_clause_templates([o.obligation_id for o in obligations])

        clauses = []
        pending = []
        for obligation in obligations:
            template = templates.get(obligation.obligation_id)
            if template is None:
                pending.append(obligation)
                continue
            clauses.append(
                GeneratedClause(
                    obligation_id=obligation.obligation_id,
                    title=template.title,
                    clause_text=template.template_text,
                    guidance=template.guidance,
                    confidence=1.0,
                    from_template=True,
                )
            )

        if not pending:
            logger.info("clauses_from_templates", product_id=product_id, clauses=len(clauses))
            return clauses

        product_context = await self.prompts.product_context(product_id)
        prompt = build_clause_prompt(pending, product_context)
        max_tokens = min(prompt.max_tokens, self.settings.realtime_max_tokens_cap)

        async def request() -> str:
            return await self.completion.complete(prompt.system, prompt.user_message, max_tokens)

        try:
            text = await request()
        except Exception as e:
            raise ProviderError(f"Clause generation failed: {e}") from e

        outcome = await self.decoder.decode(text, retry=request, label=f"clauses:{product_id}")
        wanted = {o.obligation_id for o in pending}
        drafted = [c for c in outcome.value.root if c.obligation_id in wanted]

        logger.info(
            "clauses_generated",
            product_id=product_id,
            templated=len(clauses),
            drafted=len(drafted),
            requested=len(pending),
        )
        return clauses + drafted


@lru_cache()
def get_clause_generator() -> ClauseGenerator:
    """Get cached clause generator instance."""
    return ClauseGenerator()
