"""
Business logic services for regmatrix.
"""

from regmatrix.services.json_decoder import DecodeOutcome, DecodeStage, ResilientJSONDecoder
from regmatrix.services.llm_service import (
    AnthropicBatchProvider,
    AnthropicCompletionProvider,
    BatchProvider,
    CompletionProvider,
    JobStatusSource,
    get_batch_provider,
    get_completion_provider,
)
from regmatrix.services.matching import ObligationMatcher, get_obligation_matcher
from regmatrix.services.prompt_builder import (
    build_clause_prompt,
    build_product_context,
    build_regulation_prompt,
    group_by_regulation,
)

__all__ = [
    "DecodeOutcome",
    "DecodeStage",
    "ResilientJSONDecoder",
    "AnthropicBatchProvider",
    "AnthropicCompletionProvider",
    "BatchProvider",
    "CompletionProvider",
    "JobStatusSource",
    "get_batch_provider",
    "get_completion_provider",
    "ObligationMatcher",
    "get_obligation_matcher",
    "build_clause_prompt",
    "build_product_context",
    "build_regulation_prompt",
    "group_by_regulation",
]
