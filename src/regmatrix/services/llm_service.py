"""
LLM provider clients for document analysis.

The batch provider submits per-regulation requests to the Anthropic Message
Batches API and streams results back; the completion provider makes one
synchronous call per request and is used for real-time analysis and for the
single decode retry.
"""

from functools import lru_cache
from typing import AsyncIterator, Protocol, Sequence

import anthropic
import structlog
from anthropic import AsyncAnthropic
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from regmatrix.config import get_settings
from regmatrix.exceptions import ProviderError, ProviderStatusError
from regmatrix.models.batch import (
    BatchRequest,
    BatchResultEntry,
    ProviderBatchStatus,
    ProviderProcessingStatus,
)

logger = structlog.get_logger(__name__)

_TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


# =============================================================================
# Provider Interfaces
# =============================================================================


class JobStatusSource(Protocol):
    """Anything that can report the processing status of a submitted batch."""

    async def get_status(self, provider_batch_id: str) -> ProviderBatchStatus: ...


class BatchProvider(JobStatusSource, Protocol):
    """Asynchronous batch executor."""

    async def submit(self, requests: Sequence[BatchRequest]) -> str: ...

    def stream_results(self, provider_batch_id: str) -> AsyncIterator[BatchResultEntry]: ...


class CompletionProvider(Protocol):
    """Synchronous single-request completion."""

    async def complete(self, system: str, user_message: str, max_tokens: int) -> str: ...


def _message_text(message: anthropic.types.Message) -> str:
    return "".join(block.text for block in message.content if block.type == "text")


class _AnthropicClientMixin:
    def __init__(self, client: AsyncAnthropic | None = None):
        settings = get_settings()
        self.settings = settings
        self.model = settings.llm_model
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self.settings.anthropic_api_key:
                raise ProviderError("Anthropic client not configured. Set ANTHROPIC_API_KEY.")
            self._client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.llm_timeout,
            )
        return self._client

    def _params(self, system: str, user_message: str, max_tokens: int) -> dict:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": self.settings.llm_temperature,
            "system": system,
            "messages": [{"role": "user", "content": user_message}],
        }


# =============================================================================
# Batch Provider
# =============================================================================


class AnthropicBatchProvider(_AnthropicClientMixin):
    """Message Batches API client."""

    async def submit(self, requests: Sequence[BatchRequest]) -> str:
        batch = await self.client.messages.batches.create(
            requests=[
                {
                    "custom_id": request.custom_id,
                    "params": self._params(
                        request.prompt.system,
                        request.prompt.user_message,
                        request.prompt.max_tokens,
                    ),
                }
                for request in requests
            ]
        )
        logger.info("provider_batch_created", provider_batch_id=batch.id, requests=len(requests))
        return batch.id

    async def get_status(self, provider_batch_id: str) -> ProviderBatchStatus:
        try:
            batch = await self.client.messages.batches.retrieve(provider_batch_id)
        except anthropic.APIError as e:
            raise ProviderStatusError(
                f"Status lookup failed for {provider_batch_id}: {e}"
            ) from e
        return ProviderBatchStatus(
            provider_batch_id=batch.id,
            processing_status=ProviderProcessingStatus(batch.processing_status),
        )

    async def stream_results(self, provider_batch_id: str) -> AsyncIterator[BatchResultEntry]:
        """Yield result entries one at a time as the provider streams them."""
        results = await self.client.messages.batches.results(provider_batch_id)
        async for entry in results:
            result = entry.result
            if result.type == "succeeded":
                yield BatchResultEntry(
                    custom_id=entry.custom_id,
                    type=result.type,
                    text=_message_text(result.message),
                )
            else:
                error = getattr(result, "error", None)
                yield BatchResultEntry(
                    custom_id=entry.custom_id,
                    type=result.type,
                    error=str(error) if error is not None else result.type,
                )


# =============================================================================
# Completion Provider
# =============================================================================


class AnthropicCompletionProvider(_AnthropicClientMixin):
    """Messages API client for synchronous requests."""

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def complete(self, system: str, user_message: str, max_tokens: int) -> str:
        # Long generations outlast the non-streaming request timeout
        async with self.client.messages.stream(
            **self._params(system, user_message, max_tokens)
        ) as stream:
            response = await stream.get_final_message()
        logger.debug(
            "completion_received",
            model=self.model,
            stop_reason=response.stop_reason,
            output_tokens=response.usage.output_tokens,
        )
        return _message_text(response)


@lru_cache()
def get_batch_provider() -> AnthropicBatchProvider:
    """Get cached batch provider instance."""
    return AnthropicBatchProvider()


@lru_cache()
def get_completion_provider() -> AnthropicCompletionProvider:
    """Get cached completion provider instance."""
    return AnthropicCompletionProvider()
