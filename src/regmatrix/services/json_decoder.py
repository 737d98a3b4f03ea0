"""
Resilient decoding of LLM JSON responses.

LLM output is not a reliable machine protocol. Each response goes through
fence stripping, a strict parse, then a tolerant repair parse; if all of
those fail the same request is re-issued exactly once and the new response
goes through the same steps.
"""

import json
import re
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from json_repair import repair_json
from pydantic import BaseModel, ValidationError

from regmatrix.exceptions import DecodeError
from regmatrix.models.document import RegulationResult

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"^```[A-Za-z]*[ \t]*\n?(.*)```$", re.DOTALL)


class DecodeStage(str, Enum):
    """Which step produced the decoded value."""

    DIRECT = "direct"
    REPAIRED = "repaired"
    RETRY_DIRECT = "retry_direct"
    RETRY_REPAIRED = "retry_repaired"


class DecodeOutcome(BaseModel):
    value: Any
    stage: DecodeStage
    attempts: int = 1


def strip_fences(text: str) -> str:
    """Remove a Markdown code fence wrapping the whole response."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    # Unterminated fence, usually a truncated response
    _, _, rest = text.partition("\n")
    return rest.strip()


class ResilientJSONDecoder:
    """
    Decode LLM text into a validated model.

    A response that parses but does not validate against the target model is
    treated the same as one that does not parse.
    """

    def __init__(self, model: type[BaseModel] = RegulationResult):
        self.model = model

    def _validate(self, data: object) -> BaseModel | None:
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            # Some responses wrap the expected object in a one-element array
            if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict):
                return self._validate(data[0])
            logger.debug("decode_validation_failed", errors=e.error_count())
            return None

    def parse(self, text: str) -> tuple[BaseModel, bool] | None:
        """
        Run the parse steps on one response.

        Returns ``(value, repaired)`` or None if every step failed.
        """
        cleaned = strip_fences(text)
        if not cleaned:
            return None

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            pass
        else:
            value = self._validate(data)
            return (value, False) if value is not None else None

        repaired = repair_json(cleaned, return_objects=True)
        value = self._validate(repaired)
        return (value, True) if value is not None else None

    async def decode(
        self,
        text: str,
        retry: Callable[[], Awaitable[str]] | None = None,
        label: str = "",
    ) -> DecodeOutcome:
        """
        Decode a response, re-issuing the request at most once.

        Raises:
            DecodeError: if the original and the retried response both fail.
        """
        parsed = self.parse(text)
        if parsed is not None:
            value, repaired = parsed
            if repaired:
                logger.info("decode_repaired", label=label)
            stage = DecodeStage.REPAIRED if repaired else DecodeStage.DIRECT
            return DecodeOutcome(value=value, stage=stage, attempts=1)

        if retry is None:
            raise DecodeError(f"Unparseable response for {label or 'request'}", attempts=1)

        logger.warning("decode_failed_retrying", label=label)
        try:
            retried_text = await retry()
        except Exception as e:
            raise DecodeError(
                f"Retry request failed for {label or 'request'}: {e}", attempts=2
            ) from e

        parsed = self.parse(retried_text)
        if parsed is None:
            raise DecodeError(
                f"Unparseable response for {label or 'request'} after retry", attempts=2
            )

        value, repaired = parsed
        stage = DecodeStage.RETRY_REPAIRED if repaired else DecodeStage.RETRY_DIRECT
        logger.info("decode_recovered_on_retry", label=label, stage=stage.value)
        return DecodeOutcome(value=value, stage=stage, attempts=2)
