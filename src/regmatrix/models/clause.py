"""
Terms & Conditions clause models.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, RootModel, field_validator, model_validator
from pydantic.alias_generators import to_camel


class GeneratedClause(BaseModel):
    """A T&Cs clause drafted to satisfy one obligation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    obligation_id: str
    title: str
    clause_text: str
    guidance: str = ""
    confidence: float = 0.0
    from_template: bool = False

    @field_validator("guidance", mode="before")
    @classmethod
    def guidance_or_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> Any:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.0
        return min(max(score, 0.0), 1.0)


class GeneratedClauseList(RootModel[list[GeneratedClause]]):
    """Decoded clause-drafting response."""

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if isinstance(data.get("clauses"), list):
                return data["clauses"]
            return [data]
        return data
