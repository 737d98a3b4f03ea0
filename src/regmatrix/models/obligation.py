"""
Obligation models for the regulatory corpus.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ObligationKind(str, Enum):
    """Deontic classification of an obligation."""

    OBLIGATION = "obligation"
    PROHIBITION = "prohibition"
    PERMISSION = "permission"
    DISPENSATION = "dispensation"
    PRINCIPLE = "principle"


class EvidenceScope(str, Enum):
    """
    Where compliance evidence for an obligation is expected to live.

    Governs how an absence of evidence in a T&Cs document is interpreted.
    """

    MANDATORY_CLAUSE = "mandatory_clause"
    TERM_REQUIRED = "term_required"
    INTERNAL_GOVERNANCE = "internal_governance"
    GUIDANCE = "guidance"


class MatchedObligation(BaseModel):
    """
    An obligation applicable to a product, annotated with its regulation.

    Produced by the obligation matcher; ordering is by descending relevance.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    obligation_id: str
    summary: str
    obligation_type: str = Field(..., description="One of ObligationKind values")
    addressee: str = ""
    action_text: str = ""
    regulation_title: str
    section_number: str = ""
    rule_reference: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0)
    rationale: str | None = None
    has_clause_template: bool = False
    evidence_scope: str = EvidenceScope.TERM_REQUIRED.value

    @property
    def is_principle(self) -> bool:
        """Principles are assessed holistically, not clause by clause."""
        return self.obligation_type == ObligationKind.PRINCIPLE.value

    def to_prompt_dict(self) -> dict[str, str]:
        """Compact representation embedded in analysis prompts."""
        return {
            "id": self.obligation_id,
            "summary": self.summary,
            "actionText": self.action_text,
            "obligationType": self.obligation_type,
            "reference": self.rule_reference,
            "evidenceScope": self.evidence_scope,
        }
