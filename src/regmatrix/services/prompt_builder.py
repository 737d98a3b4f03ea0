"""
Regulation grouping and prompt construction.

A document is analysed as one request per regulation so that every request
stays well inside the model's output limit.
"""

import json
from typing import Iterable, Sequence

from regmatrix.config import get_settings
from regmatrix.models.batch import AnalysisPrompt
from regmatrix.models.obligation import MatchedObligation

REGULATION_SYSTEM = """You are an expert UK financial services regulatory compliance analyst.
Your task is to analyse a product's Terms & Conditions document against the obligations of a single regulation: {regulation}.

For each obligation, determine:
- Whether the T&Cs contain a clause that addresses it ("addressed", "partially_addressed", "not_addressed", "not_applicable")
- The specific clause or section reference in the T&Cs that addresses it
- A quality assessment (0.0-1.0) of how well the clause satisfies the obligation
- Specific gaps or deficiencies
- A recommendation for improvement

Each obligation carries an evidenceScope:
- "mandatory_clause": the T&Cs must contain a clause; absence is a failure
- "term_required": a customer-facing term is expected
- "internal_governance": evidence normally lives in internal process documents, not the T&Cs
- "guidance": best practice; absence is a soft signal only

Consider Consumer Duty requirements: clauses must use plain English, avoid misleading terms, and be fair to consumers.
Be precise about clause references. Quote relevant T&C text when identifying evidence."""

JSON_INSTRUCTION = """

Respond with a single valid JSON object only. Do not wrap it in markdown fences and do not add commentary.
Escape quotes and newlines inside string values. Do not use trailing commas."""

PRINCIPLE_SECTION = """

PRINCIPLE OBLIGATIONS (assess differently):
{principles}

These are general principles. Do NOT look for a specific clause addressing them.
Instead, assess how well the document's overall quality, tone, clarity and structure
reflects each principle. Score based on:
- Plain English and readability
- Absence of misleading or unfair terms
- Overall alignment with the principle's intent
Status should be "addressed" if the document generally embodies the principle,
"partially_addressed" if there are concerns, "not_addressed" only if the document
actively contradicts or undermines the principle."""

OVERVIEW_SECTION = """

PRODUCT OVERVIEW (context only, do not assess):
---
{overview}
---"""

RESPONSE_SCHEMA = """{
  "overallAssessment": "summary for this regulation",
  "obligationFindings": [
    {
      "obligationId": "...",
      "status": "addressed|partially_addressed|not_addressed|not_applicable",
      "evidence": "quote or description from the document",
      "clauseReference": "clause number/title if applicable",
      "qualityScore": 0.0,
      "gaps": ["gap 1"],
      "recommendation": "what to change"
    }
  ],
  "missingClauses": ["obligation summary with no clause"],
  "qualityConcerns": ["concern 1"]
}"""


def group_by_regulation(
    obligations: Iterable[MatchedObligation],
) -> dict[str, list[MatchedObligation]]:
    """
    Partition obligations by regulation title.

    Groups appear in first-seen order and keep the relative order of their
    obligations.
    """
    groups: dict[str, list[MatchedObligation]] = {}
    for obligation in obligations:
        groups.setdefault(obligation.regulation_title, []).append(obligation)
    return groups


def build_product_context(
    product_type: str,
    name: str,
    customer_type: str,
    distribution_channel: str,
    jurisdictions: Sequence[str],
) -> str:
    """Human-readable product description embedded in every prompt."""
    return (
        f'{product_type} product ("{name}") aimed at {customer_type} customers, '
        f"distributed via {distribution_channel}, offered in {', '.join(jurisdictions)}"
    )


def compute_max_tokens(obligation_count: int) -> int:
    """Token budget that grows linearly with the size of the group."""
    return get_settings().compute_max_tokens(obligation_count)


def truncate_overview(overview: str | None) -> str:
    if not overview:
        return ""
    return overview[: get_settings().overview_context_max_chars]


def build_regulation_prompt(
    regulation_title: str,
    obligations: Sequence[MatchedObligation],
    document_text: str,
    product_context: str,
    overview_context: str = "",
) -> AnalysisPrompt:
    """
    Build the request for one regulation group.

    Principle obligations are listed in their own section with holistic
    assessment instructions; they are never judged by the presence of a clause.
    """
    specific = [o.to_prompt_dict() for o in obligations if not o.is_principle]
    principles = [o.to_prompt_dict() for o in obligations if o.is_principle]

    principle_section = (
        PRINCIPLE_SECTION.format(principles=json.dumps(principles, indent=2))
        if principles
        else ""
    )
    overview = truncate_overview(overview_context)
    overview_section = OVERVIEW_SECTION.format(overview=overview) if overview else ""

    user_message = (
        f"Analyse the following TERMS & CONDITIONS for a {product_context} "
        f"against {regulation_title}.\n\n"
        f"REGULATORY OBLIGATIONS TO CHECK:\n{json.dumps(specific, indent=2)}"
        f"{principle_section}{overview_section}\n\n"
        f"TERMS & CONDITIONS DOCUMENT:\n---\n{document_text}\n---\n\n"
        f"Return a JSON object with one finding per obligation:\n{RESPONSE_SCHEMA}"
    )

    return AnalysisPrompt(
        system=REGULATION_SYSTEM.format(regulation=regulation_title) + JSON_INSTRUCTION,
        user_message=user_message,
        max_tokens=compute_max_tokens(len(obligations)),
    )


# =============================================================================
# Clause drafting
# =============================================================================

CLAUSE_SYSTEM = """You are an expert financial services regulatory lawyer specialising in UK FCA regulation.
Your role is to draft Terms & Conditions clauses that satisfy specific regulatory obligations.

When drafting clauses:
- Use precise, legally sound language appropriate for consumer-facing banking T&Cs
- Reference the specific regulatory obligation the clause satisfies
- Keep clauses concise but comprehensive
- Use plain English where possible (Consumer Duty requires consumer understanding)
- Include any mandatory disclosure wording required by the regulation
- Flag where firm-specific details need to be inserted with [BRACKETS]

Respond with a JSON array of clause objects only. Do not wrap it in markdown fences and do not add commentary."""

CLAUSE_SCHEMA = """- "obligationId": the obligation id
- "title": short clause title
- "clauseText": the actual T&C wording
- "guidance": why this clause is needed and what it achieves
- "confidence": 0.0-1.0, how confident you are that the clause addresses the obligation"""


def build_clause_prompt(
    obligations: Sequence[MatchedObligation],
    product_context: str,
) -> AnalysisPrompt:
    """Build one request drafting a clause for each obligation."""
    descriptions = [
        {
            "id": o.obligation_id,
            "regulation": o.regulation_title,
            "reference": o.rule_reference,
            "type": o.obligation_type,
            "summary": o.summary,
            "actionRequired": o.action_text,
        }
        for o in obligations
    ]
    user_message = (
        f"Generate T&C clauses for a {product_context}.\n\n"
        "The following regulatory obligations need to be addressed in the product's "
        f"Terms & Conditions:\n\n{json.dumps(descriptions, indent=2)}\n\n"
        f"For each obligation, generate a clause with:\n{CLAUSE_SCHEMA}"
    )
    return AnalysisPrompt(
        system=CLAUSE_SYSTEM,
        user_message=user_message,
        max_tokens=compute_max_tokens(len(obligations)),
    )
