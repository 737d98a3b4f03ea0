"""Shared pytest fixtures for the regmatrix test suite."""

from types import SimpleNamespace

import pytest

from fakes import CONSUMER_DUTY, PAYMENT_SERVICES, FakeBatchProvider, FakeCompletionProvider
from regmatrix.storage.store import ComplianceStore
from regmatrix.storage.tables import (
    ApplicabilityRow,
    ClauseTemplateRow,
    DocumentRow,
    ObligationRow,
    ProductRow,
    ProductTypeRow,
    RegulationRow,
    RuleRow,
    SectionRow,
)


# ---------------------------------------------------------------------------
# Singleton cache clearing (autouse)
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clear_singletons():
    """Clear all @lru_cache singletons between tests."""
    from regmatrix.config import get_settings
    from regmatrix.pipeline.clauses import get_clause_generator
    from regmatrix.pipeline.orchestrator import get_batch_orchestrator
    from regmatrix.pipeline.realtime import get_realtime_analyser
    from regmatrix.services.llm_service import get_batch_provider, get_completion_provider
    from regmatrix.services.matching import get_obligation_matcher
    from regmatrix.storage.store import get_compliance_store

    for factory in (
        get_settings,
        get_compliance_store,
        get_batch_provider,
        get_completion_provider,
        get_obligation_matcher,
        get_batch_orchestrator,
        get_realtime_analyser,
        get_clause_generator,
    ):
        factory.cache_clear()
    yield


@pytest.fixture
def batch_provider():
    return FakeBatchProvider()


@pytest.fixture
def completion_provider():
    return FakeCompletionProvider()


# ---------------------------------------------------------------------------
# Store and seeded catalogue
# ---------------------------------------------------------------------------

@pytest.fixture
async def store():
    """ComplianceStore on a fresh in-memory SQLite database."""
    s = ComplianceStore("sqlite+aiosqlite://")
    await s.create_all()
    yield s
    await s.close()


def _obligations(rule_id, prefix, specs):
    return [
        ObligationRow(
            id=f"{prefix}-{i}",
            rule_id=rule_id,
            obligation_type=kind,
            addressee="firm",
            action_text=f"Action for {prefix}-{i}",
            summary=f"Summary of {prefix}-{i}",
            evidence_scope=scope,
        )
        for i, (kind, scope) in enumerate(specs, start=1)
    ]


@pytest.fixture
async def catalogue(store):
    """
    One product type with two applicable regulations.

    Consumer Duty has 3 obligations (one principle), the Payment Services
    Regulations have 5. A further obligation applies only to another product
    type and one applicable obligation is inactive.
    """
    cd_obligations = _obligations(
        "rule-cd",
        "cd",
        [
            ("principle", "guidance"),
            ("obligation", "mandatory_clause"),
            ("obligation", "term_required"),
        ],
    )
    psr_obligations = _obligations(
        "rule-psr",
        "psr",
        [
            ("obligation", "mandatory_clause"),
            ("obligation", "term_required"),
            ("prohibition", "mandatory_clause"),
            ("obligation", "internal_governance"),
            ("permission", "guidance"),
        ],
    )
    other = ObligationRow(
        id="other-1",
        rule_id="rule-psr",
        obligation_type="obligation",
        summary="Mortgage-only obligation",
        evidence_scope="mandatory_clause",
    )
    inactive = ObligationRow(
        id="inactive-1",
        rule_id="rule-cd",
        obligation_type="obligation",
        summary="Withdrawn obligation",
        evidence_scope="term_required",
        is_active=False,
    )

    applicability = [
        ApplicabilityRow(
            obligation_id=o.id,
            product_type_id="pt-current",
            relevance_score=0.9 - i * 0.01,
        )
        for i, o in enumerate(cd_obligations + psr_obligations)
    ]
    applicability += [
        ApplicabilityRow(obligation_id="other-1", product_type_id="pt-mortgage", relevance_score=0.9),
        ApplicabilityRow(obligation_id="inactive-1", product_type_id="pt-current", relevance_score=0.99),
    ]

    await store.add_all(
        [
            RegulationRow(id="reg-cd", title=CONSUMER_DUTY),
            RegulationRow(id="reg-psr", title=PAYMENT_SERVICES),
            ProductTypeRow(id="pt-current", name="Current Account"),
            ProductTypeRow(id="pt-mortgage", name="Mortgage"),
            ProductTypeRow(id="pt-empty", name="Savings Account"),
        ]
    )
    await store.add_all(
        [
            SectionRow(id="sec-cd", regulation_id="reg-cd", number="PRIN 2A"),
            SectionRow(id="sec-psr", regulation_id="reg-psr", number="Part 6"),
        ]
    )
    await store.add_all(
        [
            RuleRow(id="rule-cd", section_id="sec-cd", reference="PRIN 2A.2.1"),
            RuleRow(id="rule-psr", section_id="sec-psr", reference="Reg 48"),
        ]
    )
    await store.add_all(cd_obligations + psr_obligations + [other, inactive])
    await store.add_all(
        applicability
        + [
            ClauseTemplateRow(
                obligation_id="psr-1",
                title="Refund clause",
                template_text="We will refund unauthorised payments by the end of the next business day.",
                guidance="Refund timing is prescribed by the regulation.",
            ),
            ProductRow(
                id="prod-1",
                name="Everyday Account",
                product_type_id="pt-current",
                customer_type="retail",
                distribution_channel="online",
                jurisdictions=["England and Wales", "Scotland"],
            ),
            ProductRow(
                id="prod-empty",
                name="Easy Saver",
                product_type_id="pt-empty",
            ),
        ]
    )
    await store.add_all(
        [
            DocumentRow(
                id="doc-tc",
                product_id="prod-1",
                document_type="terms_and_conditions",
                file_name="terms.txt",
                content="1. Definitions. 4.1 Refunds are made within one business day.",
            ),
            DocumentRow(
                id="doc-overview",
                product_id="prod-1",
                document_type="product_overview",
                file_name="overview.txt",
                content="A current account for everyday banking.",
                analysis_status="complete",
            ),
        ]
    )

    return SimpleNamespace(
        product_id="prod-1",
        empty_product_id="prod-empty",
        document_id="doc-tc",
        overview_id="doc-overview",
        cd_ids=[o.id for o in cd_obligations],
        psr_ids=[o.id for o in psr_obligations],
    )
