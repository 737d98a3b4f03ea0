"""Tests for regmatrix/pipeline/clauses.py — template reuse and clause drafting."""

import json

import pytest

from fakes import FakeCompletionProvider, clause_response
from regmatrix.exceptions import DecodeError, ProductNotFoundError, ProviderError
from regmatrix.models.clause import GeneratedClause, GeneratedClauseList
from regmatrix.pipeline.clauses import ClauseGenerator
from regmatrix.services.prompt_builder import CLAUSE_SYSTEM

DRAFTED = ["cd-2", "cd-3", "psr-2", "psr-3", "psr-4", "psr-5"]


@pytest.fixture
def generator(store, completion_provider, catalogue):
    return ClauseGenerator(store, completion_provider)


class TestGeneratedClauseList:

    def test_array(self):
        clauses = GeneratedClauseList.model_validate_json(clause_response(["o1", "o2"])).root
        assert [c.obligation_id for c in clauses] == ["o1", "o2"]
        assert clauses[0].clause_text == "The bank will meet o1."

    def test_wrapped_in_object(self):
        data = {"clauses": json.loads(clause_response(["o1"]))}
        assert GeneratedClauseList.model_validate(data).root[0].obligation_id == "o1"

    def test_single_clause_object(self):
        data = json.loads(clause_response(["o1"]))[0]
        assert len(GeneratedClauseList.model_validate(data).root) == 1

    @pytest.mark.parametrize(
        "raw,expected",
        [(1.7, 1.0), (-0.2, 0.0), ("0.4", 0.4), (None, 0.0), ("high", 0.0)],
    )
    def test_confidence_clamped(self, raw, expected):
        clause = GeneratedClause(obligation_id="o1", title="t", clause_text="x", confidence=raw)
        assert clause.confidence == expected


class TestGenerateClausesForProduct:

    async def test_templates_then_drafted(self, generator, completion_provider, catalogue):
        completion_provider.responses = [clause_response(DRAFTED)]

        clauses = await generator.generate_clauses_for_product(catalogue.product_id)

        assert [c.obligation_id for c in clauses] == ["psr-1"] + DRAFTED
        template = clauses[0]
        assert template.from_template is True
        assert template.confidence == 1.0
        assert template.title == "Refund clause"
        assert template.clause_text.startswith("We will refund")
        assert template.guidance == "Refund timing is prescribed by the regulation."
        assert all(not c.from_template for c in clauses[1:])
        assert clauses[1].confidence == 0.7

    async def test_prompt_lists_only_drafted_obligations(
        self, generator, completion_provider, catalogue
    ):
        completion_provider.responses = [clause_response(DRAFTED)]

        await generator.generate_clauses_for_product(catalogue.product_id)

        assert len(completion_provider.calls) == 1
        call = completion_provider.calls[0]
        assert call["system"] == CLAUSE_SYSTEM
        assert "Everyday Account" in call["user_message"]
        assert '"id": "cd-2"' in call["user_message"]
        assert '"id": "cd-1"' not in call["user_message"]
        assert '"id": "psr-1"' not in call["user_message"]
        assert call["max_tokens"] == 4096

    async def test_only_templates_needs_no_request(
        self, generator, completion_provider, catalogue
    ):
        clauses = await generator.generate_clauses_for_product(
            catalogue.product_id, ["psr-1", "cd-1"]
        )

        assert [c.obligation_id for c in clauses] == ["psr-1"]
        assert completion_provider.calls == []

    async def test_named_obligations_outside_applicability(
        self, generator, completion_provider, catalogue
    ):
        completion_provider.responses = [clause_response(["cd-2", "other-1"])]

        clauses = await generator.generate_clauses_for_product(
            catalogue.product_id, ["other-1", "cd-2"]
        )

        assert [c.obligation_id for c in clauses] == ["cd-2", "other-1"]

    async def test_unrequested_clauses_dropped(self, generator, completion_provider, catalogue):
        completion_provider.responses = [clause_response(["cd-2", "invented-9"])]

        clauses = await generator.generate_clauses_for_product(catalogue.product_id, ["cd-2"])

        assert [c.obligation_id for c in clauses] == ["cd-2"]

    async def test_unknown_product(self, generator):
        with pytest.raises(ProductNotFoundError):
            await generator.generate_clauses_for_product("missing")

    async def test_unknown_product_with_named_obligations(self, generator):
        with pytest.raises(ProductNotFoundError):
            await generator.generate_clauses_for_product("missing", ["cd-2"])

    async def test_fenced_response_decoded(self, generator, completion_provider, catalogue):
        completion_provider.responses = [f"```json\n{clause_response(['cd-2'])}\n```"]

        clauses = await generator.generate_clauses_for_product(catalogue.product_id, ["cd-2"])

        assert [c.obligation_id for c in clauses] == ["cd-2"]
        assert len(completion_provider.calls) == 1


class TestClauseDraftingFailures:

    async def test_undecodable_response_retried_once(self, store, catalogue):
        completion = FakeCompletionProvider(["Here are your clauses!", clause_response(["cd-2"])])
        generator = ClauseGenerator(store, completion)

        clauses = await generator.generate_clauses_for_product(catalogue.product_id, ["cd-2"])

        assert [c.obligation_id for c in clauses] == ["cd-2"]
        assert len(completion.calls) == 2

    async def test_decode_failure_after_retry(self, store, catalogue):
        generator = ClauseGenerator(store, FakeCompletionProvider(["nope", "still nope"]))

        with pytest.raises(DecodeError):
            await generator.generate_clauses_for_product(catalogue.product_id, ["cd-2"])

    async def test_provider_failure(self, store, catalogue):
        generator = ClauseGenerator(store, FakeCompletionProvider([RuntimeError("overloaded")]))

        with pytest.raises(ProviderError, match="overloaded"):
            await generator.generate_clauses_for_product(catalogue.product_id, ["cd-2"])
