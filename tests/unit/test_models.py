"""Tests for regmatrix/models — enums, validators, serialization."""

import pytest
from pydantic import ValidationError

from regmatrix.models.api import DocumentUploadRequest, MatrixUpdateRequest
from regmatrix.models.batch import (
    BatchJobStatus,
    BatchJobSummary,
    BatchRequest,
    BatchResultEntry,
    AnalysisPrompt,
)
from regmatrix.models.document import AnalysisResult, ObligationFinding, RegulationResult
from regmatrix.models.matrix import DocumentEvidence
from regmatrix.models.obligation import MatchedObligation


class TestBatchJobStatus:

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (BatchJobStatus.SUBMITTED, False),
            (BatchJobStatus.PROCESSING, False),
            (BatchJobStatus.CANCELLED, False),
            (BatchJobStatus.COMPLETED, True),
            (BatchJobStatus.FAILED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert status.is_terminal is terminal


class TestBatchModels:

    def test_custom_id_length_enforced(self):
        prompt = AnalysisPrompt(system="s", user_message="u", max_tokens=10)
        with pytest.raises(ValidationError):
            BatchRequest(
                custom_id="x" * 65,
                document_id="d",
                regulation_title="Reg",
                prompt=prompt,
            )

    def test_max_tokens_positive(self):
        with pytest.raises(ValidationError):
            AnalysisPrompt(system="s", user_message="u", max_tokens=0)

    def test_result_entry_succeeded(self):
        assert BatchResultEntry(custom_id="a", type="succeeded", text="{}").succeeded
        assert not BatchResultEntry(custom_id="a", type="errored").succeeded

    def test_summary_camel_case(self):
        summary = BatchJobSummary(
            id="job-1",
            provider_batch_id="msgbatch_1",
            status="processing",
            total_requests=3,
        )
        data = summary.to_dict()
        assert data["providerBatchId"] == "msgbatch_1"
        assert data["totalRequests"] == 3
        assert data["status"] == "processing"


class TestObligationFinding:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("addressed", "addressed"),
            ("Partially Addressed", "partially_addressed"),
            ("not-addressed", "not_addressed"),
            ("  NOT_APPLICABLE ", "not_applicable"),
        ],
    )
    def test_status_normalised(self, raw, expected):
        finding = ObligationFinding(obligation_id="o1", status=raw)
        assert finding.status.value == expected

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            ObligationFinding(obligation_id="o1", status="maybe")

    def test_quality_clamped(self):
        assert ObligationFinding(obligation_id="o", status="addressed", quality_score=1.7).quality_score == 1.0
        assert ObligationFinding(obligation_id="o", status="addressed", quality_score=-2).quality_score == 0.0
        assert ObligationFinding(obligation_id="o", status="addressed", quality_score="high").quality_score is None

    def test_null_fields_tolerated(self):
        finding = ObligationFinding.model_validate(
            {
                "obligationId": "o1",
                "status": "addressed",
                "evidence": None,
                "gaps": "No notice period",
                "recommendation": None,
            }
        )
        assert finding.evidence == ""
        assert finding.gaps == ["No notice period"]
        assert finding.recommendation == ""


class TestRegulationResult:

    def test_findings_required(self):
        with pytest.raises(ValidationError):
            RegulationResult.model_validate({"overallAssessment": "ok"})

    def test_null_lists(self):
        result = RegulationResult.model_validate(
            {"obligationFindings": [], "missingClauses": None, "overallAssessment": None}
        )
        assert result.missing_clauses == []
        assert result.overall_assessment == ""


class TestAnalysisResult:

    def test_round_trip_through_storage(self):
        result = AnalysisResult(
            overall_assessment="[A] ok",
            obligation_findings=[ObligationFinding(obligation_id="o1", status="addressed")],
            failed_regulations=["B"],
        )
        restored = AnalysisResult.model_validate(result.to_storage())
        assert restored == result
        assert restored.is_partial


class TestMatchedObligation:

    def test_prompt_dict(self):
        obligation = MatchedObligation(
            obligation_id="psr-1",
            summary="Refund unauthorised payments",
            obligation_type="obligation",
            action_text="Refund by end of next business day",
            regulation_title="PSRs",
            rule_reference="Reg 76",
            evidence_scope="mandatory_clause",
        )
        assert obligation.to_prompt_dict() == {
            "id": "psr-1",
            "summary": "Refund unauthorised payments",
            "actionText": "Refund by end of next business day",
            "obligationType": "obligation",
            "reference": "Reg 76",
            "evidenceScope": "mandatory_clause",
        }
        assert not obligation.is_principle


class TestDocumentEvidence:

    def test_storage_keys(self):
        evidence = DocumentEvidence(
            document_id="d1", document_type="terms_and_conditions", status="addressed"
        )
        stored = evidence.to_storage()
        assert stored["documentId"] == "d1"
        assert stored["documentType"] == "terms_and_conditions"
        assert stored["status"] == "addressed"


class TestApiModels:

    def test_upload_accepts_camel_case(self):
        request = DocumentUploadRequest.model_validate(
            {"documentType": "terms_and_conditions", "fileName": "t.txt", "content": "x"}
        )
        assert request.file_name == "t.txt"

    def test_upload_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            DocumentUploadRequest.model_validate(
                {"documentType": "brochure", "fileName": "b.txt", "content": "x"}
            )

    def test_matrix_update_status_enum(self):
        with pytest.raises(ValidationError):
            MatrixUpdateRequest.model_validate({"entryId": "e1", "complianceStatus": "fine"})
