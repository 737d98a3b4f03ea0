"""Integration tests for the FastAPI endpoints against an in-memory store."""

import httpx
import pytest

from fakes import CONSUMER_DUTY, PAYMENT_SERVICES, clause_response, regulation_response
from regmatrix.api.main import create_app
from regmatrix.exceptions import ProviderStatusError
from regmatrix.models.batch import BatchResultEntry
from regmatrix.pipeline.clauses import ClauseGenerator
from regmatrix.pipeline.orchestrator import BatchOrchestrator
from regmatrix.pipeline.realtime import RealtimeAnalyser
from regmatrix.services.matching import ObligationMatcher

PRODUCTS = "/api/v1/products"
BATCH = "/api/v1/batch"


@pytest.fixture
def orchestrator(store, batch_provider, completion_provider):
    return BatchOrchestrator(store, batch_provider, completion_provider, ObligationMatcher(store))


@pytest.fixture
async def client(store, orchestrator, completion_provider, catalogue, monkeypatch):
    """API client wired to the test store and fake providers."""
    matcher = orchestrator.matcher
    analyser = RealtimeAnalyser(store, completion_provider, matcher)
    clauses = ClauseGenerator(store, completion_provider, matcher)

    monkeypatch.setattr("regmatrix.storage.store.get_compliance_store", lambda: store)
    monkeypatch.setattr("regmatrix.api.routes.products.get_compliance_store", lambda: store)
    monkeypatch.setattr("regmatrix.api.routes.products.get_obligation_matcher", lambda: matcher)
    monkeypatch.setattr("regmatrix.api.routes.products.get_batch_orchestrator", lambda: orchestrator)
    monkeypatch.setattr("regmatrix.api.routes.products.get_realtime_analyser", lambda: analyser)
    monkeypatch.setattr("regmatrix.api.routes.products.get_clause_generator", lambda: clauses)
    monkeypatch.setattr("regmatrix.api.routes.batch.get_batch_orchestrator", lambda: orchestrator)

    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _end_batch(batch_provider, store, catalogue, job_id):
    """Make the provider report the job ended with successful results."""
    items = await store.list_batch_items(job_id)
    ids = {CONSUMER_DUTY: catalogue.cd_ids, PAYMENT_SERVICES: catalogue.psr_ids}
    batch_provider.processing_status = "ended"
    batch_provider.results = [
        BatchResultEntry(
            custom_id=item.custom_id,
            type="succeeded",
            text=regulation_response(ids[item.regulation_title]),
        )
        for item in items
    ]


class TestHealthEndpoints:

    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["name"] == "RegMatrix API"

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["services"]["database"] is True


class TestObligationEndpoints:

    async def test_list(self, client, catalogue):
        resp = await client.get(f"{PRODUCTS}/{catalogue.product_id}/obligations")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 8
        assert data[0]["obligationId"] == "cd-1"
        assert data[0]["regulationTitle"] == CONSUMER_DUTY

    async def test_unknown_product(self, client):
        resp = await client.get(f"{PRODUCTS}/missing/obligations")
        assert resp.status_code == 404


class TestDocumentUpload:

    async def test_terms_upload_submits_batch(self, client, store, batch_provider, catalogue):
        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents",
            json={
                "documentType": "terms_and_conditions",
                "fileName": "terms-v2.txt",
                "content": "Updated terms.",
            },
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["analysisStatus"] == "queued"
        assert data["batchJobId"]
        assert data["batchError"] is None
        assert len(batch_provider.submitted) == 1
        assert await store.get_document(catalogue.document_id) is None

    async def test_overview_upload_is_context_only(self, client, batch_provider, catalogue):
        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents",
            json={
                "documentType": "product_overview",
                "fileName": "overview-v2.txt",
                "content": "New overview.",
            },
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["analysisStatus"] == "complete"
        assert data["batchJobId"] is None
        assert batch_provider.submitted == []

    async def test_submission_failure_keeps_upload(self, client, batch_provider, catalogue):
        batch_provider.submit_error = RuntimeError("provider unavailable")

        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents",
            json={"documentType": "terms_and_conditions", "fileName": "t.txt", "content": "x"},
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["analysisStatus"] == "pending"
        assert "provider unavailable" in data["batchError"]

    async def test_unknown_product(self, client):
        resp = await client.post(
            f"{PRODUCTS}/missing/documents",
            json={"documentType": "terms_and_conditions", "fileName": "t.txt", "content": "x"},
        )
        assert resp.status_code == 404

    async def test_invalid_document_type(self, client, catalogue):
        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents",
            json={"documentType": "brochure", "fileName": "b.txt", "content": "x"},
        )
        assert resp.status_code == 422


class TestDocumentStatus:

    async def test_resolves_outstanding_batches(
        self, client, store, batch_provider, orchestrator, catalogue
    ):
        job = await orchestrator.create_batch_for_documents([catalogue.document_id])
        await _end_batch(batch_provider, store, catalogue, job.id)

        resp = await client.get(f"{PRODUCTS}/{catalogue.product_id}/documents/{catalogue.document_id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["analysisStatus"] == "complete"
        assert len(data["analysisResult"]["obligationFindings"]) == 8

    async def test_document_of_other_product(self, client, catalogue):
        resp = await client.get(f"{PRODUCTS}/{catalogue.empty_product_id}/documents/{catalogue.document_id}")
        assert resp.status_code == 404


class TestAnalysisTrigger:

    async def test_batch_mode(self, client, catalogue):
        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents/{catalogue.document_id}",
            json={"mode": "batch"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["analysisStatus"] == "queued"
        assert data["batchJobId"]

    async def test_batch_mode_provider_failure(self, client, store, batch_provider, catalogue):
        batch_provider.submit_error = RuntimeError("down")

        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents/{catalogue.document_id}",
            json={"mode": "batch"},
        )

        assert resp.status_code == 502
        document = await store.get_document(catalogue.document_id)
        assert document.analysis_status == "pending"

    async def test_realtime_mode(self, client, store, completion_provider, catalogue):
        completion_provider.responses = [
            regulation_response(catalogue.cd_ids),
            regulation_response(catalogue.psr_ids),
        ]

        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents/{catalogue.document_id}",
            json={"mode": "realtime"},
        )

        assert resp.status_code == 200
        assert resp.json()["analysisStatus"] == "analysing"
        document = await store.get_document(catalogue.document_id)
        assert document.analysis_status == "complete"

    async def test_realtime_rejects_overview(self, client, catalogue):
        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/documents/{catalogue.overview_id}",
            json={"mode": "realtime"},
        )
        assert resp.status_code == 400


class TestBatchEndpoints:

    async def test_create(self, client, catalogue):
        resp = await client.post(BATCH, json={"documentIds": [catalogue.document_id]})
        assert resp.status_code == 201
        data = resp.json()
        assert data["totalRequests"] == 2
        assert data["status"] == "submitted"

    async def test_create_for_products(self, client, catalogue):
        resp = await client.post(BATCH, json={"productIds": [catalogue.product_id]})
        assert resp.status_code == 201

    async def test_create_requires_ids(self, client):
        resp = await client.post(BATCH, json={})
        assert resp.status_code == 400

    async def test_create_unknown_document(self, client):
        resp = await client.post(BATCH, json={"documentIds": ["missing"]})
        assert resp.status_code == 404

    async def test_create_nothing_analysable(self, client, catalogue):
        resp = await client.post(BATCH, json={"documentIds": [catalogue.overview_id]})
        assert resp.status_code == 400

    async def test_create_provider_failure(self, client, store, batch_provider, catalogue):
        batch_provider.submit_error = RuntimeError("down")

        resp = await client.post(BATCH, json={"documentIds": [catalogue.document_id]})

        assert resp.status_code == 502
        document = await store.get_document(catalogue.document_id)
        assert document.analysis_status == "pending"

    async def test_poll(self, client, store, batch_provider, catalogue):
        job_id = (await client.post(BATCH, json={"documentIds": [catalogue.document_id]})).json()[
            "batchJobId"
        ]
        await _end_batch(batch_provider, store, catalogue, job_id)

        resp = await client.get(f"{BATCH}/{job_id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["succeededCount"] == 2

    async def test_poll_unknown(self, client):
        resp = await client.get(f"{BATCH}/missing")
        assert resp.status_code == 404

    async def test_poll_provider_error(self, client, batch_provider, catalogue, monkeypatch):
        job_id = (await client.post(BATCH, json={"documentIds": [catalogue.document_id]})).json()[
            "batchJobId"
        ]

        async def broken(provider_batch_id):
            raise ProviderStatusError("status endpoint down")

        monkeypatch.setattr(batch_provider, "get_status", broken)
        resp = await client.get(f"{BATCH}/{job_id}")
        assert resp.status_code == 502

    async def test_resolve(self, client, store, batch_provider, catalogue):
        job_id = (await client.post(BATCH, json={"documentIds": [catalogue.document_id]})).json()[
            "batchJobId"
        ]
        await _end_batch(batch_provider, store, catalogue, job_id)

        resp = await client.post(f"{BATCH}/resolve")

        assert resp.status_code == 200
        data = resp.json()
        assert data["resolved"] == 1
        assert data["jobs"][0]["id"] == job_id


class TestMatrixEndpoints:

    async def test_get_matrix(self, client, catalogue):
        resp = await client.get(f"{PRODUCTS}/{catalogue.product_id}/matrix")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 8
        assert {e["complianceStatus"] for e in data} == {"not_assessed"}

    async def test_patch_entry(self, client, catalogue):
        entry = (await client.get(f"{PRODUCTS}/{catalogue.product_id}/matrix")).json()[0]

        resp = await client.patch(
            f"{PRODUCTS}/{catalogue.product_id}/matrix",
            json={"entryId": entry["id"], "complianceStatus": "compliant", "owner": "ops"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["complianceStatus"] == "compliant"
        assert data["evidenceSource"] == "manual"
        assert data["owner"] == "ops"

    async def test_patch_entry_of_other_product(self, client, catalogue):
        entry = (await client.get(f"{PRODUCTS}/{catalogue.product_id}/matrix")).json()[0]

        resp = await client.patch(
            f"{PRODUCTS}/{catalogue.empty_product_id}/matrix",
            json={"entryId": entry["id"], "notes": "x"},
        )
        assert resp.status_code == 404


class TestClauseEndpoints:

    async def test_generate_for_product(self, client, completion_provider, catalogue):
        completion_provider.responses = [
            clause_response(["cd-2", "cd-3", "psr-2", "psr-3", "psr-4", "psr-5"])
        ]

        resp = await client.post(f"{PRODUCTS}/{catalogue.product_id}/clauses")

        assert resp.status_code == 200
        data = resp.json()
        assert data[0]["obligationId"] == "psr-1"
        assert data[0]["fromTemplate"] is True
        assert len(data) == 7
        assert {"title", "clauseText", "guidance", "confidence"} <= set(data[1])

    async def test_generate_for_named_obligations(self, client, completion_provider, catalogue):
        completion_provider.responses = [clause_response(["cd-2"])]

        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/clauses",
            json={"obligationIds": ["cd-2"]},
        )

        assert resp.status_code == 200
        assert [c["obligationId"] for c in resp.json()] == ["cd-2"]

    async def test_unknown_product(self, client):
        resp = await client.post(f"{PRODUCTS}/missing/clauses")
        assert resp.status_code == 404

    async def test_undecodable_drafting_is_bad_gateway(self, client, completion_provider, catalogue):
        completion_provider.responses = ["not clauses", "still not clauses"]

        resp = await client.post(
            f"{PRODUCTS}/{catalogue.product_id}/clauses",
            json={"obligationIds": ["cd-2"]},
        )

        assert resp.status_code == 502
