"""
Test endpoint API.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from api.main import app
from api.routers import invoice
from core.cancellation import CancellationToken
from core.database import PipelineJob
from core.error_classifier import ErrorCategory
from core.errors import PipelineCancelledError, PipelineOperationError


def fake_get_db(session=None):
    async def get_db():
        yield session if session is not None else AsyncMock()
    return get_db


@pytest.fixture
def client():
    """Fixture per TestClient."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_active_runs():
    invoice._active_runs.clear()
    yield
    invoice._active_runs.clear()


class TestHealthEndpoint:
    """Test endpoint /health."""

    def test_health_check(self, client):
        with patch("api.main.get_db", fake_get_db()):
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "invoice-processor"
        assert data["database"] == "connected"
        assert data["endpoints"]["process"] == "/api/invoice/process"


class TestProcessEndpoint:
    """Test endpoint POST /api/invoice/process."""

    def test_process_creates_job(self, client):
        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.create_job", new=AsyncMock(return_value="job-123")) as mock_create, \
             patch("api.routers.invoice.run_invoice_job", new=AsyncMock()) as mock_run:

            response = client.post("/api/invoice/process", data={"file_path": "/data/ordini.xlsx", "max_step": 3})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processing"
        assert data["job_id"] == "job-123"
        assert mock_create.await_args.kwargs == {"artifact_path": "/data/ordini.xlsx", "max_step": 3}
        job_id, file_path, max_step, token = mock_run.call_args.args
        assert (job_id, file_path, max_step) == ("job-123", "/data/ordini.xlsx", 3)
        assert isinstance(token, CancellationToken)

    def test_process_rejected_while_running(self, client):
        invoice._active_runs["job-attivo"] = CancellationToken()

        with patch("api.routers.invoice.create_job", new=AsyncMock()) as mock_create:
            response = client.post("/api/invoice/process", data={"file_path": "/data/ordini.xlsx"})

        assert response.status_code == 409
        assert "job-attivo" in response.json()["detail"]
        mock_create.assert_not_called()

    def test_process_requires_file_path(self, client):
        response = client.post("/api/invoice/process", data={})

        assert response.status_code == 422

    def test_job_creation_failure(self, client):
        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.create_job", new=AsyncMock(side_effect=RuntimeError("db down"))):

            response = client.post("/api/invoice/process", data={"file_path": "/data/ordini.xlsx"})

        assert response.status_code == 500
        assert invoice._active_runs == {}

    @pytest.mark.asyncio
    async def test_concurrent_requests_start_one_run(self):
        """Due richieste sovrapposte durante la creazione del job: una sola parte."""
        async def slow_create(db, **kwargs):
            await asyncio.sleep(0.01)
            return "job-1"

        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.create_job", new=AsyncMock(side_effect=slow_create)) as mock_create, \
             patch("api.routers.invoice.run_invoice_job", new=AsyncMock()) as mock_run:
            results = await asyncio.gather(
                invoice.process_invoice_endpoint(file_path="/data/a.xlsx", max_step=None),
                invoice.process_invoice_endpoint(file_path="/data/b.xlsx", max_step=None),
                return_exceptions=True,
            )
            await asyncio.sleep(0)

        started = [r for r in results if isinstance(r, dict)]
        rejected = [r for r in results if isinstance(r, HTTPException)]
        assert len(started) == 1
        assert len(rejected) == 1
        assert rejected[0].status_code == 409
        assert mock_create.await_count == 1
        assert mock_run.call_count == 1
        assert list(invoice._active_runs) == ["job-1"]


class TestJobEndpoints:
    """Stato e annullamento job."""

    def test_job_status(self, client):
        job = PipelineJob(
            job_id="job-1", artifact_path="/data/ordini.xlsx", max_step=None,
            status="processing", progress_percent=33, current_stage=7
        )
        invoice._active_runs["job-1"] = CancellationToken()

        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.get_job", new=AsyncMock(return_value=job)):
            response = client.get("/api/invoice/jobs/job-1")

        assert response.status_code == 200
        data = response.json()
        assert data["progress_percent"] == 33
        assert data["current_stage"] == 7
        assert data["running"] is True

    def test_job_not_found(self, client):
        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.get_job", new=AsyncMock(return_value=None)):
            response = client.get("/api/invoice/jobs/manca")

        assert response.status_code == 404

    def test_cancel_running_job(self, client):
        token = CancellationToken()
        invoice._active_runs["job-1"] = token

        response = client.post("/api/invoice/jobs/job-1/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelling"
        assert token.is_cancelled

    def test_cancel_unknown_job(self, client):
        response = client.post("/api/invoice/jobs/manca/cancel")

        assert response.status_code == 404


class TestStagesEndpoint:
    def test_stage_catalogue(self, client):
        response = client.get("/api/invoice/stages")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 21
        assert data["stages"][0]["index"] == 1
        assert data["stages"][4]["procedure"] == "sp_MergePacking"
        assert data["stages"][-1]["procedure"] == "sp_InvoiceFinalProcess"


class FakePipeline:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def run(self, artifact_path, max_step=None, cancel_token=None):
        self.calls.append((artifact_path, max_step))
        if self.error is not None:
            raise self.error
        return True


def cancelled_error():
    try:
        try:
            raise PipelineCancelledError("annullato via API")
        except PipelineCancelledError as e:
            raise PipelineOperationError(ErrorCategory.GENERAL, "annullato") from e
    except PipelineOperationError as outer:
        return outer


class TestRunInvoiceJob:
    """Esito finale registrato sul job."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, expected_status", [
        (None, "completed"),
        (PipelineOperationError(ErrorCategory.TIMEOUT, "lento"), "error"),
        (cancelled_error(), "cancelled"),
        (RuntimeError("wiring"), "error"),
    ])
    async def test_final_status(self, error, expected_status):
        pipeline = FakePipeline(error)
        invoice._active_runs["job-1"] = CancellationToken()

        with patch("api.routers.invoice.get_db", fake_get_db()), \
             patch("api.routers.invoice.update_job_status", new=AsyncMock(return_value=True)) as mock_update, \
             patch("api.routers.invoice.create_invoice_pipeline", return_value=pipeline):
            await invoice.run_invoice_job("job-1", "/data/ordini.xlsx", 5, invoice._active_runs["job-1"])

        assert pipeline.calls == [("/data/ordini.xlsx", 5)]
        assert mock_update.await_args_list[-1].kwargs["status"] == expected_status
        assert "job-1" not in invoice._active_runs
