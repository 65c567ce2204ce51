"""Unit tests for the finance HTTP endpoints."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from finance_ingest.core.errors import MailboxNotConnectedError
from finance_ingest.core.models import IngestResult
from finance_ingest.main import app


@pytest.fixture
def client() -> TestClient:
    """Client without lifespan (no database or scheduler startup)."""
    return TestClient(app)


class TestEmailIngestEndpoint:
    """Tests for POST /finance/email-ingest."""

    def test_success(self, client):
        """Test counters are returned with ok=true."""
        result = IngestResult(scanned=4, created_messages=2, created_ledger_entries=1)
        with patch("finance_ingest.routers.finance.FinanceIngestProcessor") as processor_cls:
            processor_cls.return_value.process.return_value = result
            response = client.post("/finance/email-ingest", json={"maxMessages": 10, "folder": "Invoices"})

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "scanned": 4,
            "createdMessages": 2,
            "createdDocs": 0,
            "createdLedgerEntries": 1,
            "duplicateCandidates": 0,
            "failures": [],
        }
        processor_cls.return_value.process.assert_called_once_with(max_messages=10, folder="Invoices")

    def test_defaults_without_body(self, client):
        """Test an empty request uses the default folder and limit."""
        with patch("finance_ingest.routers.finance.FinanceIngestProcessor") as processor_cls:
            processor_cls.return_value.process.return_value = IngestResult()
            response = client.post("/finance/email-ingest")

        assert response.status_code == 200
        processor_cls.return_value.process.assert_called_once_with(max_messages=None, folder="Inbox")

    def test_error_returns_500(self, client):
        """Test failures surface as ok=false with the message."""
        with patch("finance_ingest.routers.finance.FinanceIngestProcessor") as processor_cls:
            processor_cls.return_value.process.side_effect = MailboxNotConnectedError(
                "Microsoft 365 is not connected"
            )
            response = client.post("/finance/email-ingest", json={})

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "Microsoft 365 is not connected"}


class TestSeedEndpoint:
    """Tests for POST /finance/seed."""

    def test_seed(self, client):
        """Test categories and rules are seeded."""
        with patch("finance_ingest.routers.finance.Database"), \
             patch("finance_ingest.routers.finance.seed_default_categories", return_value={"createdCount": 8}), \
             patch("finance_ingest.routers.finance.seed_default_rules", return_value={"created": 5, "updated": 0}):
            response = client.post("/finance/seed")

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "categories": {"createdCount": 8},
            "rules": {"created": 5, "updated": 0},
        }


class TestHealth:
    """Tests for GET /health."""

    def test_health(self, client):
        """Test the health endpoint responds."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
