import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from invoice_intake.api import deps
from invoice_intake.api.deps import get_browser, get_orchestrator, get_settings, get_token_store
from invoice_intake.api.main import app
from invoice_intake.core.config import Settings
from invoice_intake.core.errors import AuthError, ConfigurationError
from invoice_intake.models.invoice import ArchiveFolder, Category, ProcessedItem, ProcessingSummary, SkippedItem
from invoice_intake.models.message import EmailListing, EmailSummary
from invoice_intake.services.google_auth import PROVIDER
from invoice_intake.services.storage import InMemoryTokenStore

client = TestClient(app)


class StubOrchestrator:
    def __init__(self, summary=None, error=None):
        self.summary = summary or ProcessingSummary()
        self.error = error
        self.requests = []

    async def run(self, request, channel=None):
        self.requests.append(request)
        if self.error is not None:
            if channel is not None:
                await channel.error(str(self.error))
            raise self.error
        if channel is not None:
            await channel.log("Found 2 message(s) with PDF attachments")
            await channel.log("Skipped flyer.pdf: marketing flyer")
            await channel.complete(self.summary.model_dump(mode="json", by_alias=True))
        return self.summary


def summary():
    return ProcessingSummary(
        processed=[ProcessedItem(
            message_id="m1",
            filename="inv1.pdf",
            id="FT 2025/001",
            supplier="EDP Comercial",
            date="2025-01-10",
            amount=123.0,
            entity="AMANDEL - Sociedade Agrícola, Lda",
            category=Category.SPVS_AGRIOPS,
            confidence=100,
            file_link="https://drive.google.com/file/d/file-1/view",
            folder_path="SPVs_AgriOps/AMANDEL - Sociedade Agrícola, Lda/01 - January/inv1.pdf",
        )],
        skipped=[SkippedItem(message_id="m2", filename="flyer.pdf", reason="marketing flyer")],
    )


def parse_sse(text):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def orchestrator():
    stub = StubOrchestrator(summary=summary())
    app.dependency_overrides[get_orchestrator] = lambda: stub
    return stub


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_oauth_status_and_revoke():
    store = InMemoryTokenStore()
    app.dependency_overrides[get_token_store] = lambda: store

    assert client.get("/oauth/status").json() == {"connected": False}

    store.save(PROVIDER, {"access_token": "abc"})
    assert client.get("/oauth/status").json() == {"connected": True}

    r = client.post("/oauth/revoke")
    assert r.json() == {"success": True, "removed": True}
    assert client.get("/oauth/status").json() == {"connected": False}


def test_scan_returns_camel_case_summary(orchestrator):
    r = client.post("/intake/scan", json={"dateFrom": "2025-01-05"})

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["processed"][0]["messageId"] == "m1"
    assert data["processed"][0]["fileLink"].startswith("https://drive.google.com/")
    assert data["skipped"][0]["reason"] == "marketing flyer"
    assert data["errors"] == []
    assert str(orchestrator.requests[0].date_from) == "2025-01-05"


def test_scan_without_body_uses_default_window(orchestrator):
    r = client.post("/intake/scan")

    assert r.status_code == 200
    assert orchestrator.requests[0].date_from is None


def test_scan_with_invalid_date_is_422(orchestrator):
    r = client.post("/intake/scan", json={"dateFrom": "not-a-date"})

    assert r.status_code == 422


@pytest.mark.parametrize(
    "error, status_code",
    [
        (AuthError("Google account not connected"), 401),
        (ConfigurationError("Missing configuration: GOOGLE_SHEET_ID"), 400),
        (RuntimeError("Gmail search failed"), 502),
    ],
)
def test_scan_fatal_errors(error, status_code):
    app.dependency_overrides[get_orchestrator] = lambda: StubOrchestrator(error=error)

    r = client.post("/intake/scan")

    assert r.status_code == status_code
    assert r.json() == {"success": False, "error": str(error)}


def test_unconfigured_document_model_is_400():
    app.dependency_overrides[get_settings] = lambda: Settings(document_model="openai", openai_api_key=None)
    app.dependency_overrides[get_token_store] = lambda: InMemoryTokenStore()

    r = client.post("/intake/scan")

    assert r.status_code == 400
    assert "OPENAI_API_KEY" in r.json()["error"]


def test_stream_emits_logs_then_complete(orchestrator):
    r = client.post("/intake/scan/stream", json={})

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(r.text)
    assert [kind for kind, _ in events] == ["log", "log", "complete"]
    assert events[0][1]["message"] == "Found 2 message(s) with PDF attachments"
    assert events[-1][1]["summary"]["processed"][0]["folderPath"].endswith("/inv1.pdf")


def test_stream_reports_fatal_error_as_event():
    app.dependency_overrides[get_orchestrator] = lambda: StubOrchestrator(error=AuthError("Google account not connected"))

    r = client.post("/intake/scan/stream")

    events = parse_sse(r.text)
    assert events == [("error", events[0][1])]
    assert events[0][1]["message"] == "Google account not connected"


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

class StubBrowser:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def list_emails(self, date_from=None, date_to=None):
        self.calls.append(("emails", date_from, date_to))
        if self.error is not None:
            raise self.error
        return EmailListing(
            emails=[EmailSummary(id="m1", sender="billing@edp.pt", subject="Fatura", date="Fri, 10 Jan 2025")],
            total=3,
        )

    async def list_archive_folders(self, parent_id=None):
        self.calls.append(("folders", parent_id))
        if self.error is not None:
            raise self.error
        return [ArchiveFolder(id="f1", name="Holding"), ArchiveFolder(id="f2", name="SPVs_AgriOps")]


def test_emails_listing_uses_dashboard_keys():
    stub = StubBrowser()
    app.dependency_overrides[get_browser] = lambda: stub

    r = client.get("/intake/emails", params={"dateFrom": "2025-01-05", "dateTo": "2025-01-31"})

    assert r.status_code == 200
    assert r.json() == {
        "emails": [{"id": "m1", "from": "billing@edp.pt", "subject": "Fatura",
                    "date": "Fri, 10 Jan 2025", "hasAttachment": True}],
        "total": 3,
    }
    assert [str(d) for d in stub.calls[0][1:]] == ["2025-01-05", "2025-01-31"]


def test_emails_listing_does_not_need_document_model_credentials():
    app.dependency_overrides[get_settings] = lambda: Settings(document_model="openai", openai_api_key=None)
    app.dependency_overrides[get_token_store] = lambda: InMemoryTokenStore()

    r = client.get("/intake/emails")

    # Reaches the Google credential check instead of failing on OPENAI_API_KEY
    assert r.status_code == 401


def test_archive_folders_pass_parent_through():
    stub = StubBrowser()
    app.dependency_overrides[get_browser] = lambda: stub

    r = client.get("/archive/folders", params={"parentId": "f1"})

    assert r.json() == {"folders": [{"id": "f1", "name": "Holding"}, {"id": "f2", "name": "SPVs_AgriOps"}]}
    assert stub.calls == [("folders", "f1")]


@pytest.mark.parametrize(
    "path, error, status_code",
    [
        ("/intake/emails", AuthError("Google account not connected"), 401),
        ("/archive/folders", ConfigurationError("Missing configuration: GOOGLE_DRIVE_ROOT_FOLDER_ID"), 400),
        ("/archive/folders", RuntimeError("Drive API error (HTTP 500): backend error"), 502),
    ],
)
def test_listing_errors(path, error, status_code):
    app.dependency_overrides[get_browser] = lambda: StubBrowser(error=error)

    r = client.get(path)

    assert r.status_code == status_code
    assert r.json() == {"success": False, "error": str(error)}


# ---------------------------------------------------------------------------
# Document model lifecycle
# ---------------------------------------------------------------------------

@pytest.fixture
def built_models(monkeypatch):
    built = []

    def fake_create(config):
        model = MagicMock()
        model.aclose = AsyncMock()
        built.append(model)
        return model

    monkeypatch.setattr(deps, "create_document_model", fake_create)
    yield built
    deps._document_models.clear()


def test_document_model_is_built_once_per_configuration(built_models):
    config = Settings(document_model="openai", openai_api_key="sk-test")

    first = deps.get_document_model(config)
    second = deps.get_document_model(config)
    other = deps.get_document_model(Settings(document_model="openai", openai_api_key="sk-other"))

    assert first is second
    assert other is not first
    assert len(built_models) == 2


def test_document_models_are_closed_on_shutdown(built_models):
    model = deps.get_document_model(Settings(document_model="openai", openai_api_key="sk-test"))

    with TestClient(app) as running:
        assert running.get("/health").status_code == 200
        model.aclose.assert_not_awaited()

    model.aclose.assert_awaited_once()
    assert deps._document_models == {}
