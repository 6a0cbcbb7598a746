"""
Tests for the Drive archive: folder chain resolution, idempotent
get-or-create, and the Drive REST client.
"""

import asyncio
import json
from datetime import date, datetime, UTC

import httpx
import pytest
import respx

from invoice_intake.core.errors import ConfigurationError, RemoteServiceError
from invoice_intake.models.invoice import Category, RoutingResult
from invoice_intake.services.archival_store import ArchivalStore, period_folder_name
from invoice_intake.services.drive import DRIVE_API, DRIVE_UPLOAD_API, DriveClient, escape_query_value
from invoice_intake.services.google_auth import GoogleCredential

ROUTING = RoutingResult(category=Category.SPVS_AGRIOPS, entity_folder_name="AMANDEL - Sociedade Agrícola, Lda")


class FakeDrive:
    """In-memory Drive: folders keyed by (parent, name)"""

    def __init__(self):
        self.folders: dict[tuple[str, str], str] = {}
        self.uploads: list[tuple[str, str, bytes]] = []
        self.find_calls = 0

    async def find_folder(self, name, parent_id):
        self.find_calls += 1
        await asyncio.sleep(0)
        return self.folders.get((parent_id, name))

    async def create_folder(self, name, parent_id):
        await asyncio.sleep(0)
        folder_id = f"folder-{len(self.folders) + 1}"
        self.folders[(parent_id, name)] = folder_id
        return folder_id

    async def upload_file(self, name, parent_id, data, mime_type):
        self.uploads.append((name, parent_id, data))
        file_id = f"file-{len(self.uploads)}"
        return {"id": file_id, "webViewLink": f"https://drive.google.com/file/d/{file_id}/view"}

    async def list_folders(self, parent_id):
        return sorted(
            ({"id": folder_id, "name": name} for (parent, name), folder_id in self.folders.items() if parent == parent_id),
            key=lambda f: f["name"],
        )


@pytest.mark.parametrize(
    "issue_date, expected",
    [
        (date(2025, 1, 10), "01 - January"),
        (date(2025, 12, 31), "12 - December"),
    ],
)
def test_period_folder_name(issue_date, expected):
    assert period_folder_name(issue_date) == expected


def test_period_folder_falls_back_to_current_month():
    assert period_folder_name(None, now=datetime(2025, 7, 3, tzinfo=UTC)) == "07 - July"


@pytest.mark.asyncio
async def test_archive_creates_three_level_chain():
    drive = FakeDrive()
    store = ArchivalStore(drive, "root")

    location = await store.archive(b"%PDF", "inv1.pdf", ROUTING, date(2025, 1, 10))

    assert drive.folders == {
        ("root", "SPVs_AgriOps"): "folder-1",
        ("folder-1", "AMANDEL - Sociedade Agrícola, Lda"): "folder-2",
        ("folder-2", "01 - January"): "folder-3",
    }
    assert drive.uploads == [("inv1.pdf", "folder-3", b"%PDF")]
    assert location.terminal_folder_id == "folder-3"
    assert location.folder_path == "SPVs_AgriOps/AMANDEL - Sociedade Agrícola, Lda/01 - January/inv1.pdf"
    assert location.web_view_link.endswith("/file-1/view")


@pytest.mark.asyncio
async def test_archiving_twice_reuses_folders():
    drive = FakeDrive()

    first = await ArchivalStore(drive, "root").archive(b"a", "a.pdf", ROUTING, date(2025, 1, 10))
    # A fresh store has no cache, so this goes through find_folder
    second = await ArchivalStore(drive, "root").archive(b"b", "b.pdf", ROUTING, date(2025, 1, 20))

    assert len(drive.folders) == 3
    assert first.terminal_folder_id == second.terminal_folder_id


@pytest.mark.asyncio
async def test_concurrent_archives_create_each_folder_once():
    drive = FakeDrive()
    store = ArchivalStore(drive, "root")

    await asyncio.gather(*(
        store.archive(b"x", f"{i}.pdf", ROUTING, date(2025, 1, 10)) for i in range(5)
    ))

    assert len(drive.folders) == 3
    assert len(drive.uploads) == 5


@pytest.mark.asyncio
async def test_cached_folders_skip_lookups():
    drive = FakeDrive()
    store = ArchivalStore(drive, "root")

    await store.archive(b"a", "a.pdf", ROUTING, date(2025, 1, 10))
    lookups = drive.find_calls
    await store.archive(b"b", "b.pdf", ROUTING, date(2025, 1, 10))

    assert drive.find_calls == lookups


@pytest.mark.asyncio
async def test_list_folders_defaults_to_root():
    drive = FakeDrive()
    store = ArchivalStore(drive, "root")
    await store.archive(b"a", "a.pdf", ROUTING, date(2025, 1, 10))

    top = await store.list_folders()
    below = await store.list_folders(top[0].id)

    assert [(f.id, f.name) for f in top] == [("folder-1", "SPVs_AgriOps")]
    assert [f.name for f in below] == ["AMANDEL - Sociedade Agrícola, Lda"]


@pytest.mark.asyncio
async def test_list_folders_without_root_is_configuration_error():
    with pytest.raises(ConfigurationError):
        await ArchivalStore(FakeDrive(), None).list_folders()


@pytest.mark.asyncio
async def test_missing_root_is_configuration_error_before_any_call():
    drive = FakeDrive()

    with pytest.raises(ConfigurationError):
        await ArchivalStore(drive, None).archive(b"a", "a.pdf", ROUTING, None)

    assert drive.find_calls == 0
    assert drive.uploads == []


# ---------------------------------------------------------------------------
# Drive REST client
# ---------------------------------------------------------------------------

def test_escape_query_value():
    assert escape_query_value("O'Neil\\Co") == "O\\'Neil\\\\Co"


@pytest.mark.asyncio
@respx.mock
async def test_find_folder_queries_exact_name_under_parent():
    route = respx.get(f"{DRIVE_API}/files").mock(
        return_value=httpx.Response(200, json={"files": [{"id": "f1", "name": "Holding"}]})
    )

    async with httpx.AsyncClient() as http:
        folder_id = await DriveClient(GoogleCredential(access_token="t"), http).find_folder("Holding", "root")

    assert folder_id == "f1"
    params = route.calls[0].request.url.params
    assert "name='Holding'" in params["q"]
    assert "'root' in parents" in params["q"]
    assert params["supportsAllDrives"] == "true"


@pytest.mark.asyncio
@respx.mock
async def test_find_folder_returns_none_when_absent():
    respx.get(f"{DRIVE_API}/files").mock(return_value=httpx.Response(200, json={"files": []}))

    async with httpx.AsyncClient() as http:
        assert await DriveClient(GoogleCredential(access_token="t"), http).find_folder("x", "root") is None


@pytest.mark.asyncio
@respx.mock
async def test_create_folder_sets_parent_and_mime_type():
    route = respx.post(f"{DRIVE_API}/files").mock(return_value=httpx.Response(200, json={"id": "new"}))

    async with httpx.AsyncClient() as http:
        folder_id = await DriveClient(GoogleCredential(access_token="t"), http).create_folder("Holding", "root")

    body = json.loads(route.calls[0].request.content)
    assert folder_id == "new"
    assert body == {"name": "Holding", "mimeType": "application/vnd.google-apps.folder", "parents": ["root"]}


@pytest.mark.asyncio
@respx.mock
async def test_upload_opens_session_then_sends_bytes():
    session_url = f"{DRIVE_UPLOAD_API}/files?uploadType=resumable&upload_id=xyz"
    start = respx.post(f"{DRIVE_UPLOAD_API}/files").mock(
        return_value=httpx.Response(200, headers={"Location": session_url})
    )
    send = respx.put(session_url).mock(return_value=httpx.Response(
        200, json={"id": "file-1", "webViewLink": "https://drive.google.com/file/d/file-1/view"},
    ))

    async with httpx.AsyncClient() as http:
        result = await DriveClient(GoogleCredential(access_token="t"), http).upload_file(
            "inv1.pdf", "folder-3", b"%PDF-bytes"
        )

    opened = start.calls[0].request
    assert opened.url.params["uploadType"] == "resumable"
    assert opened.headers["X-Upload-Content-Type"] == "application/pdf"
    assert json.loads(opened.content) == {"name": "inv1.pdf", "parents": ["folder-3"]}
    sent = send.calls[0].request
    assert sent.content == b"%PDF-bytes"
    assert sent.headers["Authorization"] == "Bearer t"
    assert result["id"] == "file-1"


@pytest.mark.asyncio
@respx.mock
async def test_upload_fails_when_session_cannot_be_opened():
    respx.post(f"{DRIVE_UPLOAD_API}/files").mock(return_value=httpx.Response(
        403, json={"error": {"code": 403, "message": "Insufficient permissions for the specified parent."}},
    ))

    async with httpx.AsyncClient() as http:
        with pytest.raises(RemoteServiceError, match="Insufficient permissions"):
            await DriveClient(GoogleCredential(access_token="t"), http).upload_file("inv1.pdf", "folder-3", b"x")


@pytest.mark.asyncio
@respx.mock
async def test_list_folders_follows_pages_sorted_by_name():
    route = respx.get(f"{DRIVE_API}/files").mock(side_effect=[
        httpx.Response(200, json={"files": [{"id": "f1", "name": "Holding"}], "nextPageToken": "p2"}),
        httpx.Response(200, json={"files": [{"id": "f2", "name": "SPVs_AgriOps"}]}),
    ])

    async with httpx.AsyncClient() as http:
        folders = await DriveClient(GoogleCredential(access_token="t"), http).list_folders("root")

    assert [f["name"] for f in folders] == ["Holding", "SPVs_AgriOps"]
    params = route.calls[0].request.url.params
    assert params["q"] == "'root' in parents and mimeType='application/vnd.google-apps.folder' and trashed=false"
    assert params["orderBy"] == "name"
    assert route.calls[1].request.url.params["pageToken"] == "p2"
