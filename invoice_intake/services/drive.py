"""
Google Drive REST client.

Every call passes supportsAllDrives so the archive root may live in a
personal drive or a shared drive.
"""

from .google_http import GoogleAPIClient

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def escape_query_value(value: str) -> str:
    """Escape a value for use in Drive query strings"""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient(GoogleAPIClient):
    service = "Drive"

    async def find_folder(self, name: str, parent_id: str) -> str | None:
        """Exact-name folder lookup under an exact parent; first hit wins."""
        query = (
            f"name='{escape_query_value(name)}' and mimeType='{FOLDER_MIME_TYPE}' "
            f"and '{parent_id}' in parents and trashed=false"
        )
        response = await self._request("GET", f"{DRIVE_API}/files", params={
            "q": query,
            "fields": "files(id, name)",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        })
        files = response.json().get("files", [])
        return files[0]["id"] if files else None

    async def create_folder(self, name: str, parent_id: str) -> str:
        response = await self._request(
            "POST",
            f"{DRIVE_API}/files",
            params={"fields": "id, name", "supportsAllDrives": "true"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        return response.json()["id"]

    async def list_folders(self, parent_id: str) -> list[dict]:
        """Direct child folders of a parent, sorted by name."""
        folders: list[dict] = []
        page_token = None
        while True:
            params = {
                "q": f"'{escape_query_value(parent_id)}' in parents and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
                "fields": "nextPageToken, files(id, name)",
                "orderBy": "name",
                "pageSize": 1000,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._request("GET", f"{DRIVE_API}/files", params=params)
            data = response.json()
            folders.extend(data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return folders

    async def upload_file(self, name: str, parent_id: str, data: bytes,
                          mime_type: str = "application/pdf") -> dict:
        """
        Resumable upload: the first request carries the metadata and opens
        an upload session, the second sends the bytes to the session URL.

        Returns:
            {"id": ..., "webViewLink": ...}
        """
        session = await self._request(
            "POST",
            f"{DRIVE_UPLOAD_API}/files",
            params={"uploadType": "resumable", "fields": "id, webViewLink", "supportsAllDrives": "true"},
            headers={"X-Upload-Content-Type": mime_type, "X-Upload-Content-Length": str(len(data))},
            json={"name": name, "parents": [parent_id]},
        )
        response = await self._request(
            "PUT",
            session.headers["Location"],
            headers={"Content-Type": mime_type},
            content=data,
        )
        return response.json()
