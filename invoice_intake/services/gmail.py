"""
Gmail REST client: candidate discovery and attachment download.
"""

import base64
from datetime import date, datetime, timedelta, UTC

from loguru import logger

from ..models.message import MessagePart, MessageRef
from .google_http import GoogleAPIClient

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"
BASE_QUERY = "has:attachment filename:pdf"
METADATA_HEADERS = ("From", "Subject", "Date")


def build_discovery_query(date_from: date | None = None, now: datetime | None = None,
                          lookback_hours: int = 24, date_to: date | None = None) -> str:
    """
    Messages carrying a PDF attachment, after an optional lower bound.

    A caller-supplied date renders as after:YYYY/MM/DD; without one the
    bound is a trailing window expressed in epoch seconds. An upper bound
    renders as before:YYYY/MM/DD.
    """
    if date_from is not None:
        query = f"{BASE_QUERY} after:{date_from.strftime('%Y/%m/%d')}"
    else:
        now = now or datetime.now(UTC)
        since = now - timedelta(hours=lookback_hours)
        query = f"{BASE_QUERY} after:{int(since.timestamp())}"
    if date_to is not None:
        query += f" before:{date_to.strftime('%Y/%m/%d')}"
    return query


class GmailClient(GoogleAPIClient):
    service = "Gmail"

    async def search(self, query: str, max_results: int = 50) -> list[MessageRef]:
        """List message refs in the order Gmail returns them, following pages."""
        refs: list[MessageRef] = []
        page_token = None
        while len(refs) < max_results:
            params = {"q": query, "maxResults": min(100, max_results - len(refs))}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request("GET", f"{GMAIL_API}/messages", params=params)
            data = response.json()
            refs.extend(MessageRef.model_validate(m) for m in data.get("messages", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Gmail search complete", query=query, found=len(refs))
        return refs[:max_results]

    async def fetch_full(self, message_id: str) -> MessagePart:
        response = await self._request("GET", f"{GMAIL_API}/messages/{message_id}", params={"format": "full"})
        return MessagePart.from_api(response.json().get("payload") or {})

    async def fetch_metadata(self, message_id: str) -> MessagePart:
        """Top-level headers only (From, Subject, Date); no body or parts."""
        response = await self._request("GET", f"{GMAIL_API}/messages/{message_id}", params={
            "format": "metadata",
            "metadataHeaders": list(METADATA_HEADERS),
        })
        return MessagePart.from_api(response.json().get("payload") or {})

    async def fetch_attachment_bytes(self, message_id: str, attachment_id: str) -> bytes:
        response = await self._request(
            "GET", f"{GMAIL_API}/messages/{message_id}/attachments/{attachment_id}"
        )
        data = response.json().get("data", "")
        # base64url, and Gmail sometimes drops the padding
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
