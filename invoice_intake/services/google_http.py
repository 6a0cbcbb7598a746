import httpx
from ..core.errors import RemoteServiceError


def error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of a Google API error body"""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or str(error)
    if isinstance(error, str):
        return data.get("error_description") or error
    return str(data)[:200]


class GoogleAPIClient:
    """
    Base for the Gmail, Drive and Sheets REST clients.

    Shares one httpx.AsyncClient (and its timeout) and one read-only
    credential for the whole scan.
    """

    service = "Google"

    def __init__(self, credential, http: httpx.AsyncClient):
        self.credential = credential
        self.http = http

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.credential.access_token}"}
        headers.update(kwargs.pop("headers", {}))
        response = await self.http.request(method, url, headers=headers, **kwargs)
        if response.is_error:
            raise RemoteServiceError(self.service, response.status_code, error_message(response))
        return response
