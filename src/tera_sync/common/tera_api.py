from __future__ import annotations

import json
import os
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import quote

import httpx

from ..errors import (
    AuthenticationError,
    EncodingError,
    NotFoundError,
    TeraApiError,
    TransientRemoteError,
)
from .environment import maybe_await


DEFAULT_API_BASE = "https://tera-tools.com/api/io"
ENV_API_BASE = "TERA_API_BASE_URL"

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


def encode_file_path(path: str) -> str:
    """URL-encode each path segment, keeping the '/' separators."""
    return "/".join(quote(segment, safe="") for segment in path.split("/"))


def _json_default(value: Any) -> Any:
    # Dates are rendered the way JSON.stringify renders them on the web side
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_document(content: Any) -> bytes:
    try:
        return json.dumps(content, indent=2, default=_json_default).encode("utf-8")
    except (TypeError, ValueError) as ex:
        raise EncodingError(f"State is not JSON serializable: {ex}") from ex


class TeraFilesClient:
    """
    Minimal async client for the TERA IO project-file endpoints.

    Notes
    - Every request carries `Authorization: Bearer <token>`; the token is
      fetched from `token_provider` per request. A missing token raises
      AuthenticationError before any network call.
    - No retries here: callers wrap calls with `run_with_retry`. Transport
      errors, 429 and 5xx surface as TransientRemoteError so they are retried.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        api_base: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not callable(token_provider):
            raise ValueError("token_provider must be callable")
        self._token_provider = token_provider
        self._api_base = (api_base or os.environ.get(ENV_API_BASE) or DEFAULT_API_BASE).rstrip("/")
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TeraFilesClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Public API ---------------
    async def get_file_content(self, project_id: str, file_path: str) -> Optional[Any]:
        """
        Fetch and parse the JSON content of a project file.

        Returns None when the file does not exist (404) or its body is empty.
        """
        endpoint = f"/projects/{project_id}/files/{encode_file_path(file_path)}"
        resp = await self._request("GET", endpoint)

        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, f'Failed to get file content for "{file_path}"')

        if not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError as ex:
            raise TeraApiError(
                f'Failed to parse JSON content from file "{file_path}"',
                status_code=resp.status_code,
            ) from ex

    async def save_file_content(self, project_id: str, file_path: str, content: Any) -> None:
        """Create or overwrite a project file with `content` serialized as JSON."""
        endpoint = f"/projects/{project_id}/files/{encode_file_path(file_path)}"
        body = dump_document(content)
        files = {"file": (file_path.rsplit("/", 1)[-1], body, "application/json")}
        resp = await self._request("PUT", endpoint, params={"overwrite": "1"}, files=files)
        self._raise_for_status(resp, "Failed to save file content")

    # --------------- Internal ---------------
    async def _auth_headers(self) -> Dict[str, str]:
        token = await maybe_await(self._token_provider())
        if not token:
            raise AuthenticationError("Authorization token is missing. Please log in again.")
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        headers = await self._auth_headers()
        try:
            return await self._client.request(
                method, f"{self._api_base}{endpoint}", headers=headers, **kwargs
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientRemoteError(f"{method} {endpoint} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response, context: str) -> None:
        if resp.is_success:
            return
        message = f"{context}. Status: {resp.status_code}, Body: {resp.text[:200]}"
        if resp.status_code == 404:
            raise NotFoundError(message, status_code=404)
        if resp.status_code in TRANSIENT_STATUSES:
            raise TransientRemoteError(message, status_code=resp.status_code)
        raise TeraApiError(message, status_code=resp.status_code)


__all__ = [
    "TeraFilesClient",
    "DEFAULT_API_BASE",
    "encode_file_path",
    "dump_document",
]
