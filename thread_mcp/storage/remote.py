"""
HTTP storage for threads on a user-supplied conversation server.

Endpoints (relative to the configured base URL):

    POST   /conversations         create
    GET    /conversations         list -> {"conversations": [...]}
    GET    /conversations/{id}    fetch (404: not found)
    DELETE /conversations/{id}    remove (404: not found)

Any other non-success status is a RemoteStorageError for that call.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote

import httpx

from ..errors import RemoteStorageError
from ..formatters import get_formatter
from ..types import (
    OUTPUT_FORMATS,
    SaveOptions,
    Thread,
    ThreadDescriptor,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _quote_id(id: str) -> str:
    return quote(id, safe="")


class RemoteStore:
    """Thread store backed by a remote HTTP API."""

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        self._url = url.rstrip("/")

        request_headers: dict[str, str] = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)
        if api_key:
            request_headers["Authorization"] = f"Bearer {api_key}"
        self._headers = request_headers

        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def _thread_url(self, id: str) -> str:
        return f"{self._url}/conversations/{_quote_id(id)}"

    def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStorageError(f"Failed to {action}: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, action: str, include_body: bool = False) -> None:
        if response.is_success:
            return
        message = f"Failed to {action}: {response.status_code} {response.reason_phrase}"
        if include_body:
            message += f" - {response.text or 'Unknown error'}"
        raise RemoteStorageError(message, status_code=response.status_code)

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStorageError(f"Failed to {action}: invalid JSON response") from e

    # -------------------------------------------------------------------------
    # Storage contract
    # -------------------------------------------------------------------------

    def save(self, thread: Thread, options: SaveOptions) -> ThreadDescriptor:
        action = "save conversation to remote"
        content = get_formatter(options.format).serialize(thread, options)

        response = self._request("POST", f"{self._url}/conversations", action, json={
            "id": thread.id,
            "title": thread.metadata.title,
            "content": content,
            "format": options.format,
            "metadata": thread.metadata.to_dict(),
        })
        self._check(response, action, include_body=True)

        result = self._json(response, action)
        remote_url = result.get("url") if isinstance(result, dict) else None

        logger.info("Saved thread %s to %s", thread.id, self._url)
        return ThreadDescriptor(
            id=thread.id,
            title=thread.metadata.title,
            format=options.format,
            saved_at=utc_now(),
            remote_url=remote_url or self._thread_url(thread.id),
            source_app=thread.metadata.source_app,
        )

    def list(self) -> list[ThreadDescriptor]:
        action = "list conversations from remote"
        response = self._request("GET", f"{self._url}/conversations", action)
        self._check(response, action)

        result = self._json(response, action)
        entries = result.get("conversations") if isinstance(result, dict) else None
        return [ThreadDescriptor.from_dict(e) for e in entries or []]

    def get(self, id: str) -> Optional[Thread]:
        action = "get conversation from remote"
        response = self._request("GET", self._thread_url(id), action)
        if response.status_code == 404:
            return None
        self._check(response, action)

        result = self._json(response, action)
        if not isinstance(result, dict):
            return None

        content, format = result.get("content"), result.get("format")
        if content and format in OUTPUT_FORMATS:
            return get_formatter(format).deserialize(content)

        if result.get("conversation"):
            return Thread.from_dict(result["conversation"])

        return None

    def delete(self, id: str) -> bool:
        action = "delete conversation from remote"
        response = self._request("DELETE", self._thread_url(id), action)
        if response.status_code == 404:
            return False
        self._check(response, action)
        logger.info("Deleted thread %s from %s", id, self._url)
        return True

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __repr__(self) -> str:
        return f"RemoteStore({self._url!r})"
