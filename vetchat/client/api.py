"""
Async HTTP client for the vetchat API (httpx). Used by ChatController and ReportUploader.
HTTP errors are turned back into vetchat.errors so callers handle one taxonomy.
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from vetchat.errors import UpstreamFailure, ValidationFailure, VetchatError, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, read=120.0)


def _error_from_response(response: httpx.Response) -> VetchatError:
    message = None
    errors = None
    try:
        body = response.json()
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail")
            errors = body.get("errors")
    except ValueError:
        pass
    return error_for_status(response.status_code, message, errors)


class ChatApiClient:
    """
    One authenticated session against the API. Pass `http` to reuse a client
    (tests hand in one bound to httpx.ASGITransport).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        http: httpx.AsyncClient | None = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=DEFAULT_TIMEOUT)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self._http.request(method, url, headers=self._headers, **kwargs)
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response

    # ---- Chats ----

    async def list_chats(self, cursor: str | None = None, num_items: int = 20) -> dict:
        params = {"num_items": num_items}
        if cursor:
            params["cursor"] = cursor
        return (await self._request("GET", "/api/chats", params=params)).json()

    async def get_chat(self, chat_id: str) -> dict | None:
        """None when the chat does not exist for this user (deleted, foreign or missing)."""
        response = await self._http.get(f"/api/chats/{chat_id}", headers=self._headers)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    async def create_chat(self, text: str) -> str:
        body = (await self._request("POST", "/api/chats", json={"text": text})).json()
        return body["metadata"]["data"]

    async def rename_chat(self, chat_id: str, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValidationFailure.for_field("name", "Name is required")
        await self._request("PATCH", f"/api/chats/{chat_id}", json={"name": name})

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", f"/api/chats/{chat_id}")

    # ---- Messages ----

    async def list_messages(self, chat_id: str, cursor: str | None = None, num_items: int = 20) -> dict:
        """One page, newest first: {"page": [...], "is_done": bool, "continue_cursor": str|None}."""
        params = {"num_items": num_items}
        if cursor:
            params["cursor"] = cursor
        return (await self._request("GET", f"/api/chats/{chat_id}/messages", params=params)).json()

    async def create_message(self, chat_id: str, role: str, content: str) -> str:
        body = (
            await self._request(
                "POST", f"/api/chats/{chat_id}/messages", json={"role": role, "content": content}
            )
        ).json()
        return body["id"]

    async def update_message(
        self,
        message_id: str,
        *,
        content: str | None = None,
        status: str | None = None,
        append: bool = False,
    ) -> None:
        payload: dict = {"append": append}
        if content is not None:
            payload["content"] = content
        if status is not None:
            payload["status"] = status
        await self._request("PATCH", f"/api/messages/{message_id}", json=payload)

    async def stream_completion(self, chat_id: str, messages: list[dict]) -> AsyncIterator[str]:
        """
        Yield response text as it arrives. Closing this generator (or cancelling the task
        iterating it) closes the HTTP response, which aborts the upstream model call.
        """
        async with self._http.stream(
            "POST",
            f"/api/chat/{chat_id}",
            json={"messages": messages},
            headers=self._headers,
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise _error_from_response(response)
            async for text in response.aiter_text():
                if text:
                    yield text

    # ---- Reports ----

    async def generate_upload_url(self) -> str:
        return (await self._request("POST", "/api/storage/upload-url")).json()["upload_url"]

    async def upload_bytes(self, upload_url: str, data: bytes, content_type: str) -> str:
        """Direct upload to a URL from generate_upload_url. Returns the storage id."""
        try:
            response = await self._http.post(
                upload_url, content=data, headers={"Content-Type": content_type}
            )
        except httpx.HTTPError as e:
            raise UpstreamFailure("Upload failed") from e
        if response.status_code >= 400:
            logger.warning("Upload failed with status %s", response.status_code)
            raise UpstreamFailure("Upload failed")
        return response.json()["storage_id"]

    @asynccontextmanager
    async def analysis_stream(self, file_name: str, data: bytes, content_type: str):
        """
        Open the analysis stream. Entering succeeds only once the server has accepted the
        request and started streaming; the yielded async iterator produces the text.
        """
        async with self._http.stream(
            "POST",
            "/api/report/analyze",
            files={"report-file": (file_name, data, content_type)},
            headers=self._headers,
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise _error_from_response(response)
            yield response.aiter_text()

    async def save_report(
        self,
        *,
        file_id: str,
        file_name: str,
        mime_type: str,
        size_bytes: int,
        chat_id: str | None = None,
    ) -> str:
        payload = {
            "file_id": file_id,
            "file_name": file_name,
            "mime_type": mime_type,
            "size_bytes": size_bytes,
            "chat_id": chat_id,
        }
        return (await self._request("POST", "/api/reports", json=payload)).json()["id"]

    async def save_analysis(self, report_id: str, analysis: str) -> None:
        await self._request("PUT", f"/api/reports/{report_id}/analysis", json={"analysis": analysis})
