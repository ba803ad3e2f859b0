"""
AgentMail REST API client.

Async wrapper over the AgentMail HTTP API. Provider payloads are
normalised to plain dicts so tool handlers can serialise them directly.
"""

import logging
from datetime import datetime, UTC
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx

from .config import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)

Recipients = Union[str, list[str]]


class AgentMailAPIError(RuntimeError):
    """The AgentMail API rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _require(value: Optional[str], name: str) -> str:
    if not value or not isinstance(value, str) or value.strip() == "":
        raise ValueError(f"Invalid {name}: must be a non-empty string")
    return value.strip()


def _as_list(value: Optional[Recipients]) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


def _addresses(value: Optional[Recipients]) -> Optional[list[dict]]:
    emails = _as_list(value)
    if not emails:
        return None
    return [{"email": email} for email in emails]


def _compact(data: dict) -> dict:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


def _inbox(payload: dict) -> dict:
    return {
        "id": payload.get("inbox_id"),
        "name": payload.get("display_name"),
        "address": payload.get("inbox_id"),
        "created_at": payload.get("created_at"),
        "updated_at": payload.get("updated_at"),
    }


def _attachments(payload: dict) -> Optional[list[dict]]:
    items = payload.get("attachments")
    if items is None:
        return None
    return [
        {
            "id": att.get("attachment_id") or "",
            "filename": att.get("filename") or "",
            "size": att.get("size") or 0,
            "content_type": att.get("content_type") or "",
        }
        for att in items
    ]


def _message(payload: dict) -> dict:
    sender = payload.get("from")
    if isinstance(sender, list):
        sender = sender[0] if sender else ""
    created = payload.get("created_at") or payload.get("timestamp")
    updated = payload.get("updated_at") or payload.get("timestamp")
    return _compact({
        "id": payload.get("message_id"),
        "inbox_id": payload.get("inbox_id"),
        "from": {"email": sender or ""},
        "to": _addresses(payload.get("to")) or [],
        "cc": _addresses(payload.get("cc")),
        "bcc": _addresses(payload.get("bcc")),
        "subject": payload.get("subject") or "",
        "text": payload.get("text"),
        "html": payload.get("html"),
        "created_at": created,
        "updated_at": updated,
        "attachments": _attachments(payload),
    })


class AgentMailClient:
    """
    Client for the AgentMail API.

    Example:
        async with AgentMailClient(api_key) as client:
            inboxes = await client.list_inboxes()
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not api_key or not isinstance(api_key, str) or api_key.strip() == "":
            raise ValueError("Invalid API key: must be a non-empty string")
        self.api_key = api_key.strip()
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Create the HTTP client on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:200]
            logger.warning(f"AgentMail API {method} {path} failed with {status}")
            raise AgentMailAPIError(
                f"AgentMail API returned {status}: {detail}",
                status_code=status
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"AgentMail API {method} {path} request error: {e}")
            raise AgentMailAPIError(f"AgentMail API request failed: {e}") from e

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _inbox_path(inbox_id: str) -> str:
        return f"/inboxes/{quote(inbox_id, safe='@')}"

    async def list_inboxes(self) -> list[dict]:
        """List all inboxes of the account."""
        data = await self._request("GET", "/inboxes")
        return [_inbox(item) for item in data.get("inboxes", [])]

    async def get_inbox(self, inbox_id: str) -> dict:
        """Get a single inbox."""
        inbox_id = _require(inbox_id, "inbox ID")
        return _inbox(await self._request("GET", self._inbox_path(inbox_id)))

    async def create_inbox(
        self,
        username: Optional[str] = None,
        domain: Optional[str] = None,
        display_name: Optional[str] = None,
        client_id: Optional[str] = None
    ) -> dict:
        """Create an inbox. All fields are optional; the provider fills in defaults."""
        body = _compact({
            "username": username,
            "domain": domain,
            "display_name": display_name,
            "client_id": client_id,
        })
        return _inbox(await self._request("POST", "/inboxes", json=body))

    async def get_messages(
        self,
        inbox_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> list[dict]:
        """List messages of an inbox. Listing payloads carry no body text."""
        inbox_id = _require(inbox_id, "inbox ID")
        params = _compact({"limit": limit, "offset": offset})
        data = await self._request(
            "GET", f"{self._inbox_path(inbox_id)}/messages", params=params
        )
        messages = []
        for item in data.get("messages", []):
            message = _message(item)
            message.pop("text", None)
            message.pop("html", None)
            messages.append(message)
        return messages

    async def get_message(self, inbox_id: str, message_id: str) -> dict:
        """Get a full message including its body."""
        inbox_id = _require(inbox_id, "inbox ID")
        message_id = _require(message_id, "message ID")
        path = f"{self._inbox_path(inbox_id)}/messages/{quote(message_id, safe='')}"
        return _message(await self._request("GET", path))

    async def send_message(
        self,
        inbox_id: str,
        to: Recipients,
        subject: str,
        text: Optional[str] = None,
        html: Optional[str] = None,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None
    ) -> dict:
        """
        Send a message from an inbox.

        Returns:
            The sent message as echoed back with its provider-assigned id
        """
        inbox_id = _require(inbox_id, "inbox ID")
        _require(subject, "subject")
        recipients = _as_list(to)
        if not recipients or any(not isinstance(r, str) or r.strip() == "" for r in recipients):
            raise ValueError("Recipients (to) field is required")

        body = _compact({
            "to": recipients,
            "cc": _as_list(cc),
            "bcc": _as_list(bcc),
            "subject": subject,
            "text": text,
            "html": html,
        })
        data = await self._request(
            "POST", f"{self._inbox_path(inbox_id)}/messages/send", json=body
        )

        now = datetime.now(UTC).isoformat()
        return _compact({
            "id": data.get("message_id"),
            "inbox_id": inbox_id,
            "from": {"email": ""},
            "to": _addresses(recipients),
            "cc": _addresses(cc),
            "bcc": _addresses(bcc),
            "subject": subject,
            "text": text,
            "html": html,
            "created_at": now,
            "updated_at": now,
        })

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
