"""
Tests for the AgentMail API client.
"""

import json

import httpx
import pytest

from agentmail_mcp.client import AgentMailAPIError, AgentMailClient

BASE_URL = "https://api.agentmail.test/v0"


def make_client(handler) -> AgentMailClient:
    return AgentMailClient(
        "test-api-key",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
    )


class TestAgentMailClient:
    """Tests for AgentMailClient."""

    @pytest.mark.parametrize("api_key", ["", "   ", None])
    def test_rejects_empty_api_key(self, api_key):
        with pytest.raises(ValueError, match="Invalid API key"):
            AgentMailClient(api_key)

    @pytest.mark.asyncio
    async def test_list_inboxes(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={
                "count": 1,
                "inboxes": [{
                    "inbox_id": "bot@agentmail.to",
                    "display_name": "Bot",
                    "created_at": "2025-01-01T00:00:00Z",
                    "updated_at": "2025-01-02T00:00:00Z",
                }],
            })

        async with make_client(handler) as client:
            inboxes = await client.list_inboxes()

        assert seen["url"] == f"{BASE_URL}/inboxes"
        assert seen["auth"] == "Bearer test-api-key"
        assert inboxes == [{
            "id": "bot@agentmail.to",
            "name": "Bot",
            "address": "bot@agentmail.to",
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-02T00:00:00Z",
        }]

    @pytest.mark.asyncio
    async def test_get_inbox_requires_id(self):
        client = make_client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ValueError, match="Invalid inbox ID"):
            await client.get_inbox("  ")

    @pytest.mark.asyncio
    async def test_create_inbox_sends_given_fields(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"inbox_id": "new@agentmail.to", "display_name": "New"})

        async with make_client(handler) as client:
            inbox = await client.create_inbox(username="new", display_name="New")

        assert seen["method"] == "POST"
        assert seen["body"] == {"username": "new", "display_name": "New"}
        assert inbox["id"] == "new@agentmail.to"

    @pytest.mark.asyncio
    async def test_get_messages_passes_pagination(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"messages": [{
                "message_id": "m1",
                "inbox_id": "bot@agentmail.to",
                "from": "alice@example.com",
                "to": ["bot@agentmail.to"],
                "subject": "Hi",
                "timestamp": "2025-01-01T00:00:00Z",
                "attachments": [{"attachment_id": "a1", "filename": "f.txt", "size": 3, "content_type": "text/plain"}],
            }]})

        async with make_client(handler) as client:
            messages = await client.get_messages("bot@agentmail.to", limit=5, offset=10)

        assert seen["path"] == "/v0/inboxes/bot@agentmail.to/messages"
        assert seen["params"] == {"limit": "5", "offset": "10"}
        assert messages == [{
            "id": "m1",
            "inbox_id": "bot@agentmail.to",
            "from": {"email": "alice@example.com"},
            "to": [{"email": "bot@agentmail.to"}],
            "subject": "Hi",
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-01T00:00:00Z",
            "attachments": [{"id": "a1", "filename": "f.txt", "size": 3, "content_type": "text/plain"}],
        }]

    @pytest.mark.asyncio
    async def test_get_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "message_id": "m1",
                "inbox_id": "bot@agentmail.to",
                "from": ["alice@example.com"],
                "to": "bot@agentmail.to",
                "cc": "carol@example.com",
                "subject": None,
                "text": "hello",
                "created_at": "2025-01-01T00:00:00Z",
                "updated_at": "2025-01-01T00:00:00Z",
            })

        async with make_client(handler) as client:
            message = await client.get_message("bot@agentmail.to", "m1")

        assert message["from"] == {"email": "alice@example.com"}
        assert message["to"] == [{"email": "bot@agentmail.to"}]
        assert message["cc"] == [{"email": "carol@example.com"}]
        assert "bcc" not in message
        assert message["subject"] == ""
        assert message["text"] == "hello"

    @pytest.mark.asyncio
    async def test_send_message(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message_id": "sent-1", "thread_id": "t1"})

        async with make_client(handler) as client:
            message = await client.send_message(
                "bot@agentmail.to",
                to="alice@example.com",
                subject="Hello",
                text="Body",
                cc=["carol@example.com"],
            )

        assert seen["path"] == "/v0/inboxes/bot@agentmail.to/messages/send"
        assert seen["body"] == {
            "to": ["alice@example.com"],
            "cc": ["carol@example.com"],
            "subject": "Hello",
            "text": "Body",
        }
        assert message["id"] == "sent-1"
        assert message["to"] == [{"email": "alice@example.com"}]
        assert message["cc"] == [{"email": "carol@example.com"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("to", ["", [], ["alice@example.com", "  "]])
    async def test_send_message_requires_recipients(self, to):
        client = make_client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ValueError, match="Recipients"):
            await client.send_message("bot@agentmail.to", to=to, subject="Hi")

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "Inbox not found"})

        async with make_client(handler) as client:
            with pytest.raises(AgentMailAPIError) as exc_info:
                await client.get_inbox("missing@agentmail.to")

        assert exc_info.value.status_code == 404
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused")

        async with make_client(handler) as client:
            with pytest.raises(AgentMailAPIError, match="request failed"):
                await client.list_inboxes()
