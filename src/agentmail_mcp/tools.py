"""
Tool handlers for the AgentMail MCP server.

Each handler calls the AgentMail client and returns the result as
pretty-printed JSON text. Failures are reported to the MCP client as
tool errors ("Error: <message>") instead of propagating into the transport.
"""

import functools
import json
import logging
from typing import Any, Optional

from fastmcp.exceptions import ToolError

from .client import AgentMailClient, Recipients

logger = logging.getLogger(__name__)

TOOL_NAMES = [
    "agentmail_list_inboxes",
    "agentmail_get_inbox",
    "agentmail_create_inbox",
    "agentmail_get_messages",
    "agentmail_get_message",
    "agentmail_send_message",
]


def _as_text(data: Any) -> str:
    return json.dumps(data, indent=2)


def reports_errors(handler):
    """Convert any handler failure into a ToolError."""
    @functools.wraps(handler)
    async def wrapper(*args, **kwargs):
        try:
            return await handler(*args, **kwargs)
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"{handler.__name__} failed: {e}")
            raise ToolError(f"Error: {e}") from e
    return wrapper


# -----------------------------------------------------------------------------
# Inboxes
# -----------------------------------------------------------------------------

@reports_errors
async def handle_list_inboxes(client: AgentMailClient) -> str:
    return _as_text(await client.list_inboxes())


@reports_errors
async def handle_get_inbox(client: AgentMailClient, inbox_id: str) -> str:
    return _as_text(await client.get_inbox(inbox_id))


@reports_errors
async def handle_create_inbox(
    client: AgentMailClient,
    username: Optional[str] = None,
    domain: Optional[str] = None,
    display_name: Optional[str] = None,
    client_id: Optional[str] = None
) -> str:
    inbox = await client.create_inbox(
        username=username,
        domain=domain,
        display_name=display_name,
        client_id=client_id,
    )
    return _as_text(inbox)


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------

@reports_errors
async def handle_get_messages(
    client: AgentMailClient,
    inbox_id: str,
    limit: Optional[int] = None,
    offset: Optional[int] = None
) -> str:
    return _as_text(await client.get_messages(inbox_id, limit=limit, offset=offset))


@reports_errors
async def handle_get_message(client: AgentMailClient, inbox_id: str, message_id: str) -> str:
    return _as_text(await client.get_message(inbox_id, message_id))


@reports_errors
async def handle_send_message(
    client: AgentMailClient,
    inbox_id: str,
    to: Recipients,
    subject: str,
    text: Optional[str] = None,
    html: Optional[str] = None,
    cc: Optional[Recipients] = None,
    bcc: Optional[Recipients] = None
) -> str:
    message = await client.send_message(
        inbox_id,
        to=to,
        subject=subject,
        text=text,
        html=html,
        cc=cc,
        bcc=bcc,
    )
    return _as_text(message)
