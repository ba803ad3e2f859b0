"""
AgentMail MCP protocol server.

Every client connection gets its own AgentMailServer: a FastMCP instance
with the AgentMail tools registered and a dedicated API client. Servers
are never shared between sessions.
"""

import asyncio
import logging
from typing import Optional

from fastmcp import FastMCP

from . import __version__
from . import tools
from .client import AgentMailClient, Recipients
from .config import Config

logger = logging.getLogger(__name__)

SERVER_NAME = "agentmail"


class AgentMailServer:
    """
    One protocol server bound to one transport.

    serve() runs the MCP message loop over a pair of streams until the
    transport closes them.
    """

    def __init__(self, client: AgentMailClient):
        self.client = client
        self.mcp = FastMCP(name=SERVER_NAME, version=__version__)
        self._register_tools()

    def _register_tools(self) -> None:
        client = self.client
        mcp = self.mcp

        @mcp.tool()
        async def agentmail_list_inboxes() -> str:
            """List all available inboxes in the AgentMail account"""
            return await tools.handle_list_inboxes(client)

        @mcp.tool()
        async def agentmail_get_inbox(inbox_id: str) -> str:
            """
            Get details of a specific inbox by ID

            Args:
                inbox_id: The ID of the inbox to retrieve
            """
            return await tools.handle_get_inbox(client, inbox_id)

        @mcp.tool()
        async def agentmail_create_inbox(
            username: Optional[str] = None,
            domain: Optional[str] = None,
            display_name: Optional[str] = None,
            client_id: Optional[str] = None
        ) -> str:
            """
            Create a new inbox

            Args:
                username: Local part of the inbox address (optional)
                domain: Domain of the inbox address (optional)
                display_name: Display name for the new inbox (optional)
                client_id: Idempotency key for the creation request (optional)
            """
            return await tools.handle_create_inbox(
                client,
                username=username,
                domain=domain,
                display_name=display_name,
                client_id=client_id,
            )

        @mcp.tool()
        async def agentmail_get_messages(
            inbox_id: str,
            limit: Optional[int] = None,
            offset: Optional[int] = None
        ) -> str:
            """
            Get messages from a specific inbox with optional pagination

            Args:
                inbox_id: The ID of the inbox to get messages from
                limit: Maximum number of messages to retrieve (optional)
                offset: Number of messages to skip for pagination (optional)
            """
            return await tools.handle_get_messages(client, inbox_id, limit=limit, offset=offset)

        @mcp.tool()
        async def agentmail_get_message(inbox_id: str, message_id: str) -> str:
            """
            Get a specific message by ID from an inbox

            Args:
                inbox_id: The ID of the inbox containing the message
                message_id: The ID of the message to retrieve
            """
            return await tools.handle_get_message(client, inbox_id, message_id)

        @mcp.tool()
        async def agentmail_send_message(
            inbox_id: str,
            to: Recipients,
            subject: str,
            text: Optional[str] = None,
            html: Optional[str] = None,
            cc: Optional[Recipients] = None,
            bcc: Optional[Recipients] = None
        ) -> str:
            """
            Send an email message from a specific inbox

            Args:
                inbox_id: The ID of the inbox to send from
                to: Recipient email address(es)
                subject: Email subject line
                text: Plain text email content (optional)
                html: HTML email content (optional)
                cc: CC recipient email address(es) (optional)
                bcc: BCC recipient email address(es) (optional)
            """
            return await tools.handle_send_message(
                client,
                inbox_id,
                to=to,
                subject=subject,
                text=text,
                html=html,
                cc=cc,
                bcc=bcc,
            )

    async def serve(self, read_stream, write_stream) -> None:
        """
        Bind to a transport and answer requests until it closes.

        Args:
            read_stream: Incoming session messages from the transport
            write_stream: Outgoing session messages to the transport
        """
        # FastMCP exposes no public per-stream run; the low-level server is
        # what its own transports bind to (fastmcp 2.x).
        low_level = self.mcp._mcp_server
        try:
            await low_level.run(
                read_stream,
                write_stream,
                low_level.create_initialization_options(),
            )
        finally:
            await self.client.aclose()

    async def run_stdio_async(self) -> None:
        """Serve a single client over stdin/stdout, then close the API client."""
        logger.info("AgentMail MCP Server running on stdio")
        try:
            await self.mcp.run_async(transport="stdio")
        finally:
            await self.client.aclose()

    def run_stdio(self) -> None:
        asyncio.run(self.run_stdio_async())


def create_standalone_server(config: Config) -> AgentMailServer:
    """Create a fresh protocol server with its own AgentMail client."""
    client = AgentMailClient(config.api_key, base_url=config.base_url)
    return AgentMailServer(client)
