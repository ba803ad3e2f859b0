"""
AgentMail MCP Server - stdio and session-aware HTTP transports

Exposes the AgentMail inbox/message API as MCP tools over:
- stdio (single client, single protocol server)
- Streamable HTTP on /mcp with resumable, rate-limited client sessions
- Legacy SSE on /sse (one ephemeral protocol server per connection)
"""

__version__ = "0.2.0"
__protocol_version__ = "2025-06-18"
