"""
Command line entry point.

    agentmail-mcp [--port PORT] [--stdio]
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Optional, Sequence

from . import __version__
from .config import ConfigError, load_config

# stderr only: stdout carries protocol frames in stdio mode
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

HELP_TEXT = f"""AgentMail MCP Server v{__version__}

USAGE:
    agentmail-mcp [OPTIONS]

OPTIONS:
    --port <PORT>    Port for the HTTP transport (default: $PORT or 8080)
    --stdio          Serve a single client over stdin/stdout instead of HTTP
    --help           Show this help and exit

ENVIRONMENT VARIABLES:
    AGENTMAIL_API_KEY      AgentMail API key (required)
    AGENTMAIL_BASE_URL     AgentMail API base URL
    PORT                   HTTP port when --port is not given
    ENVIRONMENT            Set to "production" to listen on all interfaces
    LOG_LEVEL              Logging level (default: INFO)
    MCP_MAX_SESSIONS       Maximum concurrent HTTP sessions (default: 1000)
    MCP_SESSION_TIMEOUT    Idle seconds before a session is evicted (default: 1800)
    MCP_CLEANUP_INTERVAL   Seconds between idle-session sweeps (default: 300)
    MCP_RATE_LIMIT_WINDOW  Rate limit window in seconds (default: 60)
    MCP_RATE_LIMIT_MAX     Requests per client per window (default: 100)
    MCP_JSON_RESPONSE      Answer /mcp POSTs with plain JSON instead of SSE
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentmail-mcp", add_help=False, allow_abbrev=False)
    parser.add_argument("--port", type=int)
    parser.add_argument("--stdio", action="store_true")
    parser.add_argument("--help", action="store_true")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> dict[str, Any]:
    """
    Parse command line options. Unknown flags are ignored.

    Returns:
        Only the options that were given, e.g. {"port": 3000, "stdio": True}
    """
    args, _unknown = _build_parser().parse_known_args(argv)

    if args.help:
        print(HELP_TEXT)
        sys.exit(0)

    options: dict[str, Any] = {}
    if args.port is not None:
        options["port"] = args.port
    if args.stdio:
        options["stdio"] = True
    return options


def main(argv: Optional[Sequence[str]] = None) -> None:
    options = parse_args(argv)

    try:
        config = load_config(port=options.get("port"))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if options.get("stdio"):
        from .server import create_standalone_server

        create_standalone_server(config).run_stdio()
        return

    from .http_transport import run_http_transport

    try:
        asyncio.run(run_http_transport(config))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
