"""Command-line interface for the Bazaar MCP Server."""

import argparse
import asyncio
import logging
import os
import sys


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Bazaar MCP Server - Shop on Sudanese Bazaar from MCP clients or a local REST API"
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="Server mode: stdio (for MCP clients) or http (REST API)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="HTTP server host (only for http mode, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="HTTP server port (only for http mode, default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable hot reloading (HTTP mode only, watches for file changes)",
    )
    parser.add_argument(
        "--state-file",
        help="Where to keep the saved session (default: BAZAAR_STATE_FILE or ~/.bazaar_state.json)",
    )
    parser.add_argument(
        "--clear-state",
        action="store_true",
        help="Forget the saved session and cart before starting",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging verbosity (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(level=args.log_level, stream=sys.stderr)
    logging.getLogger().setLevel(args.log_level)

    if args.state_file:
        os.environ["BAZAAR_STATE_FILE"] = args.state_file

    if args.clear_state:
        from .persistence import StateStorage

        StateStorage(args.state_file).clear()

    try:
        if args.mode == "http":
            from .http_server import run_http_server

            print(f"Starting Bazaar HTTP Server on {args.host}:{args.port}", file=sys.stderr)
            print(f"API documentation available at http://{args.host}:{args.port}/docs", file=sys.stderr)
            run_http_server(host=args.host, port=args.port, reload=args.reload)
        else:
            from .server import main as server_main

            asyncio.run(server_main(state_file=args.state_file))
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    main()
