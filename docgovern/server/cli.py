"""
Command-line interface for the DocGovern server.

Flags override the ``DOCGOVERN_*`` environment read by ``ServerConfig.from_env``.
"""

import argparse
import logging
import sys

from .. import __version__
from .config import ServerConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docgovern-server",
        description="Serve document leases, versioned edits and moderation over HTTP",
    )
    parser.add_argument("--host", help="Host to bind to (env DOCGOVERN_HOST)")
    parser.add_argument("--port", type=int, help="Port to bind to (env DOCGOVERN_PORT)")
    parser.add_argument("--database-url", help="SQLAlchemy URL (env DATABASE_URL)")
    parser.add_argument("--api-keys", help="Comma-separated API keys (env DOCGOVERN_API_KEYS)")
    parser.add_argument(
        "--no-sweeper",
        action="store_true",
        help="Leave stale-lease sweeping to another process",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="FastAPI debug tracebacks and debug logging",
    )
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Layer command-line flags over the environment configuration."""
    config = ServerConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.database_url:
        config.database_url = args.database_url
    if args.api_keys:
        config.api_keys = {key.strip() for key in args.api_keys.split(",") if key.strip()}
    if args.no_sweeper:
        config.run_sweeper = False
    if args.debug:
        config.debug = True
        config.log_level = "debug"
    if args.log_level:
        config.log_level = args.log_level
    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from .app import DocGovernServer

    print(f"DocGovern Server v{__version__} on http://{config.host}:{config.port}")
    print(f"  database: {config.database_url}")
    print(f"  sweeper:  {'on' if config.run_sweeper else 'off'}")

    try:
        DocGovernServer(config=config).run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
