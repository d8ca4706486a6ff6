# HomeVault - Main Entry Point
#
#   python -m homevault migrate   Open the configured backend (runs pending
#                                 migrations) and report the schema version
#   python -m homevault serve     Run the local API server

import argparse
import asyncio
import logging
import sys

from . import __version__
from .config import load_settings
from .core import EventSeverity, EventType, configure_audit_logger, get_audit_logger
from .errors import VaultError
from .storage import create_backend


async def _migrate(settings) -> int:
    backend = create_backend(settings)
    await backend.open()
    try:
        return await backend.schema_version()
    finally:
        await backend.close()


def main(argv=None):
    """Main entry point for HomeVault."""
    parser = argparse.ArgumentParser(
        prog="homevault",
        description="HomeVault - local-first encrypted personal vault",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file with HOMEVAULT_* settings"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"HomeVault v{__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("migrate", help="Apply pending schema migrations and print the version")

    serve = subparsers.add_parser("serve", help="Run the local API server")
    serve.add_argument("--host", default=None, help="Bind host (default: HOMEVAULT_API_HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: HOMEVAULT_API_PORT or 8765)")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings(args.env_file)
    configure_audit_logger(settings.log_dir)

    if args.command == "migrate":
        try:
            version = asyncio.run(_migrate(settings))
        except VaultError as e:
            print(f"Migration failed: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"{settings.backend} backend at schema version {version}")
        return

    host = args.host or settings.api_host
    port = args.port or settings.api_port
    print(f"Starting HomeVault API on {host}:{port} (data dir: {settings.data_dir})")
    print("Press Ctrl+C to stop")

    from .api.main import start_api_server

    try:
        start_api_server(host=host, port=port)
    except KeyboardInterrupt:
        print("\nShutting down...")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="HomeVault API stopped (user interrupt)"
        )


if __name__ == "__main__":
    main()
