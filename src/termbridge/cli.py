"""Command-line interface for termbridge.

Shares a command's terminal over WebSocket:

    termbridge -p 7681 -W bash
    termbridge --config config/termbridge.yaml -o -- htop
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from pydantic import SecretStr

from termbridge.pty.base import PtyStrategy

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termbridge",
        description="Share a terminal over WebSocket",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-p", "--port", type=int, default=None,
        help="Port to listen on (default: 7681)",
    )
    parser.add_argument(
        "-i", "--interface", type=str, default=None,
        help="Interface or address to bind (default: 0.0.0.0)",
    )
    parser.add_argument(
        "-W", "--writable", action="store_true",
        help="Allow clients to write to the terminal",
    )
    parser.add_argument(
        "-c", "--credential", type=str, default=None,
        help="Token clients must present in the Init frame",
    )
    parser.add_argument(
        "-w", "--cwd", type=str, default=None,
        help="Working directory for the command",
    )
    parser.add_argument(
        "-O", "--check-origin", action="store_true",
        help="Reject WebSocket connections from a different origin",
    )
    parser.add_argument(
        "-m", "--max-clients", type=int, default=None,
        help="Maximum concurrent clients (0 for unlimited)",
    )
    parser.add_argument(
        "-o", "--once", action="store_true",
        help="Accept one client and exit when it disconnects",
    )
    parser.add_argument(
        "--mouse", action="store_true",
        help="Accept mouse click and drag frames",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in PtyStrategy],
        default=None,
        help="Terminal backend to use (default: auto)",
    )
    parser.add_argument(
        "cmd", nargs=argparse.REMAINDER,
        help="Command to run (default: bash, or cmd.exe on Windows)",
    )
    return parser.parse_args(argv)


def apply_overrides(settings, args: argparse.Namespace) -> None:
    """Overlay command-line flags onto loaded settings."""
    server = settings.server
    terminal = settings.terminal

    if args.port is not None:
        server.port = args.port
    if args.interface is not None:
        server.host = args.interface
    if args.max_clients is not None:
        server.max_clients = args.max_clients
    if args.once:
        server.once = True
    if args.check_origin:
        server.check_origin = True

    if args.writable:
        terminal.writable = True
    if args.mouse:
        terminal.mouse = True
    if args.credential is not None:
        terminal.credential = SecretStr(args.credential)
    if args.cwd is not None:
        terminal.cwd = args.cwd
    if args.strategy is not None:
        terminal.pty_strategy = PtyStrategy(args.strategy)

    cmd = args.cmd[1:] if args.cmd[:1] == ["--"] else args.cmd
    if cmd:
        terminal.command = cmd

    if args.verbose:
        settings.logging.level = "DEBUG"


def _serve(settings) -> None:
    """Run the endpoint until interrupted, or until the single client leaves."""
    import uvicorn

    from termbridge.endpoint.server import create_app

    server: uvicorn.Server | None = None

    def _stop() -> None:
        if server is not None:
            logger.info("Single client served, shutting down")
            server.should_exit = True

    app = create_app(settings, on_finished=_stop)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_config=None,
        )
    )
    server.run()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the termbridge CLI."""
    args = parse_args(argv)

    from termbridge.config.settings import load_settings
    from termbridge.utils.logging import setup_logging

    settings = load_settings(args.config)
    apply_overrides(settings, args)
    setup_logging(settings.logging)

    logger.info(
        "Starting termbridge on %s:%d",
        settings.server.host, settings.server.port,
    )
    _serve(settings)


if __name__ == "__main__":
    main()
