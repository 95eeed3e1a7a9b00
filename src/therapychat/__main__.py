"""therapychat entry point.

Usage:
  therapychat serve                  Start the chat API server
  therapychat --check-local-model    Probe the local model endpoint and exit
"""

import argparse
import asyncio
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from rich.console import Console

from therapychat.config import Settings, get_settings
from therapychat.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("therapychat")
    except PackageNotFoundError:
        return "0.0.0"


async def check_local_model(settings: Settings, console: Console | None = None) -> int:
    """Run the local model health check and print the diagnostic.

    Returns a process exit code: 0 when the configured model is usable.
    """
    from therapychat.llm.ollama import OllamaChatModel

    console = console or Console()
    try:
        adapter = OllamaChatModel(settings.ollama_base_url, settings.ollama_model)
    except ValueError as exc:
        console.print(f"[red][FAIL][/red] {exc}")
        return 1

    try:
        health = await adapter.check_health()
    finally:
        await adapter.aclose()

    if health.ok:
        console.print(f"[green][OK][/green]   {health.message}")
        return 0

    console.print(f"[red][FAIL][/red] {health.code}: {health.message}")
    available = health.details.get("available")
    if available:
        console.print(f"       Available models: {', '.join(available)}")
    return 1


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="therapychat - streaming therapeutic chat API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  therapychat serve                  Start the API server
  therapychat serve --dev            Start with auto-reload
  therapychat --check-local-model    Check the local (Ollama) model endpoint
""",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=None,
        help="Subcommand: 'serve' starts the API server",
    )
    parser.add_argument("--host", default=None, help="Host to bind (default: from settings)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind")
    parser.add_argument("--dev", action="store_true", help="Enable auto-reload")
    parser.add_argument(
        "--check-local-model",
        action="store_true",
        help="Probe the local model endpoint and exit",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level)

    try:
        if args.check_local_model:
            raise SystemExit(asyncio.run(check_local_model(settings)))
        if args.command == "serve":
            from therapychat.api.serve import run_api_server

            run_api_server(
                host=args.host or settings.web_host,
                port=args.port or settings.web_port,
                dev=args.dev,
            )
        else:
            parser.print_help()
            raise SystemExit(2)
    except KeyboardInterrupt:
        logger.info("therapychat stopped.")


if __name__ == "__main__":
    main()
