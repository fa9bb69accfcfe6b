"""CLI entry point for commerce-copilot."""

from __future__ import annotations

import argparse
import json
import sys

from commerce_copilot.ai.tools.catalog import ToolCatalog
from commerce_copilot.config import load_config
from commerce_copilot.log import setup_logging
from commerce_copilot.services.analytics import InMemoryAnalyticsService
from commerce_copilot.services.campaigns import InMemoryCampaignService
from commerce_copilot.services.orders import InMemoryOrderService


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="commerce-copilot",
        description="Tool-augmented storefront assistant and admin copilot",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    _add_config_args(serve_parser)
    serve_parser.add_argument("--host", default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # tools command
    tools_parser = subparsers.add_parser("tools", help="Print the tool schema of each profile as JSON")
    _add_config_args(tools_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to serve
        args.command = "serve"
        args.config = "config.yaml"
        args.env = ".env"
        args.host = None
        args.port = None

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "tools":
        _print_tools(args.config, args.env)
    elif args.command == "serve":
        _serve(args.config, args.env, args.host, args.port)


def _load_or_exit(config_path: str, env_path: str):
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    setup_logging("WARNING")
    catalog = ToolCatalog(InMemoryOrderService(), InMemoryCampaignService(), InMemoryAnalyticsService())
    try:
        for profile in config.profiles:
            catalog.build_registry(profile)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Configuration valid: {config_path}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Server: {config.server.host}:{config.server.port}")
    print(f"  Anthropic: {'configured' if config.anthropic else 'missing'}")
    print(f"  Profiles configured: {len(config.profiles)}")
    for profile in config.profiles:
        tools = ", ".join(profile.ai.tools) or "(none)"
        print(f"    - {profile.id} ({profile.kind.value}) [{profile.ai.model}] tools: {tools}")


def _print_tools(config_path: str, env_path: str) -> None:
    config = _load_or_exit(config_path, env_path)
    setup_logging("WARNING")
    catalog = ToolCatalog(InMemoryOrderService(), InMemoryCampaignService(), InMemoryAnalyticsService())
    export = {profile.id: catalog.build_registry(profile).export_schema() for profile in config.profiles}
    print(json.dumps(export, indent=2, ensure_ascii=False))


def _serve(config_path: str, env_path: str, host: str | None, port: int | None) -> None:
    """Load config and run the API server."""
    import uvicorn

    from commerce_copilot.api.main import create_app
    from commerce_copilot.app import CopilotApp

    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)

    app = create_app(CopilotApp(config))
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
