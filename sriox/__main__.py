"""Sriox Sites - command line entry point.

Usage:
    python -m sriox serve                 # Run the HTTP API
    python -m sriox token <owner_id>      # Issue a session token
    python -m sriox audit [--repair]      # Report registry/upstream drift
"""

import argparse
import asyncio
import json
import logging
import sys

import uvicorn

from .audit import DriftReport, Orphan, audit_sites, find_orphans
from .auth import SessionAuthenticator
from .config import Settings, load_settings
from .main import build_services, create_app

_LOG = logging.getLogger("sriox")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def cmd_serve(settings: Settings) -> int:
    """Run the API with uvicorn."""
    if not settings.session_secret:
        _LOG.warning("SESSION_SECRET not set; every API request will be rejected")
    app = create_app(build_services(settings))
    uvicorn.run(app, host=settings.host, port=settings.port)
    return 0


def cmd_token(settings: Settings, owner_id: str) -> int:
    """Print a session token for an owner."""
    authenticator = SessionAuthenticator(settings.session_secret, settings.session_lifetime)
    try:
        print(authenticator.issue(owner_id))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_audit(settings: Settings, repair: bool) -> int:
    """Print a JSON drift report; exit 1 if anything is left unresolved."""
    services = build_services(settings)
    args = (services.registry, services.content_host, services.dns, services.settings)

    async def run() -> tuple[list[DriftReport], list[Orphan]]:
        return (
            await audit_sites(*args, repair=repair),
            await find_orphans(*args, repair=repair),
        )

    reports, orphans = asyncio.run(run())
    print(json.dumps({
        "sites": [report.to_dict() for report in reports],
        "orphans": [orphan.to_dict() for orphan in orphans],
    }, indent=2))
    resolved = all(report.healthy for report in reports) and all(o.removed for o in orphans)
    return 0 if resolved else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="sriox", description="Static site hosting control panel")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API")

    token_parser = subparsers.add_parser("token", help="Issue a session token")
    token_parser.add_argument("owner_id", help="Owner identity to embed in the token")

    audit_parser = subparsers.add_parser("audit", help="Report registry/upstream drift")
    audit_parser.add_argument("--repair", action="store_true", help="Re-point drifted DNS records and delete orphans")

    args = parser.parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        return cmd_serve(settings)
    if args.command == "token":
        return cmd_token(settings, args.owner_id)
    return cmd_audit(settings, args.repair)


if __name__ == "__main__":
    sys.exit(main())
