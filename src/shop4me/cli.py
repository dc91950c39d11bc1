"""Shop4Me Command Line Interface.

Provides operational tools for:
- Schema creation
- Running the reconciliation sweep from an external scheduler
- Checking M-Pesa configuration

Usage:
    python -m shop4me.cli init-db
    python -m shop4me.cli reconcile [--json]
    python -m shop4me.cli check-mpesa
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Callable

from shop4me.config import Settings, get_settings
from shop4me.database import create_schema, get_engine, make_session_factory
from shop4me.services.reconciliation import ReconciliationResult, ReconciliationService


class Shop4MeCli:
    """Shop4Me Command Line Interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m shop4me.cli",
            description="Shop4Me operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: DATABASE_URL from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create missing database tables")

        reconcile = subparsers.add_parser(
            "reconcile",
            help="Expire stale payments and reconcile paid orders",
        )
        reconcile.add_argument(
            "--json",
            action="store_true",
            help="Print the result as JSON",
        )

        subparsers.add_parser("check-mpesa", help="Validate M-Pesa configuration")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "reconcile": self._cmd_reconcile,
            "check-mpesa": self._cmd_check_mpesa,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _database_url(self, args: argparse.Namespace) -> str:
        return args.database_url or self.settings.database_url

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""

        async def _init() -> None:
            engine = get_engine(self._database_url(args))
            try:
                await create_schema(engine)
            finally:
                await engine.dispose()

        asyncio.run(_init())
        print("Schema created.")
        return 0

    def _cmd_reconcile(self, args: argparse.Namespace) -> int:
        """Run the reconciliation sweep once."""

        async def _reconcile() -> ReconciliationResult:
            engine = get_engine(self._database_url(args))
            try:
                factory = make_session_factory(engine)
                async with factory() as session:
                    service = ReconciliationService(session, policy=self.settings.policy)
                    return await service.run_reconciliation()
            finally:
                await engine.dispose()

        result = asyncio.run(_reconcile())

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print("Reconciliation complete")
            print(f"  Processed:     {result.processed}")
            print(f"  Expired:       {result.expired}")
            print(f"  Discrepancies: {result.discrepancies}")
            print(f"  Completed:     {result.completed}")
            print(f"  Errors:        {result.errors}")
            for detail in result.error_details:
                print(f"    - {detail['order_id']}: {detail['error']}")
        return 0 if result.success else 1

    def _cmd_check_mpesa(self, args: argparse.Namespace) -> int:
        """Report M-Pesa configuration problems."""
        mpesa = self.settings.mpesa
        print(f"M-Pesa environment: {mpesa.environment}")
        if mpesa.environment == "stub":
            print("Stub provider selected; no credentials needed.")
            return 0

        problems = mpesa.missing_fields()
        if not problems:
            print("Configuration: OK")
            return 0

        print(f"{len(problems)} issue(s) found:")
        for problem in problems:
            print(f"  - {problem}")
        return 1


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(level=get_settings().log_level)
    cli = Shop4MeCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
