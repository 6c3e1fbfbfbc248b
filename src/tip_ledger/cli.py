"""Tip ledger command line interface.

Provides operational tools for:
- Balance queries
- Settling a staff member's outstanding allocations
- Balance reconciliation (single staff, one venue, or everyone)
- Payout export for auditing

Usage:
    python -m tip_ledger.cli balance --staff-id X
    python -m tip_ledger.cli settle --staff-id X
    python -m tip_ledger.cli reconcile --all --dry-run
    python -m tip_ledger.cli reconcile --venue-id Y
    python -m tip_ledger.cli export-payouts --venue-id Y --output payouts.csv
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any
from uuid import UUID

from tip_ledger.config import get_settings
from tip_ledger.database import dispose_db, init_db
from tip_ledger.errors import LedgerError
from tip_ledger.ledger import TipLedger
from tip_ledger.services.reconciliation import ReconciliationResult

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def result_to_dict(result: ReconciliationResult) -> dict[str, Any]:
    return {
        "staff_id": str(result.staff_id),
        "previous": result.previous,
        "corrected": result.corrected,
        "delta": result.delta,
        "applied": result.applied,
    }


class LedgerCli:
    """Tip ledger command line interface."""

    def __init__(self, ledger: TipLedger | None = None) -> None:
        self.parser = self._build_parser()
        self._ledger = ledger

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m tip_ledger.cli",
            description="Tip ledger operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        balance = subparsers.add_parser("balance", help="Show a staff member's cached balance")
        balance.add_argument("--staff-id", type=parse_uuid, required=True, help="Staff ID")

        settle = subparsers.add_parser("settle", help="Pay out a staff member's unpaid tips")
        settle.add_argument("--staff-id", type=parse_uuid, required=True, help="Staff ID")

        reconcile = subparsers.add_parser(
            "reconcile",
            help="Recompute cached balances from unpaid allocations",
        )
        scope = reconcile.add_mutually_exclusive_group(required=True)
        scope.add_argument("--staff-id", type=parse_uuid, help="Reconcile one staff member")
        scope.add_argument("--venue-id", type=parse_uuid, help="Reconcile a venue's staff")
        scope.add_argument("--all", action="store_true", help="Reconcile every staff member")
        reconcile.add_argument(
            "--dry-run",
            action="store_true",
            help="Report drift without correcting it",
        )

        export = subparsers.add_parser("export-payouts", help="Export a venue's payouts to CSV")
        export.add_argument("--venue-id", type=parse_uuid, required=True, help="Venue ID")
        export.add_argument("--output", type=str, required=True, help="Output file path (.csv)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run CLI with arguments. Returns the process exit code."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        try:
            return asyncio.run(self._dispatch(parsed))
        except LedgerError as exc:
            print(json.dumps({"error": exc.code, "detail": str(exc)}), file=sys.stderr)
            return 1

    async def _dispatch(self, args: argparse.Namespace) -> int:
        handlers = {
            "balance": self._cmd_balance,
            "settle": self._cmd_settle,
            "reconcile": self._cmd_reconcile,
            "export-payouts": self._cmd_export_payouts,
        }
        owns_ledger = self._ledger is None
        if owns_ledger:
            settings = get_settings()
            logging.basicConfig(level=settings.log_level, stream=sys.stderr)
            _, factory = init_db()
            self._ledger = TipLedger(factory, settings.ledger)
        try:
            return await handlers[args.command](args)
        finally:
            if owns_ledger:
                self._ledger = None
                await dispose_db()

    @property
    def ledger(self) -> TipLedger:
        if self._ledger is None:
            raise RuntimeError("Ledger is only available while a command runs")
        return self._ledger

    async def _cmd_balance(self, args: argparse.Namespace) -> int:
        balance = await self.ledger.get_balance(args.staff_id)
        self._emit({"staff_id": str(args.staff_id), "balance": balance})
        return 0

    async def _cmd_settle(self, args: argparse.Namespace) -> int:
        payout = await self.ledger.settle(args.staff_id)
        self._emit({
            "payout_id": str(payout.payout_id),
            "staff_id": str(payout.staff_id),
            "total_amount": payout.total_amount,
            "allocation_count": payout.allocation_count,
        })
        return 0

    async def _cmd_reconcile(self, args: argparse.Namespace) -> int:
        if args.staff_id:
            if args.dry_run:
                result = await self.ledger.inspect(args.staff_id)
            else:
                result = await self.ledger.reconcile(args.staff_id)
            self._emit(result_to_dict(result))
            return 0

        summary = await self.ledger.reconcile_all(args.venue_id, dry_run=args.dry_run)
        self._emit({
            "dry_run": args.dry_run,
            "staff_checked": summary.staff_checked,
            "staff_drifted": sum(1 for r in summary.results if r.drifted),
            "staff_fixed": summary.staff_fixed,
            "total_delta": summary.total_delta,
            "drifted": [result_to_dict(r) for r in summary.results if r.drifted],
            "errors": summary.errors,
        })
        return 0 if summary.success else 1

    async def _cmd_export_payouts(self, args: argparse.Namespace) -> int:
        content = await self.ledger.export_payouts_csv(args.venue_id)
        Path(args.output).write_text(content, encoding="utf-8")
        rows = max(content.count("\n") - 1, 0)
        self._emit({"venue_id": str(args.venue_id), "output": args.output, "rows": rows})
        return 0

    @staticmethod
    def _emit(data: dict[str, Any]) -> None:
        print(json.dumps(data, indent=2))


def main() -> None:
    """CLI entry point."""
    sys.exit(LedgerCli().run())


if __name__ == "__main__":
    main()
