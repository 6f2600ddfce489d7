"""
backoffice-cli -- administrative commands over the back-office database.

Usage:
  backoffice-cli [--db-url URL] init-db
  backoffice-cli seed-chart
  backoffice-cli create-branch CODE NAME [--main]
  backoffice-cli init-branch CODE
  backoffice-cli trial-balance [--as-of YYYY-MM-DD]
  backoffice-cli daily-summary CODE [--day YYYY-MM-DD]

Every command prints one JSON envelope ({"success": ..., "data"|"error": ...})
to stdout and exits non-zero on failure.  Structured logs go to stderr.
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from backoffice_config import get_active_config, get_settings
from backoffice_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from backoffice_kernel.domain.clock import SystemClock
from backoffice_kernel.domain.envelope import error_envelope, success_envelope
from backoffice_kernel.exceptions import BackofficeError
from backoffice_kernel.logging_config import configure_logging
from backoffice_kernel.selectors import LedgerSelector, ReportAggregator
from backoffice_kernel.services import FloatAccountService, LedgerPoster, SetupService


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    settings = get_settings()
    p = argparse.ArgumentParser(prog="backoffice-cli", description="Branch back-office administration")
    p.add_argument("--db-url", default=settings.database_url, help="Database URL (default: BACKOFFICE_DATABASE_URL)")
    p.add_argument("--config", default=None, help="Config YAML (default: BACKOFFICE_CONFIG_PATH or packaged defaults)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")
    sub.add_parser("seed-chart", help="Seed the chart of accounts from config")

    branch = sub.add_parser("create-branch", help="Create a branch")
    branch.add_argument("code")
    branch.add_argument("name")
    branch.add_argument("--main", action="store_true", help="Flag as the main branch")

    init = sub.add_parser("init-branch", help="Open default floats and GL mappings for a branch")
    init.add_argument("code")

    tb = sub.add_parser("trial-balance", help="Print the trial balance")
    tb.add_argument("--as-of", type=date.fromisoformat, default=None)

    daily = sub.add_parser("daily-summary", help="Module totals and float snapshot for one day")
    daily.add_argument("code")
    daily.add_argument("--day", type=date.fromisoformat, default=None)
    return p.parse_args(argv)


def _run(args: argparse.Namespace) -> dict:
    if args.command == "init-db":
        create_tables()
        return success_envelope(message="Tables created")

    config = get_active_config(Path(args.config) if args.config else None)
    clock = SystemClock()
    with session_scope() as session:
        setup = SetupService(
            session,
            clock,
            config,
            FloatAccountService(session, clock, LedgerPoster(session, clock, config)),
        )
        if args.command == "seed-chart":
            added = setup.seed_chart_of_accounts()
            return success_envelope({"accounts_added": added})
        if args.command == "create-branch":
            return success_envelope(
                setup.create_branch(args.code, args.name, is_main=True if args.main else None)
            )
        if args.command == "init-branch":
            branch = setup.get_branch(args.code)
            return success_envelope(setup.initialize_branch(branch.id))
        if args.command == "trial-balance":
            rows = LedgerSelector(session).trial_balance(as_of_date=args.as_of)
            return success_envelope(rows)
        if args.command == "daily-summary":
            branch = setup.get_branch(args.code)
            summary = ReportAggregator(session).daily_summary(branch.id, args.day or clock.today())
            data = success_envelope(summary)
            data["data"]["totals"] = {
                "count": summary.total_count,
                "amount": summary.total_amount,
                "fees": summary.total_fees,
            }
            return data
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging(level=settings.log_level)
    try:
        init_engine_from_url(args.db_url, echo=settings.sql_echo)
        envelope, status = _run(args), 0
    except BackofficeError as exc:
        envelope, code = error_envelope(exc)
        status = 1 if code < 500 else 2
    print(json.dumps(envelope, default=str, indent=2))
    return status


if __name__ == "__main__":
    sys.exit(main())
