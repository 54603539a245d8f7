"""Command-line entry point for LogiTrack."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

import structlog

from .errors import LogiTrackError
from .logging_setup import setup_logging
from .models import PayeeRef
from .services import LogisticsService
from .settings import load_config

logger = structlog.get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="logitrack", description="LogiTrack logistics console")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override the data directory")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("summary", help="Print record counts and monthly totals")
    subparsers.add_parser("rates", help="Print the vehicle rate table")

    payroll = subparsers.add_parser("payroll", help="Print or export a payee statement")
    payroll.add_argument("payee_id", help="Driver id, or staff id with --staff")
    payroll.add_argument("--staff", action="store_true", help="Treat the id as a staff member")
    payroll.add_argument("--csv", type=Path, default=None, help="Write the statement to a CSV file")

    report = subparsers.add_parser("report", help="Export the current month's management report")
    report.add_argument("output", type=Path, help="Destination PDF path")
    return parser


def _print_summary(service: LogisticsService) -> None:
    snapshot = service.hydrate()
    _selected, totals = service.report()
    print(f"Requests:     {len(snapshot.requests)}")
    print(f"Drivers:      {len(snapshot.drivers)}")
    print(f"Clients:      {len(snapshot.clients)}")
    print(f"Contracts:    {len(snapshot.contracts)}")
    print(f"Transactions: {len(snapshot.transactions)}")
    print(
        f"This month: {totals.count} requests, revenue {totals.revenue:.2f}, "
        f"net profit {totals.net_profit:.2f}"
    )


def _print_rates(service: LogisticsService) -> None:
    table = service.rate_table()
    print(f"{'Category':<12}{'Label':<14}{'Base':>8}{'Cost/km':>10}{'Charge/km':>11}{'10 km':>10}")
    for entry in table:
        print(
            f"{entry.category:<12}{entry.label:<14}{entry.base_fee:>8.2f}"
            f"{entry.cost_per_km:>10.2f}{entry.charge_per_km:>11.2f}"
            f"{table.example_charge(entry.category):>10.2f}"
        )


def _print_payroll(service: LogisticsService, args: argparse.Namespace) -> None:
    payee = PayeeRef.staff(args.payee_id) if args.staff else PayeeRef.driver(args.payee_id)
    if args.csv is not None:
        path = service.export_payroll_csv(payee, args.csv)
        print(f"Statement written to {path}")
        return
    for line in service.payroll_statement(payee):
        print(f"{line.date[:10]:<12}{line.type:<22}{line.details:<40}{line.value:>10.2f}")
    summary = service.payroll(payee)
    print(f"Earnings {summary.earnings:.2f} | Expenses {summary.debits:.2f} | Net {summary.net:.2f}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    config = load_config(args.data_dir)
    service = LogisticsService.from_config(config)
    command = args.command or "summary"
    try:
        if command == "summary":
            _print_summary(service)
        elif command == "rates":
            _print_rates(service)
        elif command == "payroll":
            _print_payroll(service, args)
        elif command == "report":
            path = service.export_report_pdf(args.output)
            print(f"Report written to {path}")
    except LogiTrackError as exc:
        logger.error("command_failed", command=command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    for notice in service.drain_notifications():
        print(f"Warning: {notice.message}", file=sys.stderr)
    raise SystemExit(0)


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
