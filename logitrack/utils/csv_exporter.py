"""CSV extract of a payee's payroll statement."""

from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Sequence

from ..models import parse_timestamp
from ..payroll import PayrollSummary, StatementLine


def _display_date(value: str) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%d/%m/%Y") if parsed else value


def export_payroll_csv(
    output_path: Path | str,
    *,
    payee_name: str,
    tax_id: str,
    lines: Sequence[StatementLine],
    summary: PayrollSummary,
    generated_at: datetime | None = None,
) -> Path:
    """Write the statement as ``Date,Type,Details,Value`` rows followed by totals."""

    path = Path(output_path)
    if path.suffix.lower() != ".csv":
        path = path.with_suffix(".csv")
    path.parent.mkdir(parents=True, exist_ok=True)
    generated = generated_at or datetime.now()

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow([f"Detailed statement: {payee_name}"])
        writer.writerow([f"Tax id: {tax_id or '-'}"])
        writer.writerow([f"Generated: {generated.strftime('%d/%m/%Y %H:%M')}"])
        writer.writerow([])
        writer.writerow(["Date", "Type", "Details", "Value"])
        for line in lines:
            writer.writerow([_display_date(line.date), line.type, line.details, f"{line.value:.2f}"])
        writer.writerow([])
        writer.writerow(["", "", "Total earnings", f"{summary.earnings:.2f}"])
        writer.writerow(["", "", "Total expenses", f"{summary.debits:.2f}"])
        writer.writerow(["", "", "Net pay", f"{summary.net:.2f}"])
    return path


__all__ = ["export_payroll_csv"]
