"""Payroll aggregation for drivers and fixed-contract staff."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from math import fsum
from typing import Iterable, Optional, Sequence

from .models import (
    Driver,
    DriverExpense,
    FixedContract,
    PayeeKind,
    PayeeRef,
    RequestStatus,
    StaffExpense,
    TransportRequest,
    parse_timestamp,
)
from .pricing import net_after_tax

ALLOWANCE_FIELDS = (
    ("meal_allowance", "Meal allowance"),
    ("transport_allowance", "Transport allowance"),
    ("hazard_allowance", "Hazard allowance"),
    ("vehicle_rental_allowance", "Vehicle rental"),
)


@dataclass(frozen=True)
class PayrollSummary:
    earnings: float
    debits: float

    @property
    def net(self) -> float:
        return round(self.earnings - self.debits, 2)


@dataclass(frozen=True)
class ContractSummary:
    revenue: float
    tax: float
    staff_cost: float
    net: float


@dataclass(frozen=True)
class PortfolioSummary:
    contract_count: int
    revenue: float
    tax: float
    staff_cost: float
    margin: float


@dataclass(frozen=True)
class PayeeOption:
    """Entry of the payroll selector: drivers and staff members side by side."""

    ref: PayeeRef
    name: str
    detail: str


@dataclass(frozen=True)
class StatementLine:
    date: str
    type: str
    details: str
    value: float


def completed_trips(driver_id: str, requests: Iterable[TransportRequest]) -> list[TransportRequest]:
    return [
        request
        for request in requests
        if request.driver_id == driver_id and request.status == RequestStatus.COMPLETED
    ]


def expenses_for(payee: PayeeRef, expenses: Iterable[DriverExpense]) -> list[DriverExpense]:
    return [expense for expense in expenses if expense.payee == payee]


def total_debits(payee: PayeeRef, expenses: Iterable[DriverExpense]) -> float:
    return round(fsum(expense.amount for expense in expenses_for(payee, expenses)), 2)


def driver_summary(
    driver_id: str,
    requests: Iterable[TransportRequest],
    expenses: Iterable[DriverExpense],
) -> PayrollSummary:
    earnings = round(fsum(request.driver_fee for request in completed_trips(driver_id, requests)), 2)
    return PayrollSummary(earnings=earnings, debits=total_debits(PayeeRef.driver(driver_id), expenses))


def staff_earnings(staff: StaffExpense) -> float:
    """Salary plus every allowance; missing allowances count as zero."""

    parts = [staff.salary]
    parts.extend(float(getattr(staff, name) or 0.0) for name, _label in ALLOWANCE_FIELDS)
    return round(fsum(parts), 2)


def staff_summary(staff: StaffExpense, expenses: Iterable[DriverExpense]) -> PayrollSummary:
    return PayrollSummary(
        earnings=staff_earnings(staff), debits=total_debits(PayeeRef.staff(staff.id), expenses)
    )


def find_staff(staff_id: str, contracts: Iterable[FixedContract]) -> Optional[StaffExpense]:
    for contract in contracts:
        for member in contract.staff:
            if member.id == staff_id:
                return member
    return None


def payee_summary(
    payee: PayeeRef,
    requests: Sequence[TransportRequest],
    expenses: Sequence[DriverExpense],
    contracts: Sequence[FixedContract],
) -> PayrollSummary:
    if payee.kind == PayeeKind.DRIVER:
        return driver_summary(payee.id, requests, expenses)
    member = find_staff(payee.id, contracts)
    if member is None:
        # Staff removed from its contract: only the personal ledger remains.
        return PayrollSummary(earnings=0.0, debits=total_debits(payee, expenses))
    return staff_summary(member, expenses)


def contract_staff_cost(contract: FixedContract) -> float:
    return round(fsum(staff_earnings(member) for member in contract.staff), 2)


def contract_summary(contract: FixedContract) -> ContractSummary:
    staff_cost = contract_staff_cost(contract)
    margin = net_after_tax(contract.contract_value, staff_cost)
    return ContractSummary(
        revenue=contract.contract_value,
        tax=margin.tax,
        staff_cost=staff_cost,
        net=margin.net_profit,
    )


def portfolio_summary(contracts: Sequence[FixedContract]) -> PortfolioSummary:
    revenue = round(fsum(contract.contract_value for contract in contracts), 2)
    staff_cost = round(fsum(contract_staff_cost(contract) for contract in contracts), 2)
    margin = net_after_tax(revenue, staff_cost)
    return PortfolioSummary(
        contract_count=len(contracts),
        revenue=revenue,
        tax=margin.tax,
        staff_cost=staff_cost,
        margin=margin.net_profit,
    )


def list_payees(drivers: Iterable[Driver], contracts: Iterable[FixedContract]) -> list[PayeeOption]:
    options = [
        PayeeOption(PayeeRef.driver(driver.id), driver.name, f"Driver · {driver.vehicle_category}")
        for driver in drivers
    ]
    for contract in contracts:
        for member in contract.staff:
            options.append(
                PayeeOption(
                    PayeeRef.staff(member.id),
                    member.employee_name,
                    f"{member.role} · {contract.client_name}",
                )
            )
    options.sort(key=lambda option: option.name.lower())
    return options


def statement_lines(
    payee: PayeeRef,
    requests: Sequence[TransportRequest],
    expenses: Sequence[DriverExpense],
    contracts: Sequence[FixedContract],
    period_date: Optional[date] = None,
) -> list[StatementLine]:
    """Chronological extract: earnings positive, expenses negative."""

    lines: list[StatementLine] = []
    if payee.kind == PayeeKind.DRIVER:
        for request in completed_trips(payee.id, requests):
            lines.append(
                StatementLine(
                    date=request.created_at,
                    type="Earning (trip)",
                    details=f"Invoice: {request.invoice_number} - {request.destination}",
                    value=request.driver_fee,
                )
            )
    else:
        member = find_staff(payee.id, contracts)
        if member is not None:
            stamp = (period_date or date.today()).isoformat()
            lines.append(StatementLine(stamp, "Earning (salary)", member.role, member.salary))
            for name, label in ALLOWANCE_FIELDS:
                amount = float(getattr(member, name) or 0.0)
                if amount:
                    lines.append(StatementLine(stamp, "Earning (allowance)", label, round(amount, 2)))

    for expense in expenses_for(payee, expenses):
        lines.append(
            StatementLine(
                date=expense.date,
                type=f"Expense ({expense.type.value})",
                details=expense.description or "-",
                value=-expense.amount,
            )
        )

    def _sort_key(line: StatementLine) -> str:
        parsed = parse_timestamp(line.date)
        return parsed.isoformat() if parsed else line.date

    lines.sort(key=_sort_key)
    return lines


__all__ = [
    "ContractSummary",
    "PayeeOption",
    "PayrollSummary",
    "PortfolioSummary",
    "StatementLine",
    "completed_trips",
    "contract_staff_cost",
    "contract_summary",
    "driver_summary",
    "expenses_for",
    "find_staff",
    "list_payees",
    "payee_summary",
    "portfolio_summary",
    "staff_earnings",
    "staff_summary",
    "statement_lines",
    "total_debits",
]
