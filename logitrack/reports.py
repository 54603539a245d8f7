"""Read-side aggregates for the dashboard, management report and cash flow."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from math import fsum
from typing import Iterable, Optional, Sequence

from .lifecycle import is_delayed
from .models import (
    FinancialTransaction,
    RequestStatus,
    TransactionStatus,
    TransactionType,
    TransportRequest,
    User,
    UserRole,
    parse_timestamp,
)
from .pricing import net_after_tax


@dataclass(frozen=True)
class ReportFilter:
    start: Optional[date] = None
    end: Optional[date] = None
    status: Optional[RequestStatus] = None
    vehicle_category: Optional[str] = None
    client_name: Optional[str] = None

    @classmethod
    def current_month(cls, today: Optional[date] = None) -> "ReportFilter":
        today = today or date.today()
        first = today.replace(day=1)
        if today.month == 12:
            following = date(today.year + 1, 1, 1)
        else:
            following = date(today.year, today.month + 1, 1)
        last = date.fromordinal(following.toordinal() - 1)
        return cls(start=first, end=last)

    def matches(self, request: TransportRequest) -> bool:
        service_date = request.service_date
        if self.start and (service_date is None or service_date.date() < self.start):
            return False
        if self.end and (service_date is None or service_date.date() > self.end):
            return False
        if self.status is not None and request.status != self.status:
            return False
        if self.vehicle_category and request.vehicle_category != self.vehicle_category:
            return False
        if self.client_name and request.client_name != self.client_name:
            return False
        return True


@dataclass(frozen=True)
class ReportTotals:
    count: int
    revenue: float
    driver_cost: float
    tax: float
    net_profit: float
    received: float
    receivable: float


def filter_requests(
    requests: Iterable[TransportRequest], report_filter: ReportFilter
) -> list[TransportRequest]:
    return [request for request in requests if report_filter.matches(request)]


def report_totals(requests: Sequence[TransportRequest]) -> ReportTotals:
    revenue = round(fsum(request.client_charge for request in requests), 2)
    driver_cost = round(fsum(request.driver_fee for request in requests), 2)
    margin = net_after_tax(revenue, driver_cost)
    received = round(
        fsum(request.client_charge for request in requests if request.payment_date), 2
    )
    return ReportTotals(
        count=len(requests),
        revenue=revenue,
        driver_cost=driver_cost,
        tax=margin.tax,
        net_profit=margin.net_profit,
        received=received,
        receivable=round(revenue - received, 2),
    )


@dataclass(frozen=True)
class CashFlowStats:
    inflow: float
    outflow: float
    realized_inflow: float
    realized_outflow: float

    @property
    def current_balance(self) -> float:
        return round(self.realized_inflow - self.realized_outflow, 2)

    @property
    def projected_balance(self) -> float:
        return round(self.inflow - self.outflow, 2)


def transactions_for_month(
    transactions: Iterable[FinancialTransaction], month: int, year: int
) -> list[FinancialTransaction]:
    """``month`` is 1-based."""

    selected = []
    for transaction in transactions:
        moment = parse_timestamp(transaction.date)
        if moment is not None and moment.month == month and moment.year == year:
            selected.append(transaction)
    return selected


def cash_flow_stats(
    transactions: Iterable[FinancialTransaction], month: int, year: int
) -> CashFlowStats:
    inflow: list[float] = []
    outflow: list[float] = []
    realized_in: list[float] = []
    realized_out: list[float] = []
    for transaction in transactions_for_month(transactions, month, year):
        realized = transaction.status == TransactionStatus.REALIZED
        if transaction.type == TransactionType.INFLOW:
            inflow.append(transaction.value)
            if realized:
                realized_in.append(transaction.value)
        else:
            outflow.append(transaction.value)
            if realized:
                realized_out.append(transaction.value)
    return CashFlowStats(
        inflow=round(fsum(inflow), 2),
        outflow=round(fsum(outflow), 2),
        realized_inflow=round(fsum(realized_in), 2),
        realized_outflow=round(fsum(realized_out), 2),
    )


def visible_requests(user: User, requests: Iterable[TransportRequest]) -> list[TransportRequest]:
    """Client accounts only see requests filed under their own name."""

    if user.role == UserRole.CLIENT and user.client_id:
        return [request for request in requests if request.client_name == user.name]
    return list(requests)


@dataclass(frozen=True)
class DashboardStats:
    total: int
    in_progress: int
    delayed: int
    revenue: Optional[float]


def dashboard_stats(
    user: User, requests: Iterable[TransportRequest], now: Optional[datetime] = None
) -> DashboardStats:
    visible = visible_requests(user, requests)
    reference = now or datetime.now(timezone.utc)
    revenue: Optional[float] = None
    if user.role != UserRole.CLIENT:
        revenue = round(fsum(request.client_charge for request in visible), 2)
    return DashboardStats(
        total=len(visible),
        in_progress=sum(1 for request in visible if request.status == RequestStatus.IN_PROGRESS),
        delayed=sum(1 for request in visible if is_delayed(request, reference)),
        revenue=revenue,
    )


__all__ = [
    "CashFlowStats",
    "DashboardStats",
    "ReportFilter",
    "ReportTotals",
    "cash_flow_stats",
    "dashboard_stats",
    "filter_requests",
    "report_totals",
    "transactions_for_month",
    "visible_requests",
]
