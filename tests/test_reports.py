from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from logitrack.gateway import PersistenceGateway
from logitrack.models import (
    FinancialCategory,
    FinancialTransaction,
    RequestStatus,
    TransactionStatus,
    TransactionType,
    TransportRequest,
    User,
    UserRole,
)
from logitrack.reports import (
    ReportFilter,
    cash_flow_stats,
    dashboard_stats,
    filter_requests,
    report_totals,
    transactions_for_month,
)
from logitrack.services import LogisticsService
from logitrack.storage import LocalStore


def _request(client: str, charge: float, fee: float, **extra) -> TransportRequest:
    return TransportRequest(
        invoice_number=extra.pop("invoice_number", "IBEC - 001"),
        client_name=client,
        origin="A",
        destination="B",
        vehicle_category=extra.pop("vehicle_category", "CARRO"),
        distance_km=10,
        driver_fee=fee,
        client_charge=charge,
        **extra,
    )


@pytest.fixture
def requests() -> list[TransportRequest]:
    return [
        _request("Acme", 48.0, 33.0, created_at="2024-05-02T10:00:00+00:00", payment_date="2024-05-20"),
        _request(
            "Acme",
            100.0,
            60.0,
            created_at="2024-04-28T10:00:00+00:00",
            scheduled_for="2024-05-03T08:00:00",
            status=RequestStatus.IN_PROGRESS,
        ),
        _request(
            "Globex",
            30.0,
            20.0,
            vehicle_category="MOTO",
            created_at="2024-05-15T10:00:00+00:00",
            status=RequestStatus.COMPLETED,
        ),
        _request("Globex", 500.0, 300.0, created_at="2024-06-01T10:00:00+00:00"),
    ]


def test_current_month_filter_covers_whole_month() -> None:
    window = ReportFilter.current_month(date(2024, 2, 10))

    assert window.start == date(2024, 2, 1)
    assert window.end == date(2024, 2, 29)
    december = ReportFilter.current_month(date(2023, 12, 5))
    assert december.end == date(2023, 12, 31)


def test_filter_uses_scheduled_date_before_creation_date(requests: list[TransportRequest]) -> None:
    may = ReportFilter(start=date(2024, 5, 1), end=date(2024, 5, 31))

    selected = filter_requests(requests, may)

    assert [item.client_charge for item in selected] == [48.0, 100.0, 30.0]


def test_filter_by_status_category_and_client(requests: list[TransportRequest]) -> None:
    assert len(filter_requests(requests, ReportFilter(client_name="Globex"))) == 2
    assert len(filter_requests(requests, ReportFilter(vehicle_category="MOTO"))) == 1
    assert len(filter_requests(requests, ReportFilter(status=RequestStatus.PENDING))) == 2


def test_report_totals(requests: list[TransportRequest]) -> None:
    may = filter_requests(requests, ReportFilter(start=date(2024, 5, 1), end=date(2024, 5, 31)))

    totals = report_totals(may)

    assert totals.count == 3
    assert totals.revenue == pytest.approx(178.0)
    assert totals.driver_cost == pytest.approx(113.0)
    assert totals.tax == pytest.approx(14.24)
    assert totals.net_profit == pytest.approx(178.0 - 113.0 - 14.24)
    assert totals.received == pytest.approx(48.0)
    assert totals.receivable == pytest.approx(130.0)


def test_dashboard_respects_client_visibility(requests: list[TransportRequest]) -> None:
    now = datetime(2024, 5, 10, tzinfo=timezone.utc)
    admin = User(username="admin", name="Administrador", role=UserRole.ADMIN)
    client = User(username="globex", name="Globex", role=UserRole.CLIENT, client_id="c1")

    admin_view = dashboard_stats(admin, requests, now)
    client_view = dashboard_stats(client, requests, now)

    assert admin_view.total == 4
    assert admin_view.in_progress == 1
    assert admin_view.delayed == 1
    assert admin_view.revenue == pytest.approx(678.0)
    assert client_view.total == 2
    assert client_view.revenue is None


def _transaction(day: str, kind: TransactionType, value: float, status: TransactionStatus):
    return FinancialTransaction(
        date=day,
        type=kind,
        category=FinancialCategory.OTHER,
        description="entry",
        value=value,
        status=status,
    )


def test_cash_flow_stats_for_month() -> None:
    transactions = [
        _transaction("2024-05-01", TransactionType.INFLOW, 1000.0, TransactionStatus.REALIZED),
        _transaction("2024-05-10", TransactionType.INFLOW, 500.0, TransactionStatus.PROJECTED),
        _transaction("2024-05-12", TransactionType.OUTFLOW, 300.0, TransactionStatus.REALIZED),
        _transaction("2024-05-28", TransactionType.OUTFLOW, 200.0, TransactionStatus.PROJECTED),
        _transaction("2024-06-01", TransactionType.INFLOW, 9999.0, TransactionStatus.REALIZED),
    ]

    stats = cash_flow_stats(transactions, 5, 2024)

    assert len(transactions_for_month(transactions, 5, 2024)) == 4
    assert stats.inflow == pytest.approx(1500.0)
    assert stats.outflow == pytest.approx(500.0)
    assert stats.current_balance == pytest.approx(700.0)
    assert stats.projected_balance == pytest.approx(1000.0)


def test_transaction_lifecycle_through_service(tmp_path: Path) -> None:
    service = LogisticsService(PersistenceGateway(LocalStore(tmp_path / "logitrack.db")))
    entry = service.add_transaction(
        transaction_type=TransactionType.OUTFLOW,
        category=FinancialCategory.FUEL,
        description="Diesel",
        value=250.0,
        transaction_date="2024-05-04",
        status=TransactionStatus.PROJECTED,
    )

    toggled = service.toggle_transaction_status(entry.id)
    assert toggled is not None and toggled.status == TransactionStatus.REALIZED
    assert service.cash_flow(5, 2024).current_balance == pytest.approx(-250.0)

    service.delete_transaction(entry.id)
    assert service.transactions() == []
    assert service.toggle_transaction_status(entry.id) is None
