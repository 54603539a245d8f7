from datetime import date
from pathlib import Path

import pytest

from logitrack.errors import ValidationError
from logitrack.gateway import PersistenceGateway
from logitrack.models import (
    DriverExpense,
    ExpenseType,
    FixedContract,
    PayeeKind,
    PayeeRef,
    RequestStatus,
    StaffExpense,
    TransportRequest,
)
from logitrack.payroll import (
    contract_summary,
    driver_summary,
    list_payees,
    portfolio_summary,
    staff_summary,
    statement_lines,
)
from logitrack.services import LogisticsService
from logitrack.storage import LocalStore


def _trip(driver_id: str, fee: float, status: RequestStatus, invoice: str) -> TransportRequest:
    return TransportRequest(
        invoice_number=invoice,
        client_name="Acme",
        origin="Depot",
        destination=f"Stop {invoice}",
        vehicle_category="CARRO",
        distance_km=5,
        driver_fee=fee,
        client_charge=fee * 1.5,
        status=status,
        driver_id=driver_id,
        created_at=f"2024-03-0{invoice[-1]}T10:00:00+00:00",
    )


@pytest.fixture
def service(tmp_path: Path) -> LogisticsService:
    return LogisticsService(PersistenceGateway(LocalStore(tmp_path / "logitrack.db")))


def test_driver_payroll_scenario() -> None:
    requests = [
        _trip("D", 100.0, RequestStatus.COMPLETED, "IBEC - 001"),
        _trip("D", 50.0, RequestStatus.COMPLETED, "IBEC - 002"),
        _trip("D", 80.0, RequestStatus.IN_PROGRESS, "IBEC - 003"),
        _trip("E", 70.0, RequestStatus.COMPLETED, "IBEC - 004"),
    ]
    expenses = [DriverExpense(PayeeRef.driver("D"), ExpenseType.FUEL, 30.0, "2024-03-05")]

    summary = driver_summary("D", requests, expenses)

    assert summary.earnings == pytest.approx(150.0)
    assert summary.debits == pytest.approx(30.0)
    assert summary.net == pytest.approx(120.0)


def test_staff_payroll_scenario() -> None:
    member = StaffExpense(
        employee_name="Joana",
        salary=2000,
        meal_allowance=400,
        transport_allowance=200,
        hazard_allowance=0,
    )

    summary = staff_summary(member, [])

    assert summary.earnings == pytest.approx(2600.0)
    assert summary.net == pytest.approx(2600.0)


def test_expenses_do_not_leak_between_payee_kinds() -> None:
    expenses = [
        DriverExpense(PayeeRef.staff("X"), ExpenseType.ADVANCE, 500.0, "2024-03-01"),
        DriverExpense(PayeeRef.driver("X"), ExpenseType.TOLL, 12.0, "2024-03-01"),
    ]

    assert driver_summary("X", [], expenses).debits == pytest.approx(12.0)


def test_legacy_expense_records_resolve_to_drivers() -> None:
    expense = DriverExpense.from_record(
        {"id": "e1", "driver_id": "d9", "type": "FUEL", "amount": 25, "date": "2024-01-02"}
    )

    assert expense.payee == PayeeRef(PayeeKind.DRIVER, "d9")
    assert expense.to_record()["payee_kind"] == "DRIVER"


def test_contract_and_portfolio_summaries() -> None:
    first = FixedContract(
        client_name="Hospital",
        contract_value=10000,
        staff=[
            StaffExpense(employee_name="A", salary=2000, meal_allowance=400, transport_allowance=200),
            StaffExpense(employee_name="B", salary=3000, vehicle_rental_allowance=400),
        ],
    )
    second = FixedContract(client_name="Escola", contract_value=5000, staff=[])

    summary = contract_summary(first)
    portfolio = portfolio_summary([first, second])

    assert summary.staff_cost == pytest.approx(6000.0)
    assert summary.tax == pytest.approx(800.0)
    assert summary.net == pytest.approx(3200.0)
    assert portfolio.contract_count == 2
    assert portfolio.revenue == pytest.approx(15000.0)
    assert portfolio.staff_cost == pytest.approx(6000.0)
    assert portfolio.margin == pytest.approx(15000 - 1200 - 6000)


def test_statement_lines_are_signed_and_sorted() -> None:
    requests = [
        _trip("D", 50.0, RequestStatus.COMPLETED, "IBEC - 002"),
        _trip("D", 100.0, RequestStatus.COMPLETED, "IBEC - 001"),
    ]
    expenses = [
        DriverExpense(PayeeRef.driver("D"), ExpenseType.FUEL, 30.0, "2024-03-01T15:00:00+00:00")
    ]

    lines = statement_lines(PayeeRef.driver("D"), requests, expenses, [])

    assert [line.value for line in lines] == [100.0, -30.0, 50.0]
    assert lines[0].type == "Earning (trip)"
    assert lines[0].details == "Invoice: IBEC - 001 - Stop IBEC - 001"
    assert lines[1].type == "Expense (FUEL)"


def test_staff_statement_lists_salary_and_allowances() -> None:
    member = StaffExpense(employee_name="Joana", salary=2000, role="Nurse", meal_allowance=400)
    contract = FixedContract(client_name="Hospital", contract_value=5000, staff=[member])

    lines = statement_lines(
        PayeeRef.staff(member.id), [], [], [contract], period_date=date(2024, 3, 1)
    )

    assert [(line.type, line.value) for line in lines] == [
        ("Earning (salary)", 2000.0),
        ("Earning (allowance)", 400.0),
    ]


def test_payee_list_merges_drivers_and_staff(service: LogisticsService) -> None:
    driver = service.register_driver(
        name="Zeca", tax_id="1", address="", phone="", vehicle_category="MOTO"
    )
    member = StaffExpense(employee_name="Alice", salary=1800, role="Receptionist")
    service.create_contract(client_name="Clinic", contract_value=4000, staff=[member])

    payees = list_payees(service.drivers(), service.contracts())

    assert [option.name for option in payees] == ["Alice", "Zeca"]
    assert payees[0].ref == PayeeRef.staff(member.id)
    assert payees[1].ref == PayeeRef.driver(driver.id)
    assert service.payees() == payees


def test_service_expense_validation_and_payroll(service: LogisticsService) -> None:
    member = StaffExpense(employee_name="Alice", salary=1800, meal_allowance=200)
    contract = service.create_contract(client_name="Clinic", contract_value=4000, staff=[member])
    payee = PayeeRef.staff(contract.staff[0].id)

    service.add_expense(payee, ExpenseType.ADVANCE, 300, "2024-03-10", "Advance")

    summary = service.payroll(payee)
    assert (summary.earnings, summary.debits, summary.net) == (2000.0, 300.0, 1700.0)
    with pytest.raises(ValidationError):
        service.add_expense(payee, ExpenseType.OTHER, -1)
    with pytest.raises(ValidationError):
        service.add_expense(PayeeRef.driver("ghost"), ExpenseType.FUEL, 10)


def test_contract_staff_management(service: LogisticsService) -> None:
    contract = service.create_contract(client_name="Clinic", contract_value=4000)
    member = StaffExpense(employee_name="Bruno", salary=2500)

    with_staff = service.add_staff(contract.id, member)
    assert [item.employee_name for item in with_staff.staff] == ["Bruno"]
    assert service.portfolio().staff_cost == pytest.approx(2500.0)

    without_staff = service.remove_staff(contract.id, member.id)
    assert without_staff.staff == []

    service.delete_contract(contract.id)
    assert service.contracts() == []
    with pytest.raises(ValidationError):
        service.add_staff(contract.id, member)
