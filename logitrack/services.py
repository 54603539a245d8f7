"""Operations behind every LogiTrack screen.

``LogisticsService`` shapes and validates records, hands them to the
persistence gateway and keeps a short list of sync warnings for the UI. The
locally written record is always returned, whatever happened remotely.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import structlog
from passlib.context import CryptContext

from .errors import DuplicateUsernameError, ProtectedAccountError, ValidationError
from .gateway import (
    CLIENTS,
    CONTRACTS,
    DRIVERS,
    EXPENSES,
    RATES,
    REQUESTS,
    TRANSACTIONS,
    USERS,
    PersistenceGateway,
    Repository,
    SyncResult,
)
from .lifecycle import INITIAL_STATUS, next_invoice_number, next_status
from .models import (
    ActivityType,
    Client,
    Driver,
    DriverExpense,
    ExpenseType,
    FinancialCategory,
    FinancialTransaction,
    FixedContract,
    PayeeKind,
    PayeeRef,
    PaymentMethod,
    RateEntry,
    RequestStatus,
    StaffExpense,
    TransactionStatus,
    TransactionType,
    TransportRequest,
    User,
    UserRole,
    driver_label,
    utc_now_iso,
)
from .payroll import (
    PayeeOption,
    PayrollSummary,
    PortfolioSummary,
    StatementLine,
    find_staff,
    list_payees,
    payee_summary,
    portfolio_summary,
    statement_lines,
)
from .pricing import (
    FeeQuote,
    Margin,
    RateTable,
    compute_fees,
    compute_margin,
    reprice_on_edit,
)
from .reports import (
    CashFlowStats,
    DashboardStats,
    ReportFilter,
    ReportTotals,
    cash_flow_stats,
    dashboard_stats,
    filter_requests,
    report_totals,
)
from .routing import DistanceLookupResult, RouteEstimator
from .settings import AppConfig

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PROTECTED_USERNAME = "admin"

_DEFAULT_USERS = (
    ("1", "admin", "admin", UserRole.ADMIN, "Administrador", False, None),
    ("2", "operacional", "123", UserRole.OPERATIONAL, "Operador Logístico", False, None),
    ("3", "cliente", "123", UserRole.CLIENT, "Cliente Demo", False, "client_demo_id"),
    ("4", "edna", "123", UserRole.ADMIN, "Edna (Admin)", True, None),
)

# Fields an operator may change on an existing request.
_EDITABLE_REQUEST_FIELDS = {
    "invoice_number",
    "client_name",
    "origin",
    "destination",
    "vehicle_category",
    "distance_km",
    "driver_fee",
    "client_charge",
    "status",
    "scheduled_for",
    "driver_id",
    "activity_type",
    "contact_on_site",
    "observations",
    "payment_date",
    "waypoints",
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


@dataclass(frozen=True)
class SyncNotice:
    """Transient warning shown when a change was saved locally but not mirrored."""

    message: str
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class Snapshot:
    requests: list[TransportRequest]
    drivers: list[Driver]
    clients: list[Client]
    expenses: list[DriverExpense]
    contracts: list[FixedContract]
    transactions: list[FinancialTransaction]
    rates: RateTable


def _require(value: Optional[str], label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required.")
    return text


class LogisticsService:
    """Application service used by every screen of the logistics console."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        route_estimator: Optional[RouteEstimator] = None,
        *,
        invoice_prefix: str = "IBEC - ",
        notification_limit: int = 20,
    ) -> None:
        self.gateway = gateway
        self.route_estimator = route_estimator
        self.invoice_prefix = invoice_prefix
        self.notifications: deque[SyncNotice] = deque(maxlen=max(1, notification_limit))
        self._requests: Repository[TransportRequest] = Repository(gateway, REQUESTS, TransportRequest)
        self._drivers: Repository[Driver] = Repository(gateway, DRIVERS, Driver)
        self._clients: Repository[Client] = Repository(gateway, CLIENTS, Client)
        self._expenses: Repository[DriverExpense] = Repository(gateway, EXPENSES, DriverExpense)
        self._contracts: Repository[FixedContract] = Repository(gateway, CONTRACTS, FixedContract)
        self._transactions: Repository[FinancialTransaction] = Repository(
            gateway, TRANSACTIONS, FinancialTransaction
        )
        self._users: Repository[User] = Repository(gateway, USERS, User)

    @classmethod
    def from_config(cls, config: AppConfig) -> "LogisticsService":
        gateway = PersistenceGateway.from_config(config)
        estimator = RouteEstimator(config.google_maps_api_key, gateway.local)
        return cls(
            gateway,
            estimator,
            invoice_prefix=config.invoice_prefix,
            notification_limit=config.notification_limit,
        )

    def _track(self, result: SyncResult) -> SyncResult:
        if result.warning:
            self.notifications.append(SyncNotice(result.warning))
        return result

    def drain_notifications(self) -> list[SyncNotice]:
        notices = list(self.notifications)
        self.notifications.clear()
        return notices

    def hydrate(self) -> Snapshot:
        """Load every collection, as done once at start-up."""

        return Snapshot(
            requests=self.requests(),
            drivers=self.drivers(),
            clients=self.clients(),
            expenses=self.expenses(),
            contracts=self.contracts(),
            transactions=self.transactions(),
            rates=self.rate_table(),
        )

    # Rates ---------------------------------------------------------------
    def rate_table(self) -> RateTable:
        return RateTable.from_records(self.gateway.fetch_rates())

    def update_rate(self, entry: RateEntry) -> RateEntry:
        table = self.rate_table()
        table.update(entry)
        self._track(self.gateway.upsert_many(RATES, table.to_records()))
        return entry

    def quote(self, vehicle_category: str, distance_km: float) -> FeeQuote:
        return compute_fees(vehicle_category, distance_km, self.rate_table())

    @staticmethod
    def margin(request: TransportRequest) -> Margin:
        return compute_margin(request.client_charge, request.driver_fee)

    def estimate_distance(
        self, origin: str, destination: str, waypoints: Sequence[str] = ()
    ) -> DistanceLookupResult:
        if self.route_estimator is None:
            raise ValidationError("Route estimation is not available; enter the distance manually.")
        return self.route_estimator.estimate(origin, destination, waypoints)

    # Transport requests --------------------------------------------------
    def requests(self) -> list[TransportRequest]:
        return self._requests.all()

    def get_request(self, request_id: str) -> Optional[TransportRequest]:
        return self._requests.get(request_id)

    def create_request(
        self,
        *,
        client_name: str,
        origin: str,
        destination: str,
        vehicle_category: str,
        distance_km: float,
        invoice_number: Optional[str] = None,
        driver_id: Optional[str] = None,
        scheduled_for: Optional[str] = None,
        activity_type: Optional[ActivityType] = None,
        contact_on_site: Optional[str] = None,
        observations: Optional[str] = None,
        waypoints: Iterable[str] = (),
        driver_fee: Optional[float] = None,
        client_charge: Optional[float] = None,
    ) -> TransportRequest:
        if not distance_km or float(distance_km) <= 0:
            raise ValidationError("Distance must be greater than zero.")
        quote = self.quote(vehicle_category, distance_km)
        existing = self.requests()
        request = TransportRequest(
            invoice_number=(invoice_number or "").strip()
            or next_invoice_number((item.invoice_number for item in existing), self.invoice_prefix),
            client_name=_require(client_name, "Client"),
            origin=_require(origin, "Origin"),
            destination=_require(destination, "Destination"),
            vehicle_category=vehicle_category,
            distance_km=distance_km,
            driver_fee=quote.driver_fee if driver_fee is None else driver_fee,
            client_charge=quote.client_charge if client_charge is None else client_charge,
            status=INITIAL_STATUS,
            scheduled_for=scheduled_for,
            driver_id=driver_id or None,
            activity_type=activity_type,
            contact_on_site=contact_on_site,
            observations=observations,
            waypoints=[stop.strip() for stop in waypoints if stop.strip()],
        )
        self._track(self._requests.add(request))
        logger.info("request_created", request_id=request.id, invoice=request.invoice_number)
        return request

    def edit_request(self, request_id: str, **changes: Any) -> Optional[TransportRequest]:
        """Apply an edit; fees are recomputed only when category or distance changed.

        Explicit ``driver_fee`` / ``client_charge`` values are operator
        overrides and always win. Returns ``None`` when the request is gone.
        """

        unknown = set(changes) - _EDITABLE_REQUEST_FIELDS
        if unknown:
            raise ValidationError(f"Unknown request fields: {', '.join(sorted(unknown))}")
        previous = self.get_request(request_id)
        if previous is None:
            logger.info("request_missing", request_id=request_id)
            return None

        category = changes.get("vehicle_category", previous.vehicle_category)
        distance = changes.get("distance_km", previous.distance_km)
        quote = reprice_on_edit(previous, category, distance, self.rate_table())
        changes.setdefault("driver_fee", quote.driver_fee)
        changes.setdefault("client_charge", quote.client_charge)
        updated = replace(previous, **changes)
        self._track(self._requests.update(updated))
        return updated

    def update_request_status(
        self, request_id: str, status: RequestStatus | str
    ) -> Optional[TransportRequest]:
        request = self.get_request(request_id)
        if request is None:
            return None
        updated = replace(request, status=RequestStatus(status))
        self._track(self._requests.update(updated))
        logger.info("request_status_changed", request_id=request_id, status=updated.status.value)
        return updated

    def advance_request(self, request_id: str) -> Optional[TransportRequest]:
        request = self.get_request(request_id)
        if request is None:
            return None
        following = next_status(request.status)
        if following is None:
            return request
        return self.update_request_status(request_id, following)

    def record_payment(self, request_id: str, payment_date: Optional[str]) -> Optional[TransportRequest]:
        """Mark a request as paid on ``payment_date``; ``None`` clears the payment."""

        request = self.get_request(request_id)
        if request is None:
            return None
        updated = replace(request, payment_date=payment_date or None)
        self._track(self._requests.update(updated))
        return updated

    def delete_request(self, request_id: str) -> None:
        self._track(self._requests.delete(request_id))

    # Drivers & clients ---------------------------------------------------
    def drivers(self) -> list[Driver]:
        return self._drivers.all()

    def register_driver(
        self,
        *,
        name: str,
        tax_id: str,
        address: str,
        phone: str,
        vehicle_category: str,
        plate: Optional[str] = None,
        model: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Driver:
        if vehicle_category not in self.rate_table():
            raise ValidationError(f"Unknown vehicle category '{vehicle_category}'.")
        driver = Driver(
            name=_require(name, "Name"),
            tax_id=_require(tax_id, "Tax id"),
            address=address.strip(),
            phone=phone.strip(),
            vehicle_category=vehicle_category,
            plate=plate,
            model=model,
            color=color,
        )
        self._track(self._drivers.add(driver))
        return driver

    def update_driver(self, driver: Driver) -> Driver:
        _require(driver.name, "Name")
        self._track(self._drivers.update(driver))
        return driver

    def delete_driver(self, driver_id: str) -> None:
        """Remove a driver; requests and expenses referencing it are kept."""

        self._track(self._drivers.delete(driver_id))

    def drivers_for_category(self, vehicle_category: str) -> list[Driver]:
        return [driver for driver in self.drivers() if driver.vehicle_category == vehicle_category]

    def driver_name(self, driver_id: Optional[str], drivers: Optional[Sequence[Driver]] = None) -> str:
        if not driver_id:
            return driver_label(None, {})
        roster = drivers if drivers is not None else self.drivers()
        return driver_label(driver_id, {driver.id: driver.name for driver in roster})

    def clients(self) -> list[Client]:
        return self._clients.all()

    def register_client(
        self,
        *,
        name: str,
        tax_id: str,
        address: str,
        cost_center: str = "",
        contact_name: str = "",
        contact_phone: str = "",
        contact_email: str = "",
        payment_day: int = 10,
    ) -> Client:
        if not 1 <= int(payment_day) <= 31:
            raise ValidationError("Payment day must be between 1 and 31.")
        client = Client(
            name=_require(name, "Name"),
            tax_id=_require(tax_id, "Tax id"),
            address=address.strip(),
            cost_center=cost_center,
            contact_name=contact_name,
            contact_phone=contact_phone,
            contact_email=contact_email,
            payment_day=payment_day,
        )
        self._track(self._clients.add(client))
        return client

    def update_client(self, client: Client) -> Client:
        _require(client.name, "Name")
        self._track(self._clients.update(client))
        return client

    def delete_client(self, client_id: str) -> None:
        self._track(self._clients.delete(client_id))

    # Payroll -------------------------------------------------------------
    def expenses(self) -> list[DriverExpense]:
        return self._expenses.all()

    def payees(self) -> list[PayeeOption]:
        return list_payees(self.drivers(), self.contracts())

    def add_expense(
        self,
        payee: PayeeRef,
        expense_type: ExpenseType,
        amount: float,
        expense_date: Optional[str] = None,
        description: Optional[str] = None,
    ) -> DriverExpense:
        if float(amount) < 0:
            raise ValidationError("Expense amount must not be negative.")
        if payee.kind == PayeeKind.DRIVER:
            known = any(driver.id == payee.id for driver in self.drivers())
        else:
            known = find_staff(payee.id, self.contracts()) is not None
        if not known:
            raise ValidationError(f"Unknown {payee.kind.value.lower()} '{payee.id}'.")
        expense = DriverExpense(
            payee=payee,
            type=expense_type,
            amount=amount,
            date=expense_date or date.today().isoformat(),
            description=description or None,
        )
        self._track(self._expenses.add(expense))
        return expense

    def payroll(self, payee: PayeeRef) -> PayrollSummary:
        return payee_summary(payee, self.requests(), self.expenses(), self.contracts())

    def payroll_statement(
        self, payee: PayeeRef, period_date: Optional[date] = None
    ) -> list[StatementLine]:
        return statement_lines(
            payee, self.requests(), self.expenses(), self.contracts(), period_date=period_date
        )

    def export_payroll_csv(self, payee: PayeeRef, output_path: Path | str) -> Path:
        from .utils.csv_exporter import export_payroll_csv

        drivers = self.drivers()
        contracts = self.contracts()
        if payee.kind == PayeeKind.DRIVER:
            driver = next((item for item in drivers if item.id == payee.id), None)
            if driver is None:
                raise ValidationError(f"Unknown driver '{payee.id}'.")
            name, tax_id = driver.name, driver.tax_id
        else:
            member = find_staff(payee.id, contracts)
            if member is None:
                raise ValidationError(f"Unknown staff member '{payee.id}'.")
            name, tax_id = member.employee_name, ""
        return export_payroll_csv(
            output_path,
            payee_name=name,
            tax_id=tax_id,
            lines=self.payroll_statement(payee),
            summary=self.payroll(payee),
        )

    # Fixed contracts -----------------------------------------------------
    def contracts(self) -> list[FixedContract]:
        return self._contracts.all()

    def get_contract(self, contract_id: str) -> Optional[FixedContract]:
        return self._contracts.get(contract_id)

    def create_contract(
        self,
        *,
        client_name: str,
        contract_value: float,
        invoice_day: int = 10,
        staff: Iterable[StaffExpense] = (),
    ) -> FixedContract:
        if float(contract_value) < 0:
            raise ValidationError("Contract value must not be negative.")
        contract = FixedContract(
            client_name=_require(client_name, "Client"),
            contract_value=contract_value,
            invoice_day=invoice_day,
            staff=[StaffExpense.from_record(member.to_record()) for member in staff],
        )
        self._track(self._contracts.add(contract))
        return contract

    def update_contract(self, contract: FixedContract) -> FixedContract:
        self._track(self._contracts.update(contract))
        return contract

    def delete_contract(self, contract_id: str) -> None:
        self._track(self._contracts.delete(contract_id))

    def add_staff(self, contract_id: str, member: StaffExpense) -> FixedContract:
        contract = self.get_contract(contract_id)
        if contract is None:
            raise ValidationError(f"Unknown contract '{contract_id}'.")
        _require(member.employee_name, "Employee name")
        updated = replace(contract, staff=[*contract.staff, member])
        return self.update_contract(updated)

    def remove_staff(self, contract_id: str, staff_id: str) -> FixedContract:
        contract = self.get_contract(contract_id)
        if contract is None:
            raise ValidationError(f"Unknown contract '{contract_id}'.")
        updated = replace(contract, staff=[member for member in contract.staff if member.id != staff_id])
        return self.update_contract(updated)

    def portfolio(self) -> PortfolioSummary:
        return portfolio_summary(self.contracts())

    # Cash flow -----------------------------------------------------------
    def transactions(self) -> list[FinancialTransaction]:
        return self._transactions.all()

    def add_transaction(
        self,
        *,
        transaction_type: TransactionType,
        category: FinancialCategory,
        description: str,
        value: float,
        transaction_date: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.REALIZED,
        payment_method: PaymentMethod = PaymentMethod.PIX,
    ) -> FinancialTransaction:
        if float(value) < 0:
            raise ValidationError("Transaction value must not be negative.")
        transaction = FinancialTransaction(
            date=transaction_date or date.today().isoformat(),
            type=transaction_type,
            category=category,
            description=description.strip(),
            value=value,
            status=status,
            payment_method=payment_method,
        )
        self._track(self._transactions.add(transaction))
        return transaction

    def update_transaction(self, transaction: FinancialTransaction) -> FinancialTransaction:
        self._track(self._transactions.update(transaction))
        return transaction

    def toggle_transaction_status(self, transaction_id: str) -> Optional[FinancialTransaction]:
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            return None
        flipped = (
            TransactionStatus.REALIZED
            if transaction.status == TransactionStatus.PROJECTED
            else TransactionStatus.PROJECTED
        )
        return self.update_transaction(replace(transaction, status=flipped))

    def delete_transaction(self, transaction_id: str) -> None:
        self._track(self._transactions.delete(transaction_id))

    def cash_flow(self, month: int, year: int) -> CashFlowStats:
        return cash_flow_stats(self.transactions(), month, year)

    # Reports -------------------------------------------------------------
    def report(self, report_filter: Optional[ReportFilter] = None) -> tuple[list[TransportRequest], ReportTotals]:
        selected = filter_requests(self.requests(), report_filter or ReportFilter.current_month())
        return selected, report_totals(selected)

    def export_report_pdf(
        self, output_path: Path | str, report_filter: Optional[ReportFilter] = None
    ) -> Path:
        from .utils.pdf_exporter import export_report_pdf

        report_filter = report_filter or ReportFilter.current_month()
        selected, totals = self.report(report_filter)
        return export_report_pdf(
            output_path,
            selected,
            totals,
            period_start=report_filter.start,
            period_end=report_filter.end,
            driver_names={driver.id: driver.name for driver in self.drivers()},
        )

    def dashboard(self, user: User, now: Optional[datetime] = None) -> DashboardStats:
        return dashboard_stats(user, self.requests(), now)

    # Users ---------------------------------------------------------------
    def users(self) -> list[User]:
        if not self.gateway.local.has(USERS.storage_key):
            self.gateway.seed(USERS, [user.to_record() for user in self._default_users()])
        return self._users.all()

    @staticmethod
    def _default_users() -> list[User]:
        return [
            User(
                id=user_id,
                username=username,
                password_hash=hash_password(password),
                role=role,
                name=name,
                must_change_password=must_change,
                client_id=client_id,
            )
            for user_id, username, password, role, name, must_change, client_id in _DEFAULT_USERS
        ]

    def _ensure_unique_username(self, username: str, exclude_id: Optional[str] = None) -> None:
        wanted = username.strip().lower()
        for user in self.users():
            if user.username.lower() == wanted and user.id != exclude_id:
                raise DuplicateUsernameError(username)

    def add_user(
        self,
        *,
        username: str,
        password: str,
        name: str,
        role: UserRole,
        client_id: Optional[str] = None,
        must_change_password: bool = True,
    ) -> User:
        username = _require(username, "Username")
        _require(password, "Password")
        self._ensure_unique_username(username)
        user = User(
            username=username,
            name=_require(name, "Name"),
            role=role,
            password_hash=hash_password(password),
            client_id=client_id if UserRole(role) == UserRole.CLIENT else None,
            must_change_password=must_change_password,
        )
        self._track(self._users.add(user))
        logger.info("user_created", user_id=user.id, role=user.role.value)
        return user

    def update_user(self, user: User) -> User:
        self._ensure_unique_username(_require(user.username, "Username"), exclude_id=user.id)
        self._track(self._users.update(user))
        return user

    def delete_user(self, user_id: str) -> None:
        target = next((user for user in self.users() if user.id == user_id), None)
        if target is not None and target.username.lower() == PROTECTED_USERNAME:
            raise ProtectedAccountError("The default administrator account cannot be deleted.")
        self._track(self._users.delete(user_id))

    def authenticate(self, username: str, password: str) -> Optional[User]:
        wanted = username.strip().lower()
        for user in self.users():
            if user.username.lower() == wanted and verify_password(password, user.password_hash):
                return user
        return None

    def change_password(self, user_id: str, new_password: str) -> Optional[User]:
        _require(new_password, "Password")
        user = next((item for item in self.users() if item.id == user_id), None)
        if user is None:
            return None
        updated = replace(user, password_hash=hash_password(new_password), must_change_password=False)
        self._track(self._users.update(updated))
        return updated


__all__ = ["LogisticsService", "Snapshot", "SyncNotice", "hash_password", "verify_password"]
