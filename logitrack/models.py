"""Domain records for LogiTrack.

Every entity is a plain dataclass that knows how to turn itself into the JSON
object stored under its collection key (``to_record``) and how to rebuild
itself from one (``from_record``). Records use snake_case keys; unknown keys
coming back from the remote store are ignored so a wider remote schema never
breaks hydration.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar


class VehicleCategory(str, Enum):
    MOTO = "MOTO"
    CARRO = "CARRO"
    UTILITARIO = "UTILITARIO"
    CAMINHAO = "CAMINHAO"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ActivityType(str, Enum):
    COLLECT = "COLLECT"
    DELIVER = "DELIVER"
    COLLECT_DELIVER = "COLLECT_DELIVER"
    OTHER = "OTHER"


class ExpenseType(str, Enum):
    FUEL = "FUEL"
    ADVANCE = "ADVANCE"
    TOLL = "TOLL"
    OTHER = "OTHER"


class TransactionType(str, Enum):
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"


class TransactionStatus(str, Enum):
    REALIZED = "REALIZED"
    PROJECTED = "PROJECTED"


class FinancialCategory(str, Enum):
    CONTRACT_REVENUE = "CONTRACT_REVENUE"
    FREIGHT_REVENUE = "FREIGHT_REVENUE"
    PAYROLL = "PAYROLL"
    FUEL = "FUEL"
    MAINTENANCE = "MAINTENANCE"
    TAXES = "TAXES"
    RENT = "RENT"
    OTHER = "OTHER"


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    BOLETO = "BOLETO"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    OPERATIONAL = "OPERATIONAL"
    CLIENT = "CLIENT"


class PayeeKind(str, Enum):
    DRIVER = "DRIVER"
    STAFF = "STAFF"


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (date or datetime) into an aware UTC datetime."""

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _money(value: Any) -> float:
    return round(float(value or 0.0), 2)


RecordT = TypeVar("RecordT", bound="Record")


class Record:
    """Mixin providing dict conversion for flat dataclasses."""

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for item in fields(self):  # type: ignore[arg-type]
            value = getattr(self, item.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = list(value)
            record[item.name] = value
        return record

    @classmethod
    def from_record(cls: type[RecordT], record: Mapping[str, Any]) -> RecordT:
        known = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in record.items() if key in known})


@dataclass
class RateEntry(Record):
    category: str
    label: str
    base_fee: float
    cost_per_km: float
    charge_per_km: float

    def __post_init__(self) -> None:
        if isinstance(self.category, Enum):
            self.category = self.category.value
        self.base_fee = float(self.base_fee)
        self.cost_per_km = float(self.cost_per_km)
        self.charge_per_km = float(self.charge_per_km)


@dataclass
class Driver(Record):
    name: str
    tax_id: str
    address: str
    phone: str
    vehicle_category: str
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)
    plate: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.vehicle_category, Enum):
            self.vehicle_category = self.vehicle_category.value


UNASSIGNED_DRIVER = "Awaiting assignment"
UNKNOWN_DRIVER = "Unknown"


def driver_label(driver_id: Optional[str], names: Mapping[str, str]) -> str:
    """Name shown for a request's driver; deleted drivers stay visible as orphans."""

    if not driver_id:
        return UNASSIGNED_DRIVER
    return names.get(driver_id, UNKNOWN_DRIVER)


@dataclass
class Client(Record):
    name: str
    tax_id: str
    address: str
    cost_center: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""
    payment_day: int = 10
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.payment_day = int(self.payment_day or 0)


@dataclass
class TransportRequest(Record):
    invoice_number: str
    client_name: str
    origin: str
    destination: str
    vehicle_category: str
    distance_km: float
    driver_fee: float
    client_charge: float
    status: RequestStatus = RequestStatus.PENDING
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)
    scheduled_for: Optional[str] = None
    driver_id: Optional[str] = None
    activity_type: Optional[ActivityType] = None
    contact_on_site: Optional[str] = None
    observations: Optional[str] = None
    payment_date: Optional[str] = None
    waypoints: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.vehicle_category, Enum):
            self.vehicle_category = self.vehicle_category.value
        self.status = RequestStatus(self.status)
        if self.activity_type is not None:
            self.activity_type = ActivityType(self.activity_type)
        self.distance_km = float(self.distance_km or 0.0)
        self.driver_fee = _money(self.driver_fee)
        self.client_charge = _money(self.client_charge)
        self.waypoints = list(self.waypoints or [])

    @property
    def service_date(self) -> Optional[datetime]:
        """Scheduled date when present, otherwise the creation date."""
        return parse_timestamp(self.scheduled_for) or parse_timestamp(self.created_at)


@dataclass
class StaffExpense(Record):
    employee_name: str
    salary: float
    role: str = ""
    department: str = ""
    meal_allowance: Optional[float] = None
    transport_allowance: Optional[float] = None
    hazard_allowance: Optional[float] = None
    vehicle_rental_allowance: Optional[float] = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.salary = _money(self.salary)
        if not self.role:
            self.role = self.department or "Staff"


@dataclass
class FixedContract(Record):
    client_name: str
    contract_value: float
    invoice_day: int = 10
    staff: list[StaffExpense] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.contract_value = _money(self.contract_value)
        self.invoice_day = int(self.invoice_day or 10)
        self.staff = [
            member if isinstance(member, StaffExpense) else StaffExpense.from_record(member)
            for member in (self.staff or [])
        ]

    def to_record(self) -> dict[str, Any]:
        record = super().to_record()
        record["staff"] = [member.to_record() for member in self.staff]
        return record


@dataclass(frozen=True)
class PayeeRef:
    """Tagged reference to whoever accrues payroll: a driver or a staff member."""

    kind: PayeeKind
    id: str

    @classmethod
    def driver(cls, driver_id: str) -> "PayeeRef":
        return cls(PayeeKind.DRIVER, driver_id)

    @classmethod
    def staff(cls, staff_id: str) -> "PayeeRef":
        return cls(PayeeKind.STAFF, staff_id)


@dataclass
class DriverExpense(Record):
    payee: PayeeRef
    type: ExpenseType
    amount: float
    date: str
    description: Optional[str] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.type = ExpenseType(self.type)
        self.amount = _money(self.amount)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payee_kind": self.payee.kind.value,
            "payee_id": self.payee.id,
            "type": self.type.value,
            "amount": self.amount,
            "date": self.date,
            "description": self.description,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "DriverExpense":
        # Records written before payees were tagged only carry a driver id.
        payee_id = record.get("payee_id") or record.get("driver_id") or ""
        kind = PayeeKind(record.get("payee_kind") or PayeeKind.DRIVER)
        return cls(
            payee=PayeeRef(kind, str(payee_id)),
            type=record.get("type", ExpenseType.OTHER),
            amount=record.get("amount", 0.0),
            date=str(record.get("date", "")),
            description=record.get("description"),
            id=str(record.get("id") or new_id()),
        )


@dataclass
class FinancialTransaction(Record):
    date: str
    type: TransactionType
    category: FinancialCategory
    description: str
    value: float
    status: TransactionStatus = TransactionStatus.REALIZED
    payment_method: PaymentMethod = PaymentMethod.PIX
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.type = TransactionType(self.type)
        self.category = FinancialCategory(self.category)
        self.status = TransactionStatus(self.status)
        self.payment_method = PaymentMethod(self.payment_method)
        self.value = _money(self.value)


@dataclass
class User(Record):
    username: str
    name: str
    role: UserRole
    password_hash: str = ""
    client_id: Optional[str] = None
    must_change_password: bool = True
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.role = UserRole(self.role)
        self.must_change_password = bool(self.must_change_password)


__all__ = [
    "ActivityType",
    "Client",
    "Driver",
    "DriverExpense",
    "ExpenseType",
    "FinancialCategory",
    "FinancialTransaction",
    "FixedContract",
    "PayeeKind",
    "PayeeRef",
    "PaymentMethod",
    "RateEntry",
    "Record",
    "RequestStatus",
    "StaffExpense",
    "TransactionStatus",
    "TransactionType",
    "TransportRequest",
    "User",
    "UNASSIGNED_DRIVER",
    "UNKNOWN_DRIVER",
    "UserRole",
    "VehicleCategory",
    "driver_label",
    "new_id",
    "parse_timestamp",
    "utc_now_iso",
]
