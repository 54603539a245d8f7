"""Rate table and the pricing formulas derived from it.

The same tax model (8% of revenue) backs per-request profit, the management
report and fixed-contract margins, so every caller goes through
``compute_margin`` / ``net_after_tax`` rather than repeating the arithmetic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Optional

import structlog

from .errors import InvalidRateError, MissingRateError
from .models import RateEntry, TransportRequest, VehicleCategory

logger = structlog.get_logger(__name__)

TAX_RATE = 0.08

DEFAULT_RATES: tuple[RateEntry, ...] = (
    RateEntry(VehicleCategory.MOTO, "Motoboy", base_fee=5.00, cost_per_km=1.50, charge_per_km=2.50),
    RateEntry(VehicleCategory.CARRO, "Carro", base_fee=8.00, cost_per_km=2.50, charge_per_km=4.00),
    RateEntry(
        VehicleCategory.UTILITARIO, "Utilitário", base_fee=15.00, cost_per_km=4.00, charge_per_km=6.50
    ),
    RateEntry(
        VehicleCategory.CAMINHAO, "Caminhão", base_fee=50.00, cost_per_km=8.00, charge_per_km=12.00
    ),
)


@dataclass(frozen=True)
class FeeQuote:
    driver_fee: float
    client_charge: float

    @property
    def gross_margin(self) -> float:
        return round(self.client_charge - self.driver_fee, 2)


@dataclass(frozen=True)
class Margin:
    tax: float
    net_profit: float


def validate_rate(entry: RateEntry) -> RateEntry:
    for name in ("base_fee", "cost_per_km", "charge_per_km"):
        if getattr(entry, name) < 0:
            raise InvalidRateError(
                f"Rate '{entry.category}' has a negative {name.replace('_', ' ')}."
            )
    return entry


class RateTable:
    """Mutable mapping from vehicle category to its pricing parameters."""

    def __init__(self, entries: Iterable[RateEntry] = ()) -> None:
        self._entries: dict[str, RateEntry] = {}
        for entry in entries:
            validate_rate(entry)
            self._entries[entry.category] = entry

    @classmethod
    def default(cls) -> "RateTable":
        return cls(RateEntry.from_record(entry.to_record()) for entry in DEFAULT_RATES)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "RateTable":
        return cls(RateEntry.from_record(record) for record in records)

    def to_records(self) -> list[dict[str, Any]]:
        return [entry.to_record() for entry in self._entries.values()]

    def __contains__(self, category: object) -> bool:
        return str(getattr(category, "value", category)) in self._entries

    def __iter__(self) -> Iterator[RateEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, category: str) -> RateEntry:
        key = str(getattr(category, "value", category))
        try:
            return self._entries[key]
        except KeyError:
            raise MissingRateError(key) from None

    def update(self, entry: RateEntry) -> RateEntry:
        """Replace the entry for ``entry.category``; unknown categories are rejected."""

        validate_rate(entry)
        if entry.category not in self._entries:
            raise MissingRateError(entry.category)
        self._entries[entry.category] = entry
        logger.info(
            "rate_updated",
            category=entry.category,
            base_fee=entry.base_fee,
            cost_per_km=entry.cost_per_km,
            charge_per_km=entry.charge_per_km,
        )
        return entry

    def example_charge(self, category: str, distance_km: float = 10.0) -> float:
        """Client charge for a sample trip, shown next to the rate editor."""
        return compute_fees(category, distance_km, self).client_charge


def compute_fees(category: str, distance_km: float, rate_table: RateTable) -> FeeQuote:
    """Driver fee and client charge for a trip of ``distance_km`` kilometres.

    A zero distance means the route has not been estimated yet; both values
    then fall back to the base fee as a minimum fare.
    """

    rate = rate_table.get(category)
    distance = float(distance_km or 0.0)
    if distance < 0:
        raise ValueError("distance_km must not be negative")
    if distance == 0:
        return FeeQuote(driver_fee=round(rate.base_fee, 2), client_charge=round(rate.base_fee, 2))
    return FeeQuote(
        driver_fee=round(rate.base_fee + distance * rate.cost_per_km, 2),
        client_charge=round(rate.base_fee + distance * rate.charge_per_km, 2),
    )


def compute_margin(client_charge: float, driver_fee: float, tax_rate: float = TAX_RATE) -> Margin:
    tax = round(float(client_charge) * tax_rate, 2)
    net_profit = round(float(client_charge) - float(driver_fee) - tax, 2)
    return Margin(tax=tax, net_profit=net_profit)


def net_after_tax(revenue: float, costs: float, tax_rate: float = TAX_RATE) -> Margin:
    """Tax and net result for a revenue figure against an aggregate cost."""
    return compute_margin(revenue, costs, tax_rate)


def reprice_on_edit(
    previous: Optional[TransportRequest],
    category: str,
    distance_km: float,
    rate_table: RateTable,
) -> FeeQuote:
    """Fees for a request being created or edited.

    Stored fees (possibly overridden by an operator) are kept unless the
    vehicle category or the distance actually changed.
    """

    if previous is not None:
        same_category = str(getattr(category, "value", category)) == previous.vehicle_category
        same_distance = round(float(distance_km or 0.0), 3) == round(previous.distance_km, 3)
        if same_category and same_distance:
            return FeeQuote(driver_fee=previous.driver_fee, client_charge=previous.client_charge)
    return compute_fees(category, distance_km, rate_table)


__all__ = [
    "DEFAULT_RATES",
    "FeeQuote",
    "Margin",
    "RateTable",
    "TAX_RATE",
    "compute_fees",
    "compute_margin",
    "net_after_tax",
    "reprice_on_edit",
    "validate_rate",
]
