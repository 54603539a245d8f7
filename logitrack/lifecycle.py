"""Transport request status flow and invoice numbering."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import RequestStatus, TransportRequest, parse_timestamp

INITIAL_STATUS = RequestStatus.PENDING

_FORWARD: dict[RequestStatus, Optional[RequestStatus]] = {
    RequestStatus.PENDING: RequestStatus.IN_PROGRESS,
    RequestStatus.IN_PROGRESS: RequestStatus.COMPLETED,
    RequestStatus.COMPLETED: None,
}


def next_status(status: RequestStatus | str) -> Optional[RequestStatus]:
    """Forward transition offered for ``status``; ``None`` once completed.

    Operators may still set any status directly; this only drives the
    one-click "advance" action.
    """
    return _FORWARD[RequestStatus(status)]


def is_delayed(request: TransportRequest, now: Optional[datetime] = None) -> bool:
    if request.status == RequestStatus.COMPLETED:
        return False
    scheduled = parse_timestamp(request.scheduled_for)
    if scheduled is None:
        return False
    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return scheduled < reference


def next_invoice_number(existing: Iterable[str], prefix: str = "IBEC - ") -> str:
    highest = 0
    for invoice in existing:
        if not invoice or not invoice.startswith(prefix):
            continue
        try:
            number = int(invoice[len(prefix):])
        except ValueError:
            continue
        highest = max(highest, number)
    return f"{prefix}{highest + 1:03d}"


__all__ = ["INITIAL_STATUS", "is_delayed", "next_invoice_number", "next_status"]
