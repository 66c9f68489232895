# Overview: Append-only sale status history.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..models import SaleStatusEvent
from ..repositories import sales
from orderdesk.time_utils import utcnow

"""
Sale History Invariants

- One event per sale creation (from_status is None) and per transition.
- Events are written inside the same DB transaction as the change they record.
- No updates or deletes of existing events.
"""


def append_status_event(
    *,
    sale_id: int,
    action: str,
    from_status: Optional[str],
    to_status: str,
    actor_user_id: int | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> SaleStatusEvent:
    return sales.add_event(SaleStatusEvent(
        sale_id=sale_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        note=note[:255] if note else None,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
    ))


def get_sale_history(sale_id: int) -> list[SaleStatusEvent]:
    sales.require(sale_id)
    return sales.list_events(sale_id)
