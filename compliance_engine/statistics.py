"""
Portfolio statistics over monitored obligations.

Built on a pandas frame of monitoring items so the same data can feed
dashboards or ad-hoc analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Iterable, Optional

import pandas as pd

if TYPE_CHECKING:
    from compliance_engine.monitor import ComplianceMonitoringItem

ITEM_COLUMNS = [
    "id",
    "client_id",
    "tax_year",
    "tax_type",
    "status",
    "due_date",
    "amount",
    "estimated_penalty",
    "is_overdue",
    "days_overdue",
    "created_on",
]


@dataclass(frozen=True)
class ComplianceStatistics:
    total_items: int = 0
    filed_count: int = 0
    paid_count: int = 0
    overdue_count: int = 0
    pending_count: int = 0
    total_penalties: Decimal = Decimal("0")
    average_days_overdue: int = 0
    compliance_rate: Decimal = Decimal("0")  # percent
    by_tax_type: dict[str, int] = field(default_factory=dict)


def items_frame(items: Iterable["ComplianceMonitoringItem"]) -> pd.DataFrame:
    """One row per monitoring item; money stays ``Decimal`` in object columns."""
    rows = [
        {
            "id": i.id,
            "client_id": i.client_id,
            "tax_year": i.tax_year,
            "tax_type": i.tax_type.value,
            "status": i.status.value,
            "due_date": pd.Timestamp(i.due_date),
            "amount": i.amount,
            "estimated_penalty": i.estimated_penalty or Decimal("0"),
            "is_overdue": i.is_overdue,
            "days_overdue": i.days_overdue,
            "created_on": pd.Timestamp(i.created_on),
        }
        for i in items
    ]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def compliance_statistics(
    items: Iterable["ComplianceMonitoringItem"],
    client_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> ComplianceStatistics:
    """
    Summarise monitored items, optionally for one client and a creation window.

    Compliance rate is (filed + paid) / total x 100; an empty selection
    reports zero throughout.
    """
    df = items_frame(items)
    if client_id is not None:
        df = df[df["client_id"] == client_id]
    if start is not None:
        df = df[df["created_on"] >= pd.Timestamp(start)]
    if end is not None:
        df = df[df["created_on"] <= pd.Timestamp(end)]

    if df.empty:
        return ComplianceStatistics()

    counts = df["status"].value_counts()
    filed = int(counts.get("Filed", 0))
    paid = int(counts.get("Paid", 0))
    total = len(df)

    overdue = df[df["is_overdue"]]
    avg_overdue = int(overdue["days_overdue"].mean()) if not overdue.empty else 0

    penalties = sum(df["estimated_penalty"], Decimal("0"))
    rate = (Decimal(filed + paid) / Decimal(total) * 100).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )

    return ComplianceStatistics(
        total_items=total,
        filed_count=filed,
        paid_count=paid,
        overdue_count=len(overdue),
        pending_count=int(counts.get("Pending", 0)),
        total_penalties=penalties,
        average_days_overdue=avg_overdue,
        compliance_rate=rate,
        by_tax_type={k: int(v) for k, v in df.groupby("tax_type").size().items()},
    )
