"""Tests for portfolio statistics over monitored items."""

from datetime import date
from decimal import Decimal

import pytest

from compliance_engine.monitor import (
    ComplianceMonitoringItem,
    DeadlineMonitor,
    MonitoringStatus,
)
from compliance_engine.rates import TaxType
from compliance_engine.statistics import ITEM_COLUMNS, compliance_statistics, items_frame


def _item(status, client="CL-001", tax_type=TaxType.GST, days_overdue=0, penalty=None, created=date(2026, 1, 5)):
    return ComplianceMonitoringItem(
        client_id=client,
        tax_year=2025,
        tax_type=tax_type,
        due_date=date(2026, 1, 31),
        amount=Decimal("10000"),
        status=status,
        is_overdue=status == MonitoringStatus.OVERDUE,
        days_overdue=days_overdue,
        estimated_penalty=penalty,
        created_on=created,
    )


@pytest.fixture
def items():
    return [
        _item(MonitoringStatus.FILED, tax_type=TaxType.INCOME_TAX),
        _item(MonitoringStatus.PAID),
        _item(MonitoringStatus.OVERDUE, days_overdue=5, penalty=Decimal("200")),
        _item(MonitoringStatus.OVERDUE, tax_type=TaxType.PAYROLL_TAX, days_overdue=15, penalty=Decimal("300")),
        _item(MonitoringStatus.PENDING, client="CL-002", created=date(2026, 2, 20)),
    ]


def test_frame_has_one_row_per_item(items):
    df = items_frame(items)
    assert list(df.columns) == ITEM_COLUMNS
    assert len(df) == 5
    assert df.loc[0, "status"] == "Filed"


def test_empty_frame_keeps_columns():
    df = items_frame([])
    assert df.empty
    assert list(df.columns) == ITEM_COLUMNS


def test_client_statistics(items):
    stats = compliance_statistics(items, client_id="CL-001")
    assert stats.total_items == 4
    assert stats.filed_count == 1
    assert stats.paid_count == 1
    assert stats.overdue_count == 2
    assert stats.pending_count == 0
    assert stats.total_penalties == Decimal("500")
    assert stats.average_days_overdue == 10
    assert stats.compliance_rate == Decimal("50.00")
    assert stats.by_tax_type == {"GST": 2, "Income Tax": 1, "Payroll Tax": 1}


def test_all_clients(items):
    stats = compliance_statistics(items)
    assert stats.total_items == 5
    assert stats.pending_count == 1
    assert stats.compliance_rate == Decimal("40.00")


def test_creation_window(items):
    stats = compliance_statistics(items, start=date(2026, 2, 1), end=date(2026, 2, 28))
    assert stats.total_items == 1
    assert stats.compliance_rate == Decimal("0.00")
    assert stats.average_days_overdue == 0


def test_empty_selection_reports_zero(items):
    stats = compliance_statistics(items, client_id="CL-404")
    assert stats.total_items == 0
    assert stats.compliance_rate == Decimal("0")
    assert stats.total_penalties == Decimal("0")
    assert stats.by_tax_type == {}


def test_monitor_statistics():
    monitor = DeadlineMonitor()
    first = monitor.register("CL-9", 2025, TaxType.GST, date(2026, 5, 15), Decimal("5000"))
    monitor.register("CL-9", 2025, TaxType.INCOME_TAX, date(2026, 3, 31), Decimal("8000"))
    monitor.mark_as_paid(first.id)

    stats = monitor.statistics(client_id="CL-9")
    assert stats.total_items == 2
    assert stats.paid_count == 1
    assert stats.compliance_rate == Decimal("50.00")
