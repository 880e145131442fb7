"""
Deadline monitoring state machine.

Each monitored obligation moves Pending -> Overdue -> Filed | Paid.
Filed and Paid are terminal. A monitoring run walks every Pending item,
decides which threshold alerts are due, saves the flag changes at the end
of the batch under an optimistic version check, and only then stores and
dispatches the alerts for items whose save succeeded. Every warning fires
at most once per item.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from compliance_engine.audit import AuditSink, LoggingAuditSink
from compliance_engine.config import EngineSettings
from compliance_engine.errors import ConcurrencyConflict, InvalidTransition, ItemNotFound
from compliance_engine.penalties import PenaltyEngine
from compliance_engine.rates import TaxpayerCategory, TaxType
from compliance_engine.statistics import ComplianceStatistics, compliance_statistics

logger = logging.getLogger(__name__)


class MonitoringStatus(Enum):
    PENDING = "Pending"
    FILED = "Filed"
    PAID = "Paid"
    OVERDUE = "Overdue"


TERMINAL_STATUSES = frozenset({MonitoringStatus.FILED, MonitoringStatus.PAID})


class AlertType(Enum):
    WARNING_30_DAYS = "30DayWarning"
    WARNING_14_DAYS = "14DayWarning"
    WARNING_10_DAYS = "10DayWarning"
    WARNING_7_DAYS = "7DayWarning"
    DAILY_REMINDER_5_DAYS = "DailyReminder5Day"
    DAILY_REMINDER_4_DAYS = "DailyReminder4Day"
    DAILY_REMINDER_3_DAYS = "DailyReminder3Day"
    DAILY_REMINDER_2_DAYS = "DailyReminder2Day"
    DAILY_REMINDER_1_DAY = "DailyReminder1Day"
    WARNING_1_DAY = "1DayWarning"
    OVERDUE = "Overdue"

    @classmethod
    def daily_reminder(cls, days: int) -> "AlertType":
        return cls(f"DailyReminder{days}Day")


class AlertStatus(Enum):
    SENT = "Sent"
    FAILED = "Failed"


DAILY_REMINDER_WINDOW = range(1, 6)


def alert_message(alert_type: AlertType, tax_type: TaxType, due_date: date) -> str:
    """Templated alert text for a tax type and due date."""
    due = due_date.isoformat()
    name = tax_type.value
    if alert_type == AlertType.OVERDUE:
        return f"Your {name} filing is overdue (Due: {due})"
    if alert_type == AlertType.WARNING_1_DAY:
        return f"Your {name} filing is due tomorrow (Due: {due})"
    if alert_type == AlertType.DAILY_REMINDER_1_DAY:
        return f"Daily Reminder: Your {name} filing is due tomorrow (Due: {due})"
    days = int("".join(ch for ch in alert_type.value if ch.isdigit()))
    if alert_type.value.startswith("DailyReminder"):
        return f"Daily Reminder: Your {name} filing is due in {days} days (Due: {due})"
    return f"Your {name} filing is due in {days} days (Due: {due})"


@dataclass
class ComplianceMonitoringItem:
    """One monitored obligation and its alert bookkeeping."""

    client_id: str
    tax_year: int
    tax_type: TaxType
    due_date: date
    amount: Decimal
    recipient: str = ""
    category: Optional[TaxpayerCategory] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: MonitoringStatus = MonitoringStatus.PENDING
    filed_date: Optional[date] = None
    paid_date: Optional[date] = None
    estimated_penalty: Optional[Decimal] = None
    is_overdue: bool = False
    days_overdue: int = 0
    alert_sent_30_days: bool = False
    alert_sent_14_days: bool = False
    alert_sent_10_days: bool = False
    alert_sent_7_days: bool = False
    alert_sent_1_day: bool = False
    alert_sent_overdue: bool = False
    last_daily_reminder_sent: Optional[date] = None
    notes: str = ""
    created_on: date = field(default_factory=date.today)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# (days until due, alert, flag attribute)
_THRESHOLD_ALERTS: tuple[tuple[int, AlertType, str], ...] = (
    (30, AlertType.WARNING_30_DAYS, "alert_sent_30_days"),
    (14, AlertType.WARNING_14_DAYS, "alert_sent_14_days"),
    (10, AlertType.WARNING_10_DAYS, "alert_sent_10_days"),
    (7, AlertType.WARNING_7_DAYS, "alert_sent_7_days"),
)


@dataclass(frozen=True)
class ComplianceMonitoringAlert:
    item_id: str
    alert_type: AlertType
    message: str
    recipient: str
    channel: str
    status: AlertStatus
    sent_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class MonitorRunSummary:
    run_date: date
    items_scanned: int = 0
    alerts: list[ComplianceMonitoringAlert] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    conflicts: list[str] = field(default_factory=list)

    @property
    def alerts_emitted(self) -> int:
        return len(self.alerts)

    @property
    def failed_deliveries(self) -> int:
        return sum(1 for a in self.alerts if a.status == AlertStatus.FAILED)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class MonitoringStore(Protocol):
    def add(self, item: ComplianceMonitoringItem) -> ComplianceMonitoringItem: ...

    def get(self, item_id: str) -> ComplianceMonitoringItem: ...

    def all_items(self) -> list[ComplianceMonitoringItem]: ...

    def pending_items(self) -> list[ComplianceMonitoringItem]: ...

    def save(
        self, item: ComplianceMonitoringItem, expected_version: int
    ) -> ComplianceMonitoringItem: ...

    def add_alert(self, alert: ComplianceMonitoringAlert) -> None: ...

    def alerts_for(self, item_id: str) -> list[ComplianceMonitoringAlert]: ...


class InMemoryMonitoringStore:
    """Process-local store. Reads hand out copies; saves are version-checked."""

    def __init__(self) -> None:
        self._items: dict[str, ComplianceMonitoringItem] = {}
        self._alerts: list[ComplianceMonitoringAlert] = []
        self._lock = threading.Lock()

    def add(self, item: ComplianceMonitoringItem) -> ComplianceMonitoringItem:
        with self._lock:
            self._items[item.id] = replace(item)
        return replace(item)

    def get(self, item_id: str) -> ComplianceMonitoringItem:
        with self._lock:
            try:
                return replace(self._items[item_id])
            except KeyError:
                raise ItemNotFound(f"Compliance monitoring item not found: {item_id}") from None

    def all_items(self) -> list[ComplianceMonitoringItem]:
        with self._lock:
            return [replace(i) for i in self._items.values()]

    def pending_items(self) -> list[ComplianceMonitoringItem]:
        with self._lock:
            return [
                replace(i)
                for i in self._items.values()
                if i.status == MonitoringStatus.PENDING
            ]

    def save(
        self, item: ComplianceMonitoringItem, expected_version: int
    ) -> ComplianceMonitoringItem:
        with self._lock:
            current = self._items.get(item.id)
            if current is None:
                raise ItemNotFound(f"Compliance monitoring item not found: {item.id}")
            if current.version != expected_version:
                raise ConcurrencyConflict(
                    f"Item {item.id} changed since it was read "
                    f"(expected version {expected_version}, found {current.version})"
                )
            stored = replace(item, version=expected_version + 1)
            self._items[item.id] = stored
            return replace(stored)

    def add_alert(self, alert: ComplianceMonitoringAlert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def alerts_for(self, item_id: str) -> list[ComplianceMonitoringAlert]:
        with self._lock:
            return [a for a in self._alerts if a.item_id == item_id]


class Notifier(Protocol):
    def send(self, recipient: str, message: str, channel: str) -> None: ...


class LoggingNotifier:
    """Delivers alerts to the log only."""

    def send(self, recipient: str, message: str, channel: str) -> None:
        logger.info("[%s] to %s: %s", channel, recipient or "<unset>", message)


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class DeadlineMonitor:
    """
    Drives the per-item alert state machine.

    Notification delivery is fire-and-forget: a failed send is logged and
    the alert is stored as Failed, but the "already sent" flag stays set
    and the send is not retried here.
    """

    def __init__(
        self,
        store: Optional[MonitoringStore] = None,
        penalties: Optional[PenaltyEngine] = None,
        notifier: Optional[Notifier] = None,
        audit: Optional[AuditSink] = None,
        settings: Optional[EngineSettings] = None,
        channel: str = "Email",
    ) -> None:
        self.penalties = penalties or PenaltyEngine(settings=settings)
        self.settings = settings or self.penalties.settings
        self.store = store if store is not None else InMemoryMonitoringStore()
        self.notifier = notifier or LoggingNotifier()
        self.audit = audit or LoggingAuditSink()
        self.channel = channel

    def register(
        self,
        client_id: str,
        tax_year: int,
        tax_type: TaxType,
        due_date: date,
        amount: Decimal,
        recipient: str = "",
        category: Optional[TaxpayerCategory] = None,
    ) -> ComplianceMonitoringItem:
        item = self.store.add(
            ComplianceMonitoringItem(
                client_id=client_id,
                tax_year=tax_year,
                tax_type=tax_type,
                due_date=due_date,
                amount=amount,
                recipient=recipient,
                category=category,
            )
        )
        logger.info(
            "Monitoring %s %s for client %s, due %s",
            tax_type.value,
            tax_year,
            client_id,
            due_date.isoformat(),
        )
        return item

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, today: Optional[date] = None) -> MonitorRunSummary:
        """Scan every Pending item once and emit the alerts now due."""
        today = today or date.today()
        summary = MonitorRunSummary(run_date=today)
        planned: list[tuple[ComplianceMonitoringItem, int, list[AlertType]]] = []

        for item in self.store.pending_items():
            summary.items_scanned += 1
            try:
                working = replace(item)
                alerts = self._evaluate(working, today)
            except Exception as exc:
                logger.exception("Monitoring failed for item %s", item.id)
                summary.errors[item.id] = str(exc)
                continue
            if working != item:
                planned.append((working, item.version, alerts))

        for working, version, alerts in planned:
            try:
                saved = self.store.save(working, version)
            except ConcurrencyConflict as exc:
                logger.warning("Skipping alerts for %s: %s", working.id, exc)
                summary.conflicts.append(working.id)
                continue
            except Exception as exc:
                logger.exception("Saving monitoring item %s failed", working.id)
                summary.errors[working.id] = str(exc)
                continue
            for alert_type in alerts:
                summary.alerts.append(self._dispatch(saved, alert_type))

        logger.info(
            "Monitoring run %s: %d items scanned, %d alerts, %d errors, %d conflicts",
            today.isoformat(),
            summary.items_scanned,
            summary.alerts_emitted,
            len(summary.errors),
            len(summary.conflicts),
        )
        return summary

    def _evaluate(self, item: ComplianceMonitoringItem, today: date) -> list[AlertType]:
        """Apply the threshold table to ``item`` in place; return alerts to emit."""
        days_until_due = (item.due_date - today).days
        alerts: list[AlertType] = []

        if days_until_due < 0:
            item.status = MonitoringStatus.OVERDUE
            item.is_overdue = True
            item.days_overdue = -days_until_due
            item.estimated_penalty = self._estimate_penalty(item, today)
            if not item.alert_sent_overdue:
                alerts.append(AlertType.OVERDUE)
                item.alert_sent_overdue = True
            return alerts

        for threshold, alert_type, flag in _THRESHOLD_ALERTS:
            if days_until_due == threshold and not getattr(item, flag):
                alerts.append(alert_type)
                setattr(item, flag, True)

        if days_until_due in DAILY_REMINDER_WINDOW and (
            item.last_daily_reminder_sent is None or item.last_daily_reminder_sent < today
        ):
            alerts.append(AlertType.daily_reminder(days_until_due))
            item.last_daily_reminder_sent = today

        # both this and the 1-day daily reminder fire on the last day
        if days_until_due == 1 and not item.alert_sent_1_day:
            alerts.append(AlertType.WARNING_1_DAY)
            item.alert_sent_1_day = True

        return alerts

    def _estimate_penalty(
        self, item: ComplianceMonitoringItem, today: date
    ) -> Optional[Decimal]:
        result = self.penalties.calculate_late_filing_penalty(
            item.tax_type, item.amount, item.due_date, today, item.category
        )
        if not result.is_success:
            logger.warning(
                "Cannot estimate penalty for item %s: %s", item.id, result.message
            )
            return item.estimated_penalty
        return result.value.amount

    def _dispatch(
        self, item: ComplianceMonitoringItem, alert_type: AlertType
    ) -> ComplianceMonitoringAlert:
        message = alert_message(alert_type, item.tax_type, item.due_date)
        status = AlertStatus.SENT
        try:
            self.notifier.send(item.recipient, message, self.channel)
        except Exception:
            logger.exception(
                "Failed to deliver %s alert for item %s", alert_type.value, item.id
            )
            status = AlertStatus.FAILED

        alert = ComplianceMonitoringAlert(
            item_id=item.id,
            alert_type=alert_type,
            message=message,
            recipient=item.recipient,
            channel=self.channel,
            status=status,
            sent_at=datetime.now(),
        )
        self.store.add_alert(alert)
        return alert

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        item_id: str,
        target: MonitoringStatus,
        allowed_from: frozenset[MonitoringStatus],
        actor: str,
        **changes,
    ) -> ComplianceMonitoringItem:
        item = self.store.get(item_id)
        if item.status not in allowed_from:
            raise InvalidTransition(
                f"Cannot mark {item.status.value} item {item_id} as {target.value}"
            )
        saved = self.store.save(
            replace(item, status=target, is_overdue=False, **changes), item.version
        )
        try:
            self.audit.record(
                f"monitoring.{target.value.lower()}",
                item_id,
                {"from": item.status.value, "actor": actor, **{k: str(v) for k, v in changes.items()}},
            )
        except Exception:
            logger.exception("Audit sink failed for item %s", item_id)
        return saved

    def mark_as_filed(
        self, item_id: str, filed_date: Optional[date] = None, actor: str = "system"
    ) -> ComplianceMonitoringItem:
        return self._transition(
            item_id,
            MonitoringStatus.FILED,
            frozenset({MonitoringStatus.PENDING, MonitoringStatus.OVERDUE}),
            actor,
            filed_date=filed_date or date.today(),
        )

    def mark_as_paid(
        self, item_id: str, paid_date: Optional[date] = None, actor: str = "system"
    ) -> ComplianceMonitoringItem:
        return self._transition(
            item_id,
            MonitoringStatus.PAID,
            frozenset(
                {MonitoringStatus.PENDING, MonitoringStatus.OVERDUE, MonitoringStatus.FILED}
            ),
            actor,
            paid_date=paid_date or date.today(),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> ComplianceMonitoringItem:
        return self.store.get(item_id)

    def alerts_for(self, item_id: str) -> list[ComplianceMonitoringAlert]:
        return self.store.alerts_for(item_id)

    def pending_items(self) -> list[ComplianceMonitoringItem]:
        return self.store.pending_items()

    def overdue_items(self) -> list[ComplianceMonitoringItem]:
        return [
            i for i in self.store.all_items() if i.is_overdue and not i.is_terminal
        ]

    def statistics(
        self,
        client_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ComplianceStatistics:
        return compliance_statistics(self.store.all_items(), client_id, start, end)
