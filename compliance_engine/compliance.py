"""
Compliance scoring and issue detection.

Scores a client's year from facts only (filings, payments, documents and
tracker flags) and enumerates the dated issues a practitioner should act
on. Snapshots are recomputed on demand and never updated in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from compliance_engine.config import EngineSettings, get_settings
from compliance_engine.rates import TaxpayerCategory, TaxType

logger = logging.getLogger(__name__)

LATE_FILING_DEDUCTION = 10
LATE_PAYMENT_DEDUCTION = 15
NON_COMPLIANT_DEDUCTION = 20
DOCUMENT_SHORTFALL_DEDUCTION = 10
MIN_DOCUMENTS = 5
GOOD_DOCUMENTS = 10
PENALTY_RISK_THRESHOLD = Decimal("1000")

EXPECTED_FILINGS = (TaxType.INCOME_TAX, TaxType.GST, TaxType.PAYROLL_TAX)


class PaymentStatus(Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class ComplianceStatus(Enum):
    COMPLIANT = "Compliant"
    AT_RISK = "AtRisk"
    NON_COMPLIANT = "NonCompliant"
    PENALTY_APPLIED = "PenaltyApplied"


class RiskLevel(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class IssueSeverity(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FilingRecord:
    tax_type: TaxType
    due_date: Optional[date]
    filing_date: Optional[date]

    @property
    def days_late(self) -> int:
        if self.due_date is None or self.filing_date is None:
            return 0
        return max(0, (self.filing_date - self.due_date).days)

    @property
    def is_late(self) -> bool:
        return self.days_late > 0


@dataclass(frozen=True)
class PaymentRecord:
    tax_type: TaxType
    amount: Decimal
    due_date: date
    payment_date: Optional[date] = None
    status: PaymentStatus = PaymentStatus.COMPLETED

    @property
    def is_late(self) -> bool:
        return self.payment_date is not None and self.payment_date > self.due_date


@dataclass(frozen=True)
class DocumentRecord:
    name: str
    uploaded_on: date


@dataclass(frozen=True)
class TrackerRecord:
    tax_type: TaxType
    status: ComplianceStatus
    outstanding_penalties: Decimal = Decimal("0")


@dataclass(frozen=True)
class ComplianceHistory:
    """Everything on record for one client and tax year."""

    client_id: str
    tax_year: int
    category: TaxpayerCategory
    filings: tuple[FilingRecord, ...] = ()
    payments: tuple[PaymentRecord, ...] = ()
    documents: tuple[DocumentRecord, ...] = ()
    trackers: tuple[TrackerRecord, ...] = ()

    @property
    def has_evidence(self) -> bool:
        return bool(self.filings or self.payments or self.documents)

    @property
    def outstanding_penalties(self) -> Decimal:
        return sum((t.outstanding_penalties for t in self.trackers), Decimal("0"))


# ---------------------------------------------------------------------------
# Derived
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComplianceScoreSnapshot:
    client_id: str
    tax_year: int
    score: int
    grade: str
    description: str
    risk_level: RiskLevel
    late_filings: int
    late_payments: int
    non_compliant_flags: int
    document_count: int
    positive_factors: tuple[str, ...] = ()
    improvement_areas: tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplianceIssue:
    issue_type: str
    description: str
    severity: IssueSeverity
    recommended_action: str
    deadline: Optional[date] = None
    tax_type: Optional[TaxType] = None


def grade_for(score: int) -> tuple[str, str]:
    """Letter grade and description for a 0-100 score."""
    if score >= 90:
        return "A", "Excellent tax compliance"
    if score >= 80:
        return "B", "Good tax compliance"
    if score >= 70:
        return "C", "Satisfactory tax compliance"
    if score >= 60:
        return "D", "Poor tax compliance"
    return "F", "Very poor tax compliance"


def risk_level(score: int, outstanding_penalties: Decimal = Decimal("0")) -> RiskLevel:
    """
    Tracker risk from score and penalty exposure.

    Any outstanding penalty over 1,000 is at least High whatever the score.
    """
    if score < 40:
        level = RiskLevel.CRITICAL
    elif score < 60:
        level = RiskLevel.HIGH
    elif score < 80:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    if outstanding_penalties > PENALTY_RISK_THRESHOLD and level.rank < RiskLevel.HIGH.rank:
        level = RiskLevel.HIGH
    return level


class ComplianceScorer:
    """Weighted compliance score and issue list for a client's year."""

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or get_settings()

    def score(self, history: ComplianceHistory) -> ComplianceScoreSnapshot:
        score = 100
        positives: list[str] = []
        improvements: list[str] = []

        late_filings = sum(1 for f in history.filings if f.is_late)
        if late_filings:
            score -= late_filings * LATE_FILING_DEDUCTION
            improvements.append(f"{late_filings} late filing(s)")
        elif history.filings:
            positives.append("All filings submitted on time")

        late_payments = sum(1 for p in history.payments if p.is_late)
        if late_payments:
            score -= late_payments * LATE_PAYMENT_DEDUCTION
            improvements.append(f"{late_payments} late payment(s)")
        elif history.payments:
            positives.append("All payments made on time")

        flags = sum(
            1 for t in history.trackers if t.status == ComplianceStatus.NON_COMPLIANT
        )
        if flags:
            score -= flags * NON_COMPLIANT_DEDUCTION
            improvements.append(f"{flags} compliance issue(s)")

        docs = len(history.documents)
        if docs >= GOOD_DOCUMENTS:
            positives.append("Excellent record keeping")
        elif docs < MIN_DOCUMENTS and history.has_evidence:
            # an empty record is not evidence of poor record keeping
            score -= DOCUMENT_SHORTFALL_DEDUCTION
            improvements.append("Insufficient supporting documents")

        score = max(0, min(100, score))
        grade, description = grade_for(score)

        return ComplianceScoreSnapshot(
            client_id=history.client_id,
            tax_year=history.tax_year,
            score=score,
            grade=grade,
            description=description,
            risk_level=risk_level(score, history.outstanding_penalties),
            late_filings=late_filings,
            late_payments=late_payments,
            non_compliant_flags=flags,
            document_count=docs,
            positive_factors=tuple(positives),
            improvement_areas=tuple(improvements),
        )

    def identify_compliance_issues(
        self,
        history: ComplianceHistory,
        as_of: Optional[date] = None,
    ) -> list[ComplianceIssue]:
        today = as_of or date.today()
        currency = self.settings.currency
        issues: list[ComplianceIssue] = []

        filed_types = {f.tax_type for f in history.filings}
        deadline = date(
            history.tax_year + 1,
            self.settings.filing_deadline_month,
            self.settings.filing_deadline_day,
        )
        for tax_type in EXPECTED_FILINGS:
            if tax_type not in filed_types:
                issues.append(
                    ComplianceIssue(
                        issue_type="Missing Filing",
                        description=f"{tax_type.value} return not filed for {history.tax_year}",
                        severity=IssueSeverity.HIGH,
                        recommended_action=f"File {tax_type.value} return immediately",
                        deadline=deadline,
                        tax_type=tax_type,
                    )
                )

        for filing in history.filings:
            if not filing.is_late:
                continue
            days = filing.days_late
            issues.append(
                ComplianceIssue(
                    issue_type="Late Filing",
                    description=f"{filing.tax_type.value} return filed {days} days late",
                    severity=IssueSeverity.CRITICAL if days > 30 else IssueSeverity.MEDIUM,
                    recommended_action="Ensure future filings are submitted on time",
                    tax_type=filing.tax_type,
                )
            )

        for payment in history.payments:
            if payment.status != PaymentStatus.PENDING:
                continue
            overdue = payment.due_date < today
            issues.append(
                ComplianceIssue(
                    issue_type="Outstanding Payment",
                    description=(
                        f"Outstanding {payment.tax_type.value} payment of "
                        f"{payment.amount:,.2f} {currency}"
                    ),
                    severity=IssueSeverity.CRITICAL if overdue else IssueSeverity.HIGH,
                    recommended_action="Make payment immediately to avoid penalties",
                    deadline=payment.due_date,
                    tax_type=payment.tax_type,
                )
            )

        if history.category != TaxpayerCategory.MICRO and TaxType.GST not in filed_types:
            issues.append(
                ComplianceIssue(
                    issue_type="GST Registration",
                    description="Business may be required to register for GST",
                    severity=IssueSeverity.MEDIUM,
                    recommended_action=(
                        "Review GST registration requirements and register if necessary"
                    ),
                    tax_type=TaxType.GST,
                )
            )

        logger.debug(
            "Identified %d compliance issues for client %s", len(issues), history.client_id
        )
        return issues
