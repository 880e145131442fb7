"""Tests for compliance scoring and issue detection."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from compliance_engine.compliance import (
    ComplianceHistory,
    ComplianceScorer,
    ComplianceStatus,
    DocumentRecord,
    FilingRecord,
    IssueSeverity,
    PaymentRecord,
    PaymentStatus,
    RiskLevel,
    TrackerRecord,
    grade_for,
    risk_level,
)
from compliance_engine.config import EngineSettings
from compliance_engine.rates import TaxpayerCategory, TaxType

DUE = date(2026, 3, 31)


@pytest.fixture
def scorer() -> ComplianceScorer:
    return ComplianceScorer(EngineSettings())


def _history(category=TaxpayerCategory.SMALL, **kwargs) -> ComplianceHistory:
    return ComplianceHistory(client_id="CL-042", tax_year=2025, category=category, **kwargs)


def _docs(n: int) -> tuple[DocumentRecord, ...]:
    return tuple(DocumentRecord(f"receipt-{i}.pdf", DUE) for i in range(n))


def _filed(tax_type: TaxType, days_late: int = 0) -> FilingRecord:
    return FilingRecord(tax_type, DUE, DUE + timedelta(days=days_late))


# ── Scoring ─────────────────────────────────────────────────────────


def test_empty_history_is_perfect(scorer: ComplianceScorer):
    snapshot = scorer.score(_history())
    assert snapshot.score == 100
    assert snapshot.grade == "A"
    assert snapshot.risk_level == RiskLevel.LOW
    assert snapshot.improvement_areas == ()


def test_all_deductions_applied(scorer: ComplianceScorer):
    snapshot = scorer.score(
        _history(
            filings=(_filed(TaxType.GST, days_late=4),),
            payments=(PaymentRecord(TaxType.GST, Decimal("5000"), DUE, DUE + timedelta(days=2)),),
            trackers=(TrackerRecord(TaxType.GST, ComplianceStatus.NON_COMPLIANT),),
        )
    )
    # 100 - 10 - 15 - 20 - 10 (fewer than 5 documents)
    assert snapshot.score == 45
    assert snapshot.grade == "F"
    assert snapshot.risk_level == RiskLevel.HIGH
    assert snapshot.late_filings == 1
    assert snapshot.late_payments == 1
    assert snapshot.non_compliant_flags == 1
    assert "Insufficient supporting documents" in snapshot.improvement_areas


def test_score_clamped_at_zero(scorer: ComplianceScorer):
    late = tuple(_filed(t, days_late=10) for t in TaxType) + (_filed(TaxType.GST, 3),)
    payments = tuple(
        PaymentRecord(TaxType.GST, Decimal("100"), DUE, DUE + timedelta(days=1)) for _ in range(4)
    )
    snapshot = scorer.score(_history(filings=late, payments=payments))
    assert snapshot.score == 0
    assert snapshot.grade == "F"
    assert snapshot.risk_level == RiskLevel.CRITICAL


def test_good_record_keeping_is_positive(scorer: ComplianceScorer):
    snapshot = scorer.score(
        _history(
            filings=(_filed(TaxType.INCOME_TAX), _filed(TaxType.GST)),
            payments=(PaymentRecord(TaxType.GST, Decimal("5000"), DUE, DUE),),
            documents=_docs(10),
        )
    )
    assert snapshot.score == 100
    assert snapshot.positive_factors == (
        "All filings submitted on time",
        "All payments made on time",
        "Excellent record keeping",
    )


def test_pending_payment_is_not_late(scorer: ComplianceScorer):
    snapshot = scorer.score(
        _history(
            payments=(
                PaymentRecord(TaxType.INCOME_TAX, Decimal("900"), DUE, status=PaymentStatus.PENDING),
            ),
            documents=_docs(5),
        )
    )
    assert snapshot.late_payments == 0
    assert snapshot.score == 100


def test_outstanding_penalties_raise_risk(scorer: ComplianceScorer):
    snapshot = scorer.score(
        _history(
            trackers=(
                TrackerRecord(TaxType.GST, ComplianceStatus.PENALTY_APPLIED, Decimal("800")),
                TrackerRecord(TaxType.INCOME_TAX, ComplianceStatus.AT_RISK, Decimal("700")),
            )
        )
    )
    assert snapshot.score == 100
    assert snapshot.risk_level == RiskLevel.HIGH


@pytest.mark.parametrize(
    "score,grade",
    [(100, "A"), (90, "A"), (89, "B"), (80, "B"), (79, "C"), (70, "C"), (69, "D"), (60, "D"), (59, "F"), (0, "F")],
)
def test_grade_boundaries(score, grade):
    assert grade_for(score)[0] == grade


@pytest.mark.parametrize(
    "score,outstanding,expected",
    [
        (95, "0", RiskLevel.LOW),
        (80, "0", RiskLevel.LOW),
        (79, "0", RiskLevel.MEDIUM),
        (60, "0", RiskLevel.MEDIUM),
        (59, "0", RiskLevel.HIGH),
        (40, "0", RiskLevel.HIGH),
        (39, "0", RiskLevel.CRITICAL),
        (95, "1000", RiskLevel.LOW),
        (95, "1000.01", RiskLevel.HIGH),
        (65, "5000", RiskLevel.HIGH),
        (20, "5000", RiskLevel.CRITICAL),
    ],
)
def test_risk_level(score, outstanding, expected):
    assert risk_level(score, Decimal(outstanding)) == expected


# ── Issues ──────────────────────────────────────────────────────────


def test_missing_filings_reported(scorer: ComplianceScorer):
    issues = scorer.identify_compliance_issues(
        _history(filings=(_filed(TaxType.GST),)), as_of=date(2026, 1, 10)
    )
    missing = [i for i in issues if i.issue_type == "Missing Filing"]
    assert [i.tax_type for i in missing] == [TaxType.INCOME_TAX, TaxType.PAYROLL_TAX]
    assert all(i.severity == IssueSeverity.HIGH for i in missing)
    assert all(i.deadline == date(2026, 3, 31) for i in missing)
    assert missing[0].description == "Income Tax return not filed for 2025"


@pytest.mark.parametrize("days,severity", [(5, IssueSeverity.MEDIUM), (30, IssueSeverity.MEDIUM), (31, IssueSeverity.CRITICAL)])
def test_late_filing_severity(scorer: ComplianceScorer, days, severity):
    issues = scorer.identify_compliance_issues(_history(filings=(_filed(TaxType.GST, days),)))
    late = [i for i in issues if i.issue_type == "Late Filing"]
    assert len(late) == 1
    assert late[0].severity == severity
    assert late[0].description == f"GST return filed {days} days late"


def test_outstanding_payments(scorer: ComplianceScorer):
    history = _history(
        payments=(
            PaymentRecord(TaxType.GST, Decimal("25000"), date(2026, 1, 15), status=PaymentStatus.PENDING),
            PaymentRecord(TaxType.INCOME_TAX, Decimal("5000"), date(2026, 3, 31), status=PaymentStatus.PENDING),
            PaymentRecord(TaxType.PAYROLL_TAX, Decimal("1000"), date(2026, 1, 1), date(2026, 1, 1)),
        )
    )
    issues = scorer.identify_compliance_issues(history, as_of=date(2026, 2, 1))
    outstanding = [i for i in issues if i.issue_type == "Outstanding Payment"]
    assert [i.severity for i in outstanding] == [IssueSeverity.CRITICAL, IssueSeverity.HIGH]
    assert outstanding[0].description == "Outstanding GST payment of 25,000.00 SLE"
    assert outstanding[0].deadline == date(2026, 1, 15)


def test_gst_advisory_for_non_micro(scorer: ComplianceScorer):
    issues = scorer.identify_compliance_issues(_history(category=TaxpayerCategory.SMALL))
    assert "GST Registration" in [i.issue_type for i in issues]


def test_no_gst_advisory_for_micro(scorer: ComplianceScorer):
    issues = scorer.identify_compliance_issues(_history(category=TaxpayerCategory.MICRO))
    assert "GST Registration" not in [i.issue_type for i in issues]


def test_no_gst_advisory_once_gst_filed(scorer: ComplianceScorer):
    issues = scorer.identify_compliance_issues(_history(filings=(_filed(TaxType.GST),)))
    assert "GST Registration" not in [i.issue_type for i in issues]
