"""Tests for the PenaltyEngine (penalty shapes, grace, clamps, interest)."""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from compliance_engine.audit import MemoryAuditSink
from compliance_engine.config import EngineSettings
from compliance_engine.errors import RuleNotFound, ValidationFailure
from compliance_engine.penalties import PenaltyEngine
from compliance_engine.rates import (
    DailyRate,
    FixedRate,
    PenaltyKind,
    PenaltyRule,
    RateProvider,
    TaxpayerCategory,
    TaxType,
)

DUE = date(2025, 1, 1)


@pytest.fixture
def provider() -> RateProvider:
    return RateProvider(settings=EngineSettings())


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def engine(provider: RateProvider, audit: MemoryAuditSink) -> PenaltyEngine:
    return PenaltyEngine(provider, audit=audit)


def _late(days: int) -> date:
    return DUE + timedelta(days=days)


# ── Late payment ────────────────────────────────────────────────────


def test_monthly_late_payment_after_grace(engine: PenaltyEngine):
    # 2%/month, 30 day grace, 45 days late -> 15 effective days -> 1 month
    result = engine.calculate_late_payment_penalty(
        TaxType.INCOME_TAX, Decimal("1000000"), DUE, _late(45)
    ).unwrap()
    assert result.amount == Decimal("20000.00")
    assert result.days_overdue == 45
    assert result.rate == Decimal("2")
    assert result.kind == PenaltyKind.LATE_PAYMENT
    assert result.calculation_steps[:2] == ("Unpaid amount: 1,000,000.00 SLE", "Days overdue: 45")
    assert "Grace period: 30 days" in result.calculation_steps
    assert "Effective days overdue: 15" in result.calculation_steps
    assert "Months overdue: 1" in result.calculation_steps
    assert result.legal_reference == "Sierra Leone Finance Act 2020, Section 115"


def test_months_round_up(engine: PenaltyEngine):
    # 61 effective days -> 3 months at 2%
    result = engine.calculate_late_payment_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(91)
    ).unwrap()
    assert result.amount == Decimal("6000.00")


def test_nothing_unpaid_is_zero(engine: PenaltyEngine):
    result = engine.calculate_late_payment_penalty(
        TaxType.INCOME_TAX, Decimal("0"), DUE, _late(90)
    ).unwrap()
    assert result.amount == Decimal("0")


# ── Zero before the due date ────────────────────────────────────────


@pytest.mark.parametrize("offset", [0, -1, -30])
@pytest.mark.parametrize("tax_type", list(TaxType))
def test_on_or_before_due_is_exactly_zero(engine: PenaltyEngine, tax_type, offset):
    # no rule lookup happens, so even Excise Duty succeeds
    for result in (
        engine.calculate_late_filing_penalty(tax_type, Decimal("500000"), DUE, _late(offset)),
        engine.calculate_late_payment_penalty(tax_type, Decimal("500000"), DUE, _late(offset)),
        engine.calculate_interest(Decimal("500000"), DUE, _late(offset)),
    ):
        assert result.is_success
        assert result.value.amount == 0
        assert result.value.days_overdue == 0


# ── Grace period boundary ───────────────────────────────────────────


def test_within_grace_is_zero_with_step(engine: PenaltyEngine):
    # income tax late filing has 7 grace days
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(7)
    ).unwrap()
    assert result.amount == 0
    assert result.days_overdue == 7
    assert "Grace period of 7 days applied - no penalty" in result.calculation_steps


def test_one_day_past_grace_is_charged(engine: PenaltyEngine):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(8)
    ).unwrap()
    assert result.amount == Decimal("5000.00")


@pytest.mark.parametrize(
    "tax_type,kind,grace",
    [
        (TaxType.INCOME_TAX, PenaltyKind.LATE_FILING, 7),
        (TaxType.INCOME_TAX, PenaltyKind.LATE_PAYMENT, 30),
        (TaxType.GST, PenaltyKind.LATE_FILING, 5),
        (TaxType.GST, PenaltyKind.LATE_PAYMENT, 15),
        (TaxType.PAYROLL_TAX, PenaltyKind.LATE_PAYMENT, 10),
    ],
)
def test_grace_boundary_for_defaults(engine: PenaltyEngine, tax_type, kind, grace):
    calc = (
        engine.calculate_late_filing_penalty
        if kind == PenaltyKind.LATE_FILING
        else engine.calculate_late_payment_penalty
    )
    at_grace = calc(tax_type, Decimal("100000"), DUE, _late(grace)).unwrap()
    past_grace = calc(tax_type, Decimal("100000"), DUE, _late(grace + 1)).unwrap()
    assert at_grace.amount == 0
    assert past_grace.amount > 0


# ── Clamping ────────────────────────────────────────────────────────


def test_minimum_applied(engine: PenaltyEngine):
    # 5% of 1,000 = 50, below the 500 minimum
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("1000"), DUE, _late(30)
    ).unwrap()
    assert result.amount == Decimal("500")
    assert result.calculation_steps[-1] == "Applied minimum penalty: 500.00 SLE"


def test_maximum_cap_applied(engine: PenaltyEngine):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("10000000"), DUE, _late(30)
    ).unwrap()
    assert result.amount == Decimal("50000")
    assert result.calculation_steps[-1] == "Applied maximum penalty cap: 50,000.00 SLE"


@pytest.mark.parametrize("base", ["1", "9999", "10000", "250000", "999999", "5000000"])
def test_amount_always_within_bounds(engine: PenaltyEngine, base):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal(base), DUE, _late(20)
    ).unwrap()
    assert Decimal("500") <= result.amount <= Decimal("50000")


# ── Other pricing shapes ────────────────────────────────────────────


def test_fixed_amount(engine: PenaltyEngine):
    result = engine.calculate_late_filing_penalty(
        TaxType.PAYROLL_TAX, Decimal("10"), DUE, _late(3)
    ).unwrap()
    assert result.amount == Decimal("1000")
    assert result.rate is None
    assert "Fixed penalty: 1,000.00 SLE" in result.calculation_steps


def test_daily_rate_capped_by_maximum_days(provider: RateProvider, engine: PenaltyEngine):
    provider.add_penalty_rule(
        PenaltyRule(
            tax_type=TaxType.EXCISE_DUTY,
            kind=PenaltyKind.LATE_FILING,
            pricing=DailyRate(Decimal("0.1")),
            name="Excise daily",
            maximum_days=10,
        )
    )
    result = engine.calculate_late_filing_penalty(
        TaxType.EXCISE_DUTY, Decimal("100000"), DUE, _late(20)
    ).unwrap()
    assert result.amount == Decimal("1000.00")
    assert "Applicable days: 10 (max: 10)" in result.calculation_steps


def test_daily_rate_without_maximum_days(provider: RateProvider, engine: PenaltyEngine):
    provider.add_penalty_rule(
        PenaltyRule(
            tax_type=TaxType.EXCISE_DUTY,
            kind=PenaltyKind.LATE_FILING,
            pricing=DailyRate(Decimal("0.1")),
            grace_period_days=5,
        )
    )
    result = engine.calculate_late_filing_penalty(
        TaxType.EXCISE_DUTY, Decimal("100000"), DUE, _late(20)
    ).unwrap()
    # 15 effective days x 0.1% x 100,000
    assert result.amount == Decimal("1500.00")


def test_missing_rule_fails_not_zero(engine: PenaltyEngine):
    result = engine.calculate_late_payment_penalty(
        TaxType.EXCISE_DUTY, Decimal("100000"), DUE, _late(40)
    )
    assert not result.is_success
    assert isinstance(result.error, RuleNotFound)
    assert "late-payment" in result.message
    assert "Excise Duty" in result.message


# ── Interest ────────────────────────────────────────────────────────


def test_interest_simple_daily(engine: PenaltyEngine):
    # 500,000 x 18/36500 x 60
    result = engine.calculate_interest(Decimal("500000"), DUE, _late(60)).unwrap()
    assert result.amount == Decimal("14794.52")
    assert result.kind == PenaltyKind.INTEREST
    assert result.days_overdue == 60
    assert result.calculation_steps[0] == "Unpaid amount: 500,000.00 SLE"


def test_interest_has_no_grace(engine: PenaltyEngine):
    result = engine.calculate_interest(Decimal("365000"), DUE, _late(1)).unwrap()
    assert result.amount == Decimal("180.00")


def test_interest_not_compounded(engine: PenaltyEngine):
    one_year = engine.calculate_interest(Decimal("100000"), DUE, _late(365)).unwrap()
    assert one_year.amount == Decimal("18000.00")


def test_interest_rate_from_settings(provider: RateProvider):
    engine = PenaltyEngine(provider, settings=EngineSettings(interest_rate_annual_percent=Decimal("36.5")))
    result = engine.calculate_interest(Decimal("100000"), DUE, _late(10)).unwrap()
    assert result.amount == Decimal("1000.00")


# ── Non-filing and under-declaration ────────────────────────────────


def test_non_filing_percentage(engine: PenaltyEngine):
    result = engine.calculate_non_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(45)
    ).unwrap()
    assert result.amount == Decimal("20000.00")
    assert result.kind == PenaltyKind.NON_FILING


def test_non_filing_minimum(engine: PenaltyEngine):
    result = engine.calculate_non_filing_penalty(
        TaxType.INCOME_TAX, Decimal("1000"), DUE, _late(45)
    ).unwrap()
    assert result.amount == Decimal("2000")


def test_non_filing_before_due_is_zero(engine: PenaltyEngine):
    result = engine.calculate_non_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, DUE
    ).unwrap()
    assert result.amount == 0


def test_under_declaration_needs_rule(engine: PenaltyEngine):
    result = engine.calculate_under_declaration_penalty(
        TaxType.INCOME_TAX, Decimal("800000"), Decimal("1000000")
    )
    assert isinstance(result.error, RuleNotFound)


def test_under_declaration_percentage(provider: RateProvider, engine: PenaltyEngine):
    provider.add_penalty_rule(
        PenaltyRule(
            tax_type=TaxType.INCOME_TAX,
            kind=PenaltyKind.UNDER_DECLARATION,
            pricing=FixedRate(Decimal("25")),
            name="Under-declaration",
            maximum_amount=Decimal("1000000"),
        )
    )
    result = engine.calculate_under_declaration_penalty(
        TaxType.INCOME_TAX, Decimal("800000"), Decimal("1000000")
    ).unwrap()
    assert result.base_amount == Decimal("200000")
    assert result.amount == Decimal("50000.00")
    assert "Under-declared amount: 200,000.00 SLE" in result.calculation_steps


def test_no_under_declaration_is_zero(engine: PenaltyEngine):
    result = engine.calculate_under_declaration_penalty(
        TaxType.INCOME_TAX, Decimal("1000000"), Decimal("900000")
    ).unwrap()
    assert result.amount == 0


# ── All applicable ──────────────────────────────────────────────────


def test_all_applicable_unfiled_and_unpaid(engine: PenaltyEngine):
    due = date(2025, 3, 31)
    results = engine.calculate_all_applicable_penalties(
        TaxType.INCOME_TAX,
        tax_liability=Decimal("1000000"),
        amount_paid=Decimal("0"),
        filing_due_date=due,
        payment_due_date=due,
        as_of=due + timedelta(days=60),
    ).unwrap()
    assert [r.kind for r in results] == [
        PenaltyKind.LATE_FILING,
        PenaltyKind.LATE_PAYMENT,
        PenaltyKind.INTEREST,
        PenaltyKind.NON_FILING,
    ]
    amounts = [r.amount for r in results]
    assert amounts == [
        Decimal("50000"),
        Decimal("20000.00"),
        Decimal("29589.04"),
        Decimal("100000"),
    ]


def test_all_applicable_non_filing_needs_more_than_30_days(engine: PenaltyEngine):
    due = date(2025, 3, 31)
    results = engine.calculate_all_applicable_penalties(
        TaxType.INCOME_TAX,
        tax_liability=Decimal("1000000"),
        amount_paid=Decimal("1000000"),
        filing_due_date=due,
        payment_due_date=due,
        paid_date=due,
        as_of=due + timedelta(days=30),
    ).unwrap()
    assert [r.kind for r in results] == [PenaltyKind.LATE_FILING]


def test_all_applicable_on_time_is_empty(engine: PenaltyEngine):
    due = date(2025, 3, 31)
    results = engine.calculate_all_applicable_penalties(
        TaxType.GST,
        tax_liability=Decimal("50000"),
        amount_paid=Decimal("50000"),
        filing_due_date=due,
        payment_due_date=due,
        filed_date=due,
        paid_date=due,
        as_of=due + timedelta(days=90),
    ).unwrap()
    assert results == []


def test_all_applicable_fails_when_any_rule_missing(engine: PenaltyEngine):
    due = date(2025, 3, 31)
    result = engine.calculate_all_applicable_penalties(
        TaxType.EXCISE_DUTY,
        tax_liability=Decimal("50000"),
        amount_paid=Decimal("0"),
        filing_due_date=due,
        payment_due_date=due,
        as_of=due + timedelta(days=10),
    )
    assert not result.is_success
    assert result.message == "No late-filing rule configured for Excise Duty"


# ── Validation and overrides ────────────────────────────────────────


def test_validate_accepts_computed_result(engine: PenaltyEngine):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(30)
    ).unwrap()
    assert engine.validate_penalty_calculation(result).is_success


def test_validate_rejects_negative(engine: PenaltyEngine):
    result = engine.calculate_interest(Decimal("1000"), DUE, _late(10)).unwrap()
    check = engine.validate_penalty_calculation(replace(result, amount=Decimal("-1")))
    assert isinstance(check.error, ValidationFailure)
    check = engine.validate_penalty_calculation(replace(result, days_overdue=-3))
    assert isinstance(check.error, ValidationFailure)


def test_validate_rejects_amount_above_maximum(engine: PenaltyEngine, caplog):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(30)
    ).unwrap()
    check = engine.validate_penalty_calculation(replace(result, amount=Decimal("60000")))
    assert isinstance(check.error, ValidationFailure)
    assert "exceeds maximum" in check.message
    assert "Penalty validation failed" in caplog.text


def test_validate_rejects_amount_below_minimum(engine: PenaltyEngine):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(30)
    ).unwrap()
    check = engine.validate_penalty_calculation(replace(result, amount=Decimal("100")))
    assert "below minimum" in check.message


def test_manual_override_records_audit(engine: PenaltyEngine, audit: MemoryAuditSink):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(30)
    ).unwrap()
    overridden = engine.apply_manual_override(
        result, Decimal("2500"), "Hardship relief", "j.kamara"
    ).unwrap()
    assert overridden.amount == Decimal("2500.00")
    assert overridden.calculation_steps[:-1] == result.calculation_steps
    assert overridden.calculation_steps[-1].startswith("Manual override by j.kamara")
    assert result.amount == Decimal("5000.00")
    action, subject, details = audit.entries[-1]
    assert action == "penalty.override"
    assert details["reason"] == "Hardship relief"


def test_manual_override_outside_bounds_fails(engine: PenaltyEngine, audit: MemoryAuditSink):
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("100000"), DUE, _late(30)
    ).unwrap()
    check = engine.apply_manual_override(result, Decimal("75000"), "typo", "clerk")
    assert isinstance(check.error, ValidationFailure)
    assert audit.entries == []


def test_validate_uses_category_scoped_rule(provider: RateProvider, engine: PenaltyEngine):
    provider.add_penalty_rule(
        PenaltyRule(
            tax_type=TaxType.INCOME_TAX,
            kind=PenaltyKind.LATE_FILING,
            pricing=FixedRate(Decimal("5")),
            name="Large Taxpayer Late Filing",
            grace_period_days=7,
            maximum_amount=Decimal("1000000"),
            category=TaxpayerCategory.LARGE,
        )
    )
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("10000000"), DUE, _late(19), TaxpayerCategory.LARGE
    ).unwrap()
    assert result.amount == Decimal("500000.00")
    assert result.maximum_amount == Decimal("1000000")
    assert engine.validate_penalty_calculation(result).is_success


def test_validate_uses_rule_in_force_when_priced(provider: RateProvider, engine: PenaltyEngine):
    original = PenaltyRule(
        tax_type=TaxType.GST,
        kind=PenaltyKind.LATE_FILING,
        pricing=FixedRate(Decimal("10")),
        name="GST Late Filing 2024",
        grace_period_days=5,
        maximum_amount=Decimal("50000"),
        effective_date=date(2024, 1, 1),
    )
    provider.add_penalty_rule(original)
    result = engine.calculate_late_filing_penalty(
        TaxType.GST, Decimal("400000"), DUE, _late(20)
    ).unwrap()
    assert result.amount == Decimal("40000.00")

    provider.supersede_penalty_rule(
        original,
        replace(original, name="GST Late Filing 2025", maximum_amount=Decimal("25000"),
                effective_date=date(2025, 2, 1)),
    )
    assert engine.validate_penalty_calculation(result).is_success


def test_override_checked_against_pricing_rule_bounds(provider: RateProvider, engine: PenaltyEngine):
    provider.add_penalty_rule(
        PenaltyRule(
            tax_type=TaxType.INCOME_TAX,
            kind=PenaltyKind.LATE_FILING,
            pricing=FixedRate(Decimal("5")),
            name="Large Taxpayer Late Filing",
            maximum_amount=Decimal("1000000"),
            category=TaxpayerCategory.LARGE,
        )
    )
    result = engine.calculate_late_filing_penalty(
        TaxType.INCOME_TAX, Decimal("10000000"), DUE, _late(19), TaxpayerCategory.LARGE
    ).unwrap()
    assert engine.apply_manual_override(result, Decimal("750000"), "Audit finding", "a.sesay").is_success
    check = engine.apply_manual_override(result, Decimal("1500000"), "Audit finding", "a.sesay")
    assert "exceeds maximum limit of 1,000,000.00 SLE" in check.message


def test_validate_result_without_rule_checks_sign_only(engine: PenaltyEngine):
    result = engine.calculate_interest(Decimal("5000000"), DUE, _late(300)).unwrap()
    assert result.maximum_amount is None
    assert engine.validate_penalty_calculation(result).is_success
