"""
Penalty and interest engine.

Prices late filing, late payment, non-filing and under-declaration
penalties from the applicable ``PenaltyRule``, plus statutory interest on
unpaid balances. Every figure carries an ordered list of calculation
steps; these are shown verbatim to the taxpayer, so each arithmetic step
appends one line.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from compliance_engine.audit import AuditSink, LoggingAuditSink
from compliance_engine.config import EngineSettings
from compliance_engine.errors import Result, ValidationFailure
from compliance_engine.rates import (
    DailyRate,
    FixedAmount,
    FixedRate,
    MonthlyRate,
    PenaltyKind,
    PenaltyRule,
    RateProvider,
    TaxpayerCategory,
    TaxType,
    pricing_rate,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

_ZERO = Decimal("0")


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def round_money(amount: Decimal) -> Decimal:
    """Round to the nearest cent, halves away from zero."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PenaltyCalculationResult:
    """A priced penalty (or a documented zero) with its audit trail."""

    kind: PenaltyKind
    base_amount: Decimal
    days_overdue: int
    amount: Decimal
    rate: Optional[Decimal]
    calculation_steps: tuple[str, ...]
    legal_reference: str
    description: str = ""
    method: str = ""
    tax_type: Optional[TaxType] = None
    # bounds of the rule that priced this result; None when no rule applied
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None
    calculation_date: date = field(default_factory=date.today)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0


def sum_penalties(results: list[PenaltyCalculationResult]) -> Decimal:
    return sum((r.amount for r in results), _ZERO)


class PenaltyEngine:
    """
    Applies penalty rules to overdue or under-declared amounts.

    All public calculations return a ``Result``. A missing rule is a
    failure the caller must surface; it is never priced as zero.
    """

    def __init__(
        self,
        rates: Optional[RateProvider] = None,
        settings: Optional[EngineSettings] = None,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.rates = rates or RateProvider(settings=settings)
        self.settings = settings or self.rates.settings
        self.audit = audit or LoggingAuditSink()

    # ------------------------------------------------------------------
    # Formatting and shared mechanics
    # ------------------------------------------------------------------

    def _money(self, amount: Decimal) -> str:
        return f"{amount:,.2f} {self.settings.currency}"

    def _reference(self, rule: Optional[PenaltyRule]) -> str:
        if rule is not None and rule.legal_reference:
            return rule.legal_reference
        return self.settings.default_legal_reference

    def _zero(
        self,
        kind: PenaltyKind,
        tax_type: Optional[TaxType],
        base_amount: Decimal,
        days_overdue: int,
        description: str,
        steps: Optional[list[str]] = None,
        rule: Optional[PenaltyRule] = None,
    ) -> Result[PenaltyCalculationResult]:
        return Result.success(
            PenaltyCalculationResult(
                kind=kind,
                base_amount=base_amount,
                days_overdue=days_overdue,
                amount=_ZERO,
                rate=None,
                calculation_steps=tuple(steps or [description]),
                legal_reference=self._reference(rule),
                description=description,
                method=rule.name if rule else "No penalty applicable",
                tax_type=tax_type,
                minimum_amount=rule.minimum_amount if rule else None,
                maximum_amount=rule.maximum_amount if rule else None,
            )
        )

    def _price(
        self,
        rule: PenaltyRule,
        base_amount: Decimal,
        effective_days: int,
        steps: list[str],
    ) -> Decimal:
        """Apply the rule's pricing shape, appending one step per operation."""
        match rule.pricing:
            case FixedAmount(amount=fixed):
                steps.append(f"Fixed penalty: {self._money(fixed)}")
                return fixed
            case FixedRate(percent=pct):
                amount = base_amount * pct / 100
                steps.append(f"Penalty rate: {pct}%")
                steps.append(
                    f"Penalty: {self._money(base_amount)} x {pct}% = "
                    f"{self._money(round_money(amount))}"
                )
                return amount
            case DailyRate(percent=pct):
                max_days = rule.maximum_days if rule.maximum_days is not None else effective_days
                days = min(effective_days, max_days)
                amount = base_amount * pct / 100 * days
                steps.append(f"Daily rate: {pct}% per day")
                steps.append(f"Applicable days: {days} (max: {max_days})")
                steps.append(
                    f"Penalty: {self._money(base_amount)} x {pct}% x {days} days = "
                    f"{self._money(round_money(amount))}"
                )
                return amount
            case MonthlyRate(percent=pct):
                months = math.ceil(effective_days / 30)
                amount = base_amount * pct / 100 * months
                steps.append(f"Monthly rate: {pct}% per month")
                steps.append(f"Months overdue: {months}")
                steps.append(
                    f"Penalty: {self._money(base_amount)} x {pct}% x {months} months = "
                    f"{self._money(round_money(amount))}"
                )
                return amount
            case _:
                raise TypeError(f"Unknown pricing shape: {rule.pricing!r}")

    def _clamp(self, rule: PenaltyRule, amount: Decimal, steps: list[str]) -> Decimal:
        if rule.minimum_amount is not None and amount < rule.minimum_amount:
            steps.append(f"Applied minimum penalty: {self._money(rule.minimum_amount)}")
            amount = rule.minimum_amount
        if rule.maximum_amount is not None and amount > rule.maximum_amount:
            steps.append(f"Applied maximum penalty cap: {self._money(rule.maximum_amount)}")
            amount = rule.maximum_amount
        return amount

    def _priced(
        self,
        rule: PenaltyRule,
        tax_type: TaxType,
        base_amount: Decimal,
        days_overdue: int,
        effective_days: int,
        steps: list[str],
        description: str,
    ) -> Result[PenaltyCalculationResult]:
        raw = self._price(rule, base_amount, effective_days, steps)
        amount = self._clamp(rule, round_money(raw), steps)
        return Result.success(
            PenaltyCalculationResult(
                kind=rule.kind,
                base_amount=base_amount,
                days_overdue=days_overdue,
                amount=amount,
                rate=pricing_rate(rule.pricing),
                calculation_steps=tuple(steps),
                legal_reference=self._reference(rule),
                description=description,
                method=rule.name,
                tax_type=tax_type,
                minimum_amount=rule.minimum_amount,
                maximum_amount=rule.maximum_amount,
            )
        )

    def _late_penalty(
        self,
        kind: PenaltyKind,
        tax_type: TaxType,
        base_amount: Decimal,
        due_date: DateLike,
        actual_date: Optional[DateLike],
        category: Optional[TaxpayerCategory],
        base_label: str,
    ) -> Result[PenaltyCalculationResult]:
        actual = _as_date(actual_date) if actual_date is not None else date.today()
        days_overdue = max(0, (actual - _as_date(due_date)).days)

        if days_overdue == 0:
            return self._zero(
                kind, tax_type, base_amount, 0, f"No {kind.label} penalty - not overdue"
            )
        resolved = self.rates.resolve_penalty_rule(tax_type, kind, category, as_of=actual)
        if not resolved.is_success:
            return Result.failure(resolved.error)
        rule = resolved.value

        steps = [
            f"{base_label}: {self._money(base_amount)}",
            f"Days overdue: {days_overdue}",
        ]
        grace = rule.grace_period_days or 0
        effective_days = max(0, days_overdue - grace)
        if effective_days == 0:
            steps.append(f"Grace period of {grace} days applied - no penalty")
            return self._zero(
                kind, tax_type, base_amount, days_overdue,
                f"No penalty - within {grace} day grace period",
                steps=steps,
                rule=rule,
            )
        if grace > 0:
            steps.append(f"Grace period: {grace} days")
            steps.append(f"Effective days overdue: {effective_days}")

        return self._priced(
            rule, tax_type, base_amount, days_overdue, effective_days, steps,
            f"{kind.label.capitalize()} penalty - {days_overdue} days overdue",
        )

    # ------------------------------------------------------------------
    # Penalty kinds
    # ------------------------------------------------------------------

    def calculate_late_filing_penalty(
        self,
        tax_type: TaxType,
        base_amount: Decimal,
        due_date: DateLike,
        actual_date: Optional[DateLike] = None,
        category: Optional[TaxpayerCategory] = None,
    ) -> Result[PenaltyCalculationResult]:
        """Penalty on a return filed (or still unfiled) after its due date."""
        return self._late_penalty(
            PenaltyKind.LATE_FILING, tax_type, base_amount, due_date,
            actual_date, category, "Tax liability",
        )

    def calculate_late_payment_penalty(
        self,
        tax_type: TaxType,
        unpaid_amount: Decimal,
        due_date: DateLike,
        paid_date: Optional[DateLike] = None,
        category: Optional[TaxpayerCategory] = None,
    ) -> Result[PenaltyCalculationResult]:
        """Penalty on an amount paid (or still unpaid) after its due date."""
        if unpaid_amount <= 0:
            return self._zero(
                PenaltyKind.LATE_PAYMENT, tax_type, unpaid_amount, 0,
                "No late-payment penalty - nothing outstanding",
            )
        return self._late_penalty(
            PenaltyKind.LATE_PAYMENT, tax_type, unpaid_amount, due_date,
            paid_date, category, "Unpaid amount",
        )

    def calculate_interest(
        self,
        unpaid_amount: Decimal,
        due_date: DateLike,
        paid_date: Optional[DateLike] = None,
        tax_type: Optional[TaxType] = None,
    ) -> Result[PenaltyCalculationResult]:
        """
        Simple daily interest on an unpaid balance.

        ``unpaid x (annual% / days_per_year / 100) x days_overdue``. No
        grace period and no compounding.
        """
        actual = _as_date(paid_date) if paid_date is not None else date.today()
        days_overdue = max(0, (actual - _as_date(due_date)).days)
        kind = PenaltyKind.INTEREST

        if days_overdue == 0 or unpaid_amount <= 0:
            return self._zero(
                kind, tax_type, unpaid_amount, 0,
                "No interest - paid on time or no unpaid amount",
            )

        annual = self.settings.interest_rate_annual_percent
        days_per_year = self.settings.interest_days_per_year
        daily_rate = annual / days_per_year / 100
        amount = round_money(unpaid_amount * daily_rate * days_overdue)

        steps = (
            f"Unpaid amount: {self._money(unpaid_amount)}",
            f"Days overdue: {days_overdue}",
            f"Annual interest rate: {annual}%",
            f"Daily rate: {annual}% / {days_per_year} = {daily_rate * 100:.6f}%",
            f"Interest: {self._money(unpaid_amount)} x {daily_rate * 100:.6f}% x "
            f"{days_overdue} days = {self._money(amount)}",
        )
        return Result.success(
            PenaltyCalculationResult(
                kind=kind,
                base_amount=unpaid_amount,
                days_overdue=days_overdue,
                amount=amount,
                rate=daily_rate * 100,
                calculation_steps=steps,
                legal_reference=f"{self.settings.default_legal_reference} - Interest on unpaid tax",
                description=f"Interest on unpaid tax - {days_overdue} days at {annual}% p.a.",
                method="Simple daily interest",
                tax_type=tax_type,
            )
        )

    def calculate_non_filing_penalty(
        self,
        tax_type: TaxType,
        estimated_liability: Decimal,
        due_date: DateLike,
        as_of: Optional[DateLike] = None,
        category: Optional[TaxpayerCategory] = None,
    ) -> Result[PenaltyCalculationResult]:
        """
        Penalty for a return that was never filed.

        Whether the filing is overdue enough to warrant this penalty is the
        caller's decision; this only prices it.
        """
        ref = _as_date(as_of) if as_of is not None else date.today()
        days_overdue = max(0, (ref - _as_date(due_date)).days)
        kind = PenaltyKind.NON_FILING

        if days_overdue == 0:
            return self._zero(
                kind, tax_type, estimated_liability, 0,
                "No penalty - still within filing deadline",
            )

        resolved = self.rates.resolve_penalty_rule(tax_type, kind, category, as_of=ref)
        if not resolved.is_success:
            return Result.failure(resolved.error)

        steps = [
            f"Estimated tax liability: {self._money(estimated_liability)}",
            f"Days overdue: {days_overdue}",
        ]
        return self._priced(
            resolved.value, tax_type, estimated_liability, days_overdue,
            days_overdue, steps,
            f"Non-filing penalty - {days_overdue} days overdue",
        )

    def calculate_under_declaration_penalty(
        self,
        tax_type: TaxType,
        declared_amount: Decimal,
        actual_amount: Decimal,
        category: Optional[TaxpayerCategory] = None,
    ) -> Result[PenaltyCalculationResult]:
        under_declared = actual_amount - declared_amount
        kind = PenaltyKind.UNDER_DECLARATION

        if under_declared <= 0:
            return self._zero(
                kind, tax_type, _ZERO, 0, "No penalty - no under-declaration"
            )

        resolved = self.rates.resolve_penalty_rule(tax_type, kind, category)
        if not resolved.is_success:
            return Result.failure(resolved.error)

        steps = [
            f"Declared amount: {self._money(declared_amount)}",
            f"Actual amount: {self._money(actual_amount)}",
            f"Under-declared amount: {self._money(under_declared)}",
        ]
        return self._priced(
            resolved.value, tax_type, under_declared, 0, 0, steps,
            f"Under-declaration penalty - {self._money(under_declared)} under-declared",
        )

    def calculate_all_applicable_penalties(
        self,
        tax_type: TaxType,
        tax_liability: Decimal,
        amount_paid: Decimal,
        filing_due_date: DateLike,
        payment_due_date: DateLike,
        filed_date: Optional[DateLike] = None,
        paid_date: Optional[DateLike] = None,
        category: Optional[TaxpayerCategory] = None,
        as_of: Optional[DateLike] = None,
    ) -> Result[list[PenaltyCalculationResult]]:
        """
        Itemise every penalty that applies to one obligation.

        Returns only non-zero results and does not sum them. If any single
        penalty cannot be priced the whole call fails with that reason.
        """
        today = _as_date(as_of) if as_of is not None else date.today()
        filing_due = _as_date(filing_due_date)
        payment_due = _as_date(payment_due_date)
        filed = _as_date(filed_date) if filed_date is not None else None
        paid = _as_date(paid_date) if paid_date is not None else None
        unpaid = tax_liability - amount_paid

        pending: list[Result[PenaltyCalculationResult]] = []

        if filed is None or filed > filing_due:
            pending.append(
                self.calculate_late_filing_penalty(
                    tax_type, tax_liability, filing_due, filed or today, category
                )
            )

        if unpaid > 0 and (paid is None or paid > payment_due):
            pending.append(
                self.calculate_late_payment_penalty(
                    tax_type, unpaid, payment_due, paid or today, category
                )
            )
            pending.append(
                self.calculate_interest(unpaid, payment_due, paid or today, tax_type)
            )

        threshold = self.settings.non_filing_threshold_days
        if filed is None and (today - filing_due).days > threshold:
            pending.append(
                self.calculate_non_filing_penalty(
                    tax_type, tax_liability, filing_due, today, category
                )
            )

        penalties: list[PenaltyCalculationResult] = []
        for result in pending:
            if not result.is_success:
                return Result.failure(result.error)
            if result.value.amount > 0:
                penalties.append(result.value)
        return Result.success(penalties)

    # ------------------------------------------------------------------
    # Validation and overrides
    # ------------------------------------------------------------------

    def validate_penalty_calculation(self, result: PenaltyCalculationResult) -> Result[bool]:
        """
        Re-check a result against the bounds of the rule that priced it.

        The bounds travel on the result, so a rule superseded since, or one
        scoped to the taxpayer's category, is checked as it was applied.
        Reports the violation instead of correcting it.
        """
        problem = ""
        if result.amount < 0:
            problem = "Penalty amount cannot be negative"
        elif result.base_amount < 0:
            problem = "Base amount cannot be negative"
        elif result.days_overdue < 0:
            problem = "Days overdue cannot be negative"
        elif result.maximum_amount is not None and result.amount > result.maximum_amount:
            problem = (
                f"Penalty amount {self._money(result.amount)} exceeds maximum "
                f"limit of {self._money(result.maximum_amount)}"
            )
        elif result.minimum_amount is not None and 0 < result.amount < result.minimum_amount:
            problem = (
                f"Penalty amount {self._money(result.amount)} below minimum "
                f"limit of {self._money(result.minimum_amount)}"
            )

        if problem:
            logger.error("Penalty validation failed (%s): %s", result.kind.value, problem)
            return Result.failure(ValidationFailure(problem))
        return Result.success(True)

    def apply_manual_override(
        self,
        result: PenaltyCalculationResult,
        amount: Decimal,
        reason: str,
        actor: str,
    ) -> Result[PenaltyCalculationResult]:
        """Replace a computed penalty with a practitioner-entered figure."""
        new_amount = round_money(amount)
        overridden = replace(
            result,
            amount=new_amount,
            calculation_steps=result.calculation_steps
            + (
                f"Manual override by {actor}: {self._money(result.amount)} -> "
                f"{self._money(new_amount)} ({reason})",
            ),
            method=f"{result.method} (manual override)",
        )
        check = self.validate_penalty_calculation(overridden)
        if not check.is_success:
            return Result.failure(check.error)

        try:
            self.audit.record(
                "penalty.override",
                result.tax_type.value if result.tax_type else result.kind.value,
                {
                    "kind": result.kind.value,
                    "old": str(result.amount),
                    "new": str(new_amount),
                    "reason": reason,
                    "actor": actor,
                },
            )
        except Exception:
            logger.exception("Audit sink failed for penalty override")
        return Result.success(overridden)
