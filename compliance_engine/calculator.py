"""
Tax liability calculation engine.

Handles:
- Progressive income tax with allowances and a corporate minimum-tax floor
- GST with zero-rated exports and reverse charge on imports
- Payroll tax (PAYE per employee plus the skills development levy)
- Excise duty on specific and ad-valorem product rates
- Late penalties and interest attached to each liability
- Comprehensive multi-tax assessment for one client and year
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Union

from compliance_engine.config import EngineSettings
from compliance_engine.errors import Result
from compliance_engine.penalties import (
    PenaltyCalculationResult,
    PenaltyEngine,
    round_money,
    sum_penalties,
)
from compliance_engine.rates import (
    ExciseRateType,
    PenaltyKind,
    RateProvider,
    TaxpayerCategory,
    TaxType,
    product_category_for,
)

if TYPE_CHECKING:
    from compliance_engine.compliance import (
        ComplianceHistory,
        ComplianceIssue,
        ComplianceScorer,
        ComplianceScoreSnapshot,
    )

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Monthly PAYE bands: 15% to 1M, 20% to 5M, 30% above
_PAYE_BAND_1 = Decimal("1000000")
_PAYE_BAND_2 = Decimal("5000000")


def _money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncomeTaxRequest:
    tax_year: int
    category: TaxpayerCategory
    gross_income: Decimal
    deductions: Decimal = _ZERO
    due_date: Optional[date] = None
    payment_date: Optional[date] = None


@dataclass(frozen=True)
class GstRequest:
    tax_year: int
    taxable_supplies: Decimal
    input_tax: Decimal = _ZERO
    gross_sales: Decimal = _ZERO
    exempt_supplies: Decimal = _ZERO
    zero_rated_supplies: Decimal = _ZERO
    is_export: bool = False
    import_value: Decimal = _ZERO
    due_date: Optional[date] = None
    filing_date: Optional[date] = None


@dataclass(frozen=True)
class Employee:
    employee_id: str
    name: str
    annual_salary: Decimal


@dataclass(frozen=True)
class PayrollTaxRequest:
    tax_year: int
    employees: tuple[Employee, ...]
    total_payroll: Optional[Decimal] = None  # None = sum of annual salaries
    due_date: Optional[date] = None
    remittance_date: Optional[date] = None

    @property
    def payroll(self) -> Decimal:
        if self.total_payroll is not None:
            return self.total_payroll
        return sum((e.annual_salary for e in self.employees), _ZERO)


@dataclass(frozen=True)
class ExciseItem:
    product_code: str
    quantity: Decimal
    value: Decimal = _ZERO
    product_name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ExciseItem":
        return cls(
            product_code=str(data["product_code"]).strip().upper(),
            quantity=_money(data.get("quantity", "0")),
            value=_money(data.get("value", "0") or "0"),
            product_name=str(data.get("product_name", "")),
        )


@dataclass(frozen=True)
class ExciseDutyRequest:
    tax_year: int
    items: tuple[ExciseItem, ...]
    product_category: Optional[str] = None  # None = derive from each product code
    due_date: Optional[date] = None
    payment_date: Optional[date] = None


TaxRequest = Union[IncomeTaxRequest, GstRequest, PayrollTaxRequest, ExciseDutyRequest]


@dataclass(frozen=True)
class AssessmentRequest:
    """Everything known about one client's year across all tax types."""

    client_id: str
    tax_year: int
    category: TaxpayerCategory
    gross_income: Decimal = _ZERO
    deductions: Decimal = _ZERO
    taxable_supplies: Decimal = _ZERO
    input_tax: Decimal = _ZERO
    gross_sales: Decimal = _ZERO
    exempt_supplies: Decimal = _ZERO
    employees: tuple[Employee, ...] = ()
    total_payroll: Optional[Decimal] = None
    excise_items: tuple[ExciseItem, ...] = ()
    income_tax_due_date: Optional[date] = None
    gst_due_date: Optional[date] = None
    payroll_tax_due_date: Optional[date] = None
    excise_duty_due_date: Optional[date] = None
    settlement_date: Optional[date] = None  # when set, late penalties are priced against it


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PenaltySummary:
    """Itemised late penalties attached to one liability."""

    tax_type: Optional[TaxType] = None
    due_date: Optional[date] = None
    actual_date: Optional[date] = None
    items: tuple[PenaltyCalculationResult, ...] = ()

    @property
    def days_late(self) -> int:
        if self.due_date is None or self.actual_date is None:
            return 0
        return max(0, (self.actual_date - self.due_date).days)

    @property
    def total(self) -> Decimal:
        return sum_penalties(list(self.items))


@dataclass(frozen=True)
class BracketLine:
    min_income: Decimal
    max_income: Optional[Decimal]
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class IncomeTaxResult:
    tax_year: int
    category: TaxpayerCategory
    gross_income: Decimal
    allowances: Decimal
    taxable_income: Decimal
    bracket_tax: Decimal
    minimum_tax: Decimal
    tax_due: Decimal
    brackets: tuple[BracketLine, ...]
    penalties: PenaltySummary = PenaltySummary()

    @property
    def total_amount_due(self) -> Decimal:
        return self.tax_due + self.penalties.total

    @property
    def effective_rate(self) -> float:
        if self.gross_income <= 0:
            return 0.0
        return float(self.tax_due / self.gross_income)


@dataclass(frozen=True)
class GstResult:
    tax_year: int
    rate: Decimal
    taxable_supplies: Decimal
    exempt_supplies: Decimal
    zero_rated_supplies: Decimal
    input_tax: Decimal
    output_gst: Decimal
    reverse_charge_gst: Decimal
    net_liability: Decimal
    penalties: PenaltySummary = PenaltySummary()

    @property
    def total_amount_due(self) -> Decimal:
        return self.net_liability + self.penalties.total


@dataclass(frozen=True)
class EmployeeContribution:
    employee_id: str
    name: str
    annual_salary: Decimal
    monthly_income: Decimal
    taxable_income: Decimal  # monthly, after the tax-free threshold
    paye_tax: Decimal  # annual


@dataclass(frozen=True)
class PayrollTaxResult:
    tax_year: int
    total_payroll: Decimal
    paye_total: Decimal
    skills_levy: Decimal
    levy_rate: Decimal
    contributions: tuple[EmployeeContribution, ...]
    penalties: PenaltySummary = PenaltySummary()

    @property
    def payroll_tax_due(self) -> Decimal:
        return self.paye_total + self.skills_levy

    @property
    def total_amount_due(self) -> Decimal:
        return self.payroll_tax_due + self.penalties.total


@dataclass(frozen=True)
class ExciseLine:
    product_code: str
    product_name: str
    product_category: str
    quantity: Decimal
    value: Decimal
    rate: Decimal
    rate_type: ExciseRateType
    duty: Decimal


@dataclass(frozen=True)
class ExciseDutyResult:
    tax_year: int
    lines: tuple[ExciseLine, ...]
    unmatched_codes: tuple[str, ...] = ()
    penalties: PenaltySummary = PenaltySummary()

    @property
    def total_duty(self) -> Decimal:
        return sum((line.duty for line in self.lines), _ZERO)

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), _ZERO)

    @property
    def total_value(self) -> Decimal:
        return sum((line.value for line in self.lines), _ZERO)

    @property
    def total_amount_due(self) -> Decimal:
        return self.total_duty + self.penalties.total


TaxResult = Union[IncomeTaxResult, GstResult, PayrollTaxResult, ExciseDutyResult]


@dataclass(frozen=True)
class TaxAssessment:
    client_id: str
    tax_year: int
    category: TaxpayerCategory
    assessment_date: date
    income_tax: Optional[IncomeTaxResult] = None
    gst: Optional[GstResult] = None
    payroll_tax: Optional[PayrollTaxResult] = None
    excise_duty: tuple[ExciseDutyResult, ...] = ()
    compliance_score: Optional["ComplianceScoreSnapshot"] = None
    compliance_issues: tuple["ComplianceIssue", ...] = ()

    @property
    def total_tax_liability(self) -> Decimal:
        total = _ZERO
        if self.income_tax is not None:
            total += self.income_tax.tax_due
        if self.gst is not None:
            total += self.gst.net_liability
        if self.payroll_tax is not None:
            total += self.payroll_tax.payroll_tax_due
        total += sum((e.total_duty for e in self.excise_duty), _ZERO)
        return total

    @property
    def total_penalties(self) -> Decimal:
        results: list = [self.income_tax, self.gst, self.payroll_tax, *self.excise_duty]
        return sum((r.penalties.total for r in results if r is not None), _ZERO)

    @property
    def grand_total(self) -> Decimal:
        return self.total_tax_liability + self.total_penalties


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


def monthly_paye(taxable: Decimal) -> Decimal:
    """PAYE on one month's taxable income using the three fixed bands."""
    if taxable <= 0:
        return _ZERO
    if taxable <= _PAYE_BAND_1:
        return taxable * Decimal("0.15")
    if taxable <= _PAYE_BAND_2:
        return _PAYE_BAND_1 * Decimal("0.15") + (taxable - _PAYE_BAND_1) * Decimal("0.20")
    return (
        _PAYE_BAND_1 * Decimal("0.15")
        + (_PAYE_BAND_2 - _PAYE_BAND_1) * Decimal("0.20")
        + (taxable - _PAYE_BAND_2) * Decimal("0.30")
    )


class TaxCalculator:
    """
    Computes tax liabilities from explicit requests.

    Holds no state of its own; rate tables come from the ``RateProvider``
    and penalties from the ``PenaltyEngine``. Every public calculation
    returns a ``Result`` so a penalty that cannot be priced fails the
    whole calculation with its reason.
    """

    def __init__(
        self,
        rates: Optional[RateProvider] = None,
        penalties: Optional[PenaltyEngine] = None,
        settings: Optional[EngineSettings] = None,
        scorer: Optional["ComplianceScorer"] = None,
    ) -> None:
        self.rates = rates or RateProvider(settings=settings)
        self.settings = settings or self.rates.settings
        self.penalties = penalties or PenaltyEngine(self.rates, self.settings)
        self.scorer = scorer

    # ------------------------------------------------------------------
    # Penalties
    # ------------------------------------------------------------------

    def _late_penalties(
        self,
        tax_type: TaxType,
        kind: PenaltyKind,
        amount: Decimal,
        due_date: Optional[date],
        actual_date: Optional[date],
        category: Optional[TaxpayerCategory] = None,
    ) -> Result[PenaltySummary]:
        if due_date is None or actual_date is None or actual_date <= due_date:
            return Result.success(PenaltySummary(tax_type=tax_type))

        if kind == PenaltyKind.LATE_FILING:
            penalty = self.penalties.calculate_late_filing_penalty(
                tax_type, amount, due_date, actual_date, category
            )
        else:
            penalty = self.penalties.calculate_late_payment_penalty(
                tax_type, amount, due_date, actual_date, category
            )
        if not penalty.is_success:
            logger.error("Cannot price %s penalty: %s", tax_type.value, penalty.message)
            return Result.failure(penalty.error)

        interest = self.penalties.calculate_interest(amount, due_date, actual_date, tax_type)
        items = tuple(
            r for r in (penalty.value, interest.value) if r is not None and r.amount > 0
        )
        summary = PenaltySummary(
            tax_type=tax_type, due_date=due_date, actual_date=actual_date, items=items
        )
        logger.info(
            "Penalties calculated: %s days late -> %s %s penalty",
            summary.days_late,
            summary.total,
            self.settings.currency,
        )
        return Result.success(summary)

    # ------------------------------------------------------------------
    # Income tax
    # ------------------------------------------------------------------

    def calculate_income_tax(self, request: IncomeTaxRequest) -> Result[IncomeTaxResult]:
        allowances = sum(
            (
                a.value_for(request.gross_income)
                for a in self.rates.resolve_allowances(request.tax_year, request.category)
            ),
            _ZERO,
        )
        taxable = max(_ZERO, request.gross_income - request.deductions - allowances)

        bands = self.rates.resolve_tax_rates(
            request.tax_year, TaxType.INCOME_TAX, request.category
        )
        lines: list[BracketLine] = []
        remaining = taxable
        for band in bands:
            if remaining <= 0:
                break
            width = band.band_width
            in_band = remaining if width is None else min(remaining, width)
            tax = round_money(in_band * band.rate / 100)
            lines.append(
                BracketLine(
                    min_income=band.min_income,
                    max_income=band.max_income,
                    rate=band.rate,
                    taxable_amount=in_band,
                    tax_amount=tax,
                )
            )
            remaining -= in_band

        bracket_tax = sum((line.tax_amount for line in lines), _ZERO)

        minimum_tax = _ZERO
        if request.category == TaxpayerCategory.LARGE:
            minimum_tax = round_money(request.gross_income * self.settings.minimum_tax_rate_large)
        elif request.category == TaxpayerCategory.MEDIUM:
            minimum_tax = round_money(request.gross_income * self.settings.minimum_tax_rate_medium)
        tax_due = max(bracket_tax, minimum_tax)

        penalties = self._late_penalties(
            TaxType.INCOME_TAX,
            PenaltyKind.LATE_PAYMENT,
            tax_due,
            request.due_date,
            request.payment_date,
            request.category,
        )
        if not penalties.is_success:
            return Result.failure(penalties.error)

        logger.info(
            "Income tax calculated: %s %s -> %s %s tax due",
            request.gross_income,
            self.settings.currency,
            tax_due,
            self.settings.currency,
        )
        return Result.success(
            IncomeTaxResult(
                tax_year=request.tax_year,
                category=request.category,
                gross_income=request.gross_income,
                allowances=allowances,
                taxable_income=taxable,
                bracket_tax=bracket_tax,
                minimum_tax=minimum_tax,
                tax_due=tax_due,
                brackets=tuple(lines),
                penalties=penalties.value,
            )
        )

    # ------------------------------------------------------------------
    # GST
    # ------------------------------------------------------------------

    def calculate_gst(self, request: GstRequest) -> Result[GstResult]:
        rate = self.rates.resolve_gst_rate(request.tax_year, request.is_export)
        output_gst = round_money(request.taxable_supplies * rate / 100)
        net = max(_ZERO, output_gst - request.input_tax)

        reverse_charge = _ZERO
        if request.import_value > 0:
            # added on top; never netted against input tax
            reverse_charge = round_money(request.import_value * rate / 100)
            net += reverse_charge

        penalties = self._late_penalties(
            TaxType.GST,
            PenaltyKind.LATE_FILING,
            net,
            request.due_date,
            request.filing_date,
        )
        if not penalties.is_success:
            return Result.failure(penalties.error)

        return Result.success(
            GstResult(
                tax_year=request.tax_year,
                rate=rate,
                taxable_supplies=request.taxable_supplies,
                exempt_supplies=request.exempt_supplies,
                zero_rated_supplies=request.zero_rated_supplies,
                input_tax=request.input_tax,
                output_gst=output_gst,
                reverse_charge_gst=reverse_charge,
                net_liability=net,
                penalties=penalties.value,
            )
        )

    # ------------------------------------------------------------------
    # Payroll tax
    # ------------------------------------------------------------------

    def calculate_payroll_tax(self, request: PayrollTaxRequest) -> Result[PayrollTaxResult]:
        threshold = self.rates.resolve_tax_free_threshold(request.tax_year)

        contributions: list[EmployeeContribution] = []
        for emp in request.employees:
            monthly = emp.annual_salary / 12
            taxable = max(_ZERO, monthly - threshold)
            paye = round_money(monthly_paye(taxable) * 12)
            contributions.append(
                EmployeeContribution(
                    employee_id=emp.employee_id,
                    name=emp.name,
                    annual_salary=emp.annual_salary,
                    monthly_income=round_money(monthly),
                    taxable_income=round_money(taxable),
                    paye_tax=paye,
                )
            )

        paye_total = sum((c.paye_tax for c in contributions), _ZERO)
        levy_rate = self.rates.resolve_levy_rate(request.tax_year)
        levy = round_money(request.payroll * levy_rate / 100)

        penalties = self._late_penalties(
            TaxType.PAYROLL_TAX,
            PenaltyKind.LATE_PAYMENT,
            paye_total + levy,
            request.due_date,
            request.remittance_date,
        )
        if not penalties.is_success:
            return Result.failure(penalties.error)

        logger.info(
            "Payroll tax calculated: %s %s -> %s %s tax due",
            request.payroll,
            self.settings.currency,
            paye_total + levy,
            self.settings.currency,
        )
        return Result.success(
            PayrollTaxResult(
                tax_year=request.tax_year,
                total_payroll=request.payroll,
                paye_total=paye_total,
                skills_levy=levy,
                levy_rate=levy_rate,
                contributions=tuple(contributions),
                penalties=penalties.value,
            )
        )

    # ------------------------------------------------------------------
    # Excise duty
    # ------------------------------------------------------------------

    def calculate_excise_duty(self, request: ExciseDutyRequest) -> Result[ExciseDutyResult]:
        lines: list[ExciseLine] = []
        unmatched: list[str] = []

        for item in request.items:
            category = request.product_category or product_category_for(item.product_code)
            rates = self.rates.resolve_excise_rates(request.tax_year, category)
            rate = next((r for r in rates if r.product_code == item.product_code), None)
            if rate is None:
                logger.warning(
                    "No excise rate for product %s (%s); duty not assessed",
                    item.product_code,
                    category,
                )
                unmatched.append(item.product_code)
                continue

            match rate.rate_type:
                case ExciseRateType.SPECIFIC:
                    duty = item.quantity * rate.rate
                case ExciseRateType.AD_VALOREM:
                    duty = item.value * rate.rate / 100
                case _:
                    raise TypeError(f"Unknown excise rate type: {rate.rate_type!r}")

            lines.append(
                ExciseLine(
                    product_code=item.product_code,
                    product_name=item.product_name or rate.product_name,
                    product_category=category,
                    quantity=item.quantity,
                    value=item.value,
                    rate=rate.rate,
                    rate_type=rate.rate_type,
                    duty=round_money(duty),
                )
            )

        total = sum((line.duty for line in lines), _ZERO)
        penalties = self._late_penalties(
            TaxType.EXCISE_DUTY,
            PenaltyKind.LATE_PAYMENT,
            total,
            request.due_date,
            request.payment_date,
        )
        if not penalties.is_success:
            return Result.failure(penalties.error)

        return Result.success(
            ExciseDutyResult(
                tax_year=request.tax_year,
                lines=tuple(lines),
                unmatched_codes=tuple(unmatched),
                penalties=penalties.value,
            )
        )

    # ------------------------------------------------------------------
    # Dispatch and assessment
    # ------------------------------------------------------------------

    def calculate(self, request: TaxRequest) -> Result:
        """Route a request to the calculation for its tax type."""
        match request:
            case IncomeTaxRequest():
                return self.calculate_income_tax(request)
            case GstRequest():
                return self.calculate_gst(request)
            case PayrollTaxRequest():
                return self.calculate_payroll_tax(request)
            case ExciseDutyRequest():
                return self.calculate_excise_duty(request)
            case _:
                raise TypeError(f"Unsupported tax request: {type(request).__name__}")

    def assess(
        self,
        request: AssessmentRequest,
        history: Optional["ComplianceHistory"] = None,
    ) -> Result[TaxAssessment]:
        """
        Run every applicable calculation for one client and year.

        Income tax runs when there is gross income, GST when there are
        taxable supplies, payroll when employees are listed, and excise
        once per product category present in the items. Any failing
        calculation fails the assessment. When ``history`` is given the
        compliance score and issue list are attached.
        """
        settle = request.settlement_date
        income = gst = payroll = None
        excise: list[ExciseDutyResult] = []

        if request.gross_income > 0:
            r = self.calculate_income_tax(
                IncomeTaxRequest(
                    tax_year=request.tax_year,
                    category=request.category,
                    gross_income=request.gross_income,
                    deductions=request.deductions,
                    due_date=request.income_tax_due_date,
                    payment_date=settle,
                )
            )
            if not r.is_success:
                return Result.failure(r.error)
            income = r.value

        if request.taxable_supplies > 0:
            r = self.calculate_gst(
                GstRequest(
                    tax_year=request.tax_year,
                    taxable_supplies=request.taxable_supplies,
                    input_tax=request.input_tax,
                    gross_sales=request.gross_sales,
                    exempt_supplies=request.exempt_supplies,
                    due_date=request.gst_due_date,
                    filing_date=settle,
                )
            )
            if not r.is_success:
                return Result.failure(r.error)
            gst = r.value

        if request.employees:
            r = self.calculate_payroll_tax(
                PayrollTaxRequest(
                    tax_year=request.tax_year,
                    employees=request.employees,
                    total_payroll=request.total_payroll,
                    due_date=request.payroll_tax_due_date,
                    remittance_date=settle,
                )
            )
            if not r.is_success:
                return Result.failure(r.error)
            payroll = r.value

        groups: dict[str, list[ExciseItem]] = defaultdict(list)
        for item in request.excise_items:
            groups[product_category_for(item.product_code)].append(item)
        for category, items in groups.items():
            r = self.calculate_excise_duty(
                ExciseDutyRequest(
                    tax_year=request.tax_year,
                    items=tuple(items),
                    product_category=category,
                    due_date=request.excise_duty_due_date,
                    payment_date=settle,
                )
            )
            if not r.is_success:
                return Result.failure(r.error)
            excise.append(r.value)

        score = None
        issues: tuple = ()
        if history is not None:
            if self.scorer is None:
                from compliance_engine.compliance import ComplianceScorer

                self.scorer = ComplianceScorer(self.settings)
            score = self.scorer.score(history)
            issues = tuple(self.scorer.identify_compliance_issues(history))

        assessment = TaxAssessment(
            client_id=request.client_id,
            tax_year=request.tax_year,
            category=request.category,
            assessment_date=date.today(),
            income_tax=income,
            gst=gst,
            payroll_tax=payroll,
            excise_duty=tuple(excise),
            compliance_score=score,
            compliance_issues=issues,
        )
        logger.info(
            "Comprehensive tax assessment completed for client %s: %s %s total liability",
            request.client_id,
            assessment.grand_total,
            self.settings.currency,
        )
        return Result.success(assessment)


# ---------------------------------------------------------------------------
# Row helpers for CSV input
# ---------------------------------------------------------------------------


def excise_items_from_rows(rows: list[dict]) -> tuple[ExciseItem, ...]:
    return tuple(ExciseItem.from_dict(row) for row in rows)


def employees_from_rows(rows: list[dict]) -> tuple[Employee, ...]:
    return tuple(
        Employee(
            employee_id=str(row.get("employee_id", "")),
            name=str(row.get("name", "")),
            annual_salary=_money(row["annual_salary"]),
        )
        for row in rows
    )
