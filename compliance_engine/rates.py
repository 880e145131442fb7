"""
Rate, allowance and penalty-rule configuration.

Holds the admin-authored rule rows and resolves the applicable row for a
calculation, falling back to the built-in Finance Act tables when nothing
is configured for the requested year and category.

Rule rows are never edited in place. A correction is a new row with a
later effective date; the row it replaces is deactivated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from compliance_engine.audit import AuditSink, LoggingAuditSink
from compliance_engine.config import EngineSettings, get_settings
from compliance_engine.errors import Result, RuleNotFound

logger = logging.getLogger(__name__)


class TaxType(Enum):
    INCOME_TAX = "Income Tax"
    GST = "GST"
    PAYROLL_TAX = "Payroll Tax"
    EXCISE_DUTY = "Excise Duty"


class TaxpayerCategory(Enum):
    INDIVIDUAL = "Individual"
    MICRO = "Micro"
    SMALL = "Small"
    MEDIUM = "Medium"
    LARGE = "Large"


class PenaltyKind(Enum):
    LATE_FILING = "LateFiling"
    LATE_PAYMENT = "LatePayment"
    NON_FILING = "NonFiling"
    UNDER_DECLARATION = "UnderDeclaration"
    INTEREST = "Interest"

    @property
    def label(self) -> str:
        return {
            PenaltyKind.LATE_FILING: "late-filing",
            PenaltyKind.LATE_PAYMENT: "late-payment",
            PenaltyKind.NON_FILING: "non-filing",
            PenaltyKind.UNDER_DECLARATION: "under-declaration",
            PenaltyKind.INTEREST: "interest",
        }[self]


class ExciseRateType(Enum):
    SPECIFIC = "Specific"  # per unit of quantity
    AD_VALOREM = "AdValorem"  # percentage of value


# ---------------------------------------------------------------------------
# Penalty pricing shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FixedAmount:
    amount: Decimal


@dataclass(frozen=True)
class FixedRate:
    percent: Decimal


@dataclass(frozen=True)
class DailyRate:
    percent: Decimal


@dataclass(frozen=True)
class MonthlyRate:
    percent: Decimal


PricingShape = Union[FixedAmount, FixedRate, DailyRate, MonthlyRate]

_PRICING_TYPES = (FixedAmount, FixedRate, DailyRate, MonthlyRate)


def pricing_rate(pricing: PricingShape) -> Optional[Decimal]:
    """The percentage a shape charges, or None for a fixed amount."""
    match pricing:
        case FixedAmount():
            return None
        case FixedRate(percent=p) | DailyRate(percent=p) | MonthlyRate(percent=p):
            return p
        case _:
            raise TypeError(f"Unknown pricing shape: {pricing!r}")


# ---------------------------------------------------------------------------
# Rule rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxRateRule:
    """One progressive band of a rate table."""

    tax_year: int
    tax_type: TaxType
    category: TaxpayerCategory
    min_income: Decimal
    max_income: Optional[Decimal]  # None = unbounded top band
    rate: Decimal  # percent
    description: str = ""
    effective_date: date = date(2020, 1, 1)
    is_active: bool = True

    @property
    def band_width(self) -> Optional[Decimal]:
        if self.max_income is None:
            return None
        return self.max_income - self.min_income


@dataclass(frozen=True)
class TaxAllowance:
    """Reduces taxable income before brackets are applied."""

    tax_year: int
    category: TaxpayerCategory
    allowance_type: str
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    description: str = ""
    is_active: bool = True

    def value_for(self, gross_income: Decimal) -> Decimal:
        if self.amount is not None:
            return self.amount
        if self.percentage is not None:
            return gross_income * self.percentage / 100
        return Decimal("0")


@dataclass(frozen=True)
class PenaltyRule:
    """How one kind of penalty is priced for a tax type."""

    tax_type: TaxType
    kind: PenaltyKind
    pricing: PricingShape
    name: str = ""
    description: str = ""
    grace_period_days: Optional[int] = None
    maximum_days: Optional[int] = None
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None
    category: Optional[TaxpayerCategory] = None  # None = any category
    priority: int = 1
    effective_date: date = date(2020, 1, 1)
    expiry_date: Optional[date] = None
    legal_reference: Optional[str] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.pricing, _PRICING_TYPES):
            raise ValueError(f"Unsupported pricing shape: {self.pricing!r}")
        if (
            self.minimum_amount is not None
            and self.maximum_amount is not None
            and self.minimum_amount > self.maximum_amount
        ):
            raise ValueError(
                f"Penalty rule {self.name or self.kind.value}: minimum "
                f"{self.minimum_amount} exceeds maximum {self.maximum_amount}"
            )

    def in_force(self, as_of: date) -> bool:
        return (
            self.is_active
            and self.effective_date <= as_of
            and (self.expiry_date is None or self.expiry_date > as_of)
        )


@dataclass(frozen=True)
class ExciseRate:
    product_code: str
    product_name: str
    product_category: str
    rate: Decimal
    rate_type: ExciseRateType
    unit_of_measure: str = ""
    tax_year: Optional[int] = None  # None = built-in default for any year
    is_active: bool = True


# ---------------------------------------------------------------------------
# Built-in Finance Act tables
# ---------------------------------------------------------------------------

_D = Decimal

# (min, max, rate %, description) per category
_DEFAULT_INCOME_TAX: dict[TaxpayerCategory, list[tuple]] = {
    TaxpayerCategory.INDIVIDUAL: [
        (_D("0"), _D("7200000"), _D("0"), "Tax-free allowance"),
        (_D("7200000"), _D("12000000"), _D("15"), "Low income bracket"),
        (_D("12000000"), _D("60000000"), _D("20"), "Middle income bracket"),
        (_D("60000000"), None, _D("30"), "High income bracket"),
    ],
    TaxpayerCategory.LARGE: [
        (_D("0"), None, _D("30"), "Corporate income tax - Large companies"),
    ],
    TaxpayerCategory.MEDIUM: [
        (_D("0"), None, _D("25"), "Corporate income tax - Medium companies"),
    ],
    TaxpayerCategory.SMALL: [
        (_D("0"), None, _D("20"), "Corporate income tax - Small companies"),
    ],
    TaxpayerCategory.MICRO: [
        (_D("0"), None, _D("0"), "Tax-exempt micro businesses"),
    ],
}

_DEFAULT_EXCISE: dict[str, list[tuple]] = {
    "Tobacco": [
        ("TOB001", "Cigarettes", _D("150"), "Per pack"),
        ("TOB002", "Cigars", _D("200"), "Per piece"),
    ],
    "Alcohol": [
        ("ALC001", "Beer", _D("500"), "Per liter"),
        ("ALC002", "Wine", _D("800"), "Per liter"),
        ("ALC003", "Spirits", _D("2000"), "Per liter"),
    ],
    "Fuel": [
        ("FUEL001", "Petrol", _D("3500"), "Per liter"),
        ("FUEL002", "Diesel", _D("3000"), "Per liter"),
    ],
}

_PRODUCT_PREFIXES: dict[str, str] = {
    "TOB": "Tobacco",
    "ALC": "Alcohol",
    "FUE": "Fuel",
}

DEFAULT_PENALTY_RULES: tuple[PenaltyRule, ...] = (
    PenaltyRule(
        tax_type=TaxType.INCOME_TAX,
        kind=PenaltyKind.LATE_FILING,
        pricing=FixedRate(_D("5")),
        name="Income Tax Late Filing Penalty",
        description="5% of tax liability for late filing of income tax returns",
        minimum_amount=_D("500"),
        maximum_amount=_D("50000"),
        grace_period_days=7,
        legal_reference="Sierra Leone Finance Act 2020, Section 112",
    ),
    PenaltyRule(
        tax_type=TaxType.INCOME_TAX,
        kind=PenaltyKind.LATE_PAYMENT,
        pricing=MonthlyRate(_D("2")),
        name="Income Tax Late Payment Penalty",
        description="2% per month on unpaid income tax",
        grace_period_days=30,
        maximum_days=365,
        legal_reference="Sierra Leone Finance Act 2020, Section 115",
    ),
    PenaltyRule(
        tax_type=TaxType.INCOME_TAX,
        kind=PenaltyKind.NON_FILING,
        pricing=FixedRate(_D("20")),
        name="Income Tax Non-Filing Penalty",
        description="20% of estimated tax liability for failure to file",
        minimum_amount=_D("2000"),
        maximum_amount=_D("100000"),
        legal_reference="Sierra Leone Finance Act 2020, Section 118",
    ),
    PenaltyRule(
        tax_type=TaxType.GST,
        kind=PenaltyKind.LATE_FILING,
        pricing=FixedRate(_D("10")),
        name="GST Late Filing Penalty",
        description="10% of GST liability for late filing",
        minimum_amount=_D("200"),
        maximum_amount=_D("25000"),
        grace_period_days=5,
        legal_reference="Sierra Leone Finance Act 2020, Section 142",
    ),
    PenaltyRule(
        tax_type=TaxType.GST,
        kind=PenaltyKind.LATE_PAYMENT,
        pricing=MonthlyRate(_D("3")),
        name="GST Late Payment Penalty",
        description="3% per month on unpaid GST",
        grace_period_days=15,
        maximum_days=365,
        legal_reference="Sierra Leone Finance Act 2020, Section 145",
    ),
    PenaltyRule(
        tax_type=TaxType.PAYROLL_TAX,
        kind=PenaltyKind.LATE_FILING,
        pricing=FixedAmount(_D("1000")),
        name="Payroll Tax Late Filing Penalty",
        description="Fixed penalty for late payroll tax filing",
        legal_reference="Sierra Leone Finance Act 2020, Section 162",
    ),
    PenaltyRule(
        tax_type=TaxType.PAYROLL_TAX,
        kind=PenaltyKind.LATE_PAYMENT,
        pricing=MonthlyRate(_D("5")),
        name="Payroll Tax Late Payment Penalty",
        description="5% per month on unpaid payroll tax",
        grace_period_days=10,
        maximum_days=180,
        legal_reference="Sierra Leone Finance Act 2020, Section 165",
    ),
)


def product_category_for(product_code: str) -> str:
    """Map an excise product code to its category by prefix."""
    return _PRODUCT_PREFIXES.get(product_code[:3].upper(), "Other")


def _rule_sort_key(rule: PenaltyRule) -> tuple[int, int, int]:
    # exact-category rules first, then priority, then newest effective date
    return (
        0 if rule.category is not None else 1,
        rule.priority,
        -rule.effective_date.toordinal(),
    )


class RateProvider:
    """
    Resolves rate tables, allowances and penalty rules.

    Configured rows always win. When no configured row matches, the
    built-in defaults are returned and a warning is logged; missing
    configuration is never an error except for penalty rules, where a
    request with no configured and no default rule fails with
    ``RuleNotFound``.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        audit: Optional[AuditSink] = None,
        tax_rates: Optional[list[TaxRateRule]] = None,
        allowances: Optional[list[TaxAllowance]] = None,
        penalty_rules: Optional[list[PenaltyRule]] = None,
        excise_rates: Optional[list[ExciseRate]] = None,
        gst_rates: Optional[dict[int, Decimal]] = None,
        levy_rates: Optional[dict[int, Decimal]] = None,
        tax_free_thresholds: Optional[dict[int, Decimal]] = None,
        use_default_penalty_rules: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self.audit = audit or LoggingAuditSink()
        self._tax_rates: list[TaxRateRule] = list(tax_rates or [])
        self._allowances: list[TaxAllowance] = list(allowances or [])
        self._penalty_rules: list[PenaltyRule] = list(penalty_rules or [])
        self._excise_rates: list[ExciseRate] = list(excise_rates or [])
        self._gst_rates: dict[int, Decimal] = dict(gst_rates or {})
        self._levy_rates: dict[int, Decimal] = dict(levy_rates or {})
        self._thresholds: dict[int, Decimal] = dict(tax_free_thresholds or {})
        self._default_penalty_rules: tuple[PenaltyRule, ...] = (
            DEFAULT_PENALTY_RULES if use_default_penalty_rules else ()
        )

    # ------------------------------------------------------------------
    # Tax rate tables
    # ------------------------------------------------------------------

    def has_configured_tax_rates(
        self, tax_year: int, tax_type: TaxType, category: TaxpayerCategory
    ) -> bool:
        return any(
            r.is_active
            and r.tax_year == tax_year
            and r.tax_type == tax_type
            and r.category == category
            for r in self._tax_rates
        )

    def resolve_tax_rates(
        self, tax_year: int, tax_type: TaxType, category: TaxpayerCategory
    ) -> list[TaxRateRule]:
        """Return the active bands for (year, type, category), lowest first."""
        rules = [
            r
            for r in self._tax_rates
            if r.is_active
            and r.tax_year == tax_year
            and r.tax_type == tax_type
            and r.category == category
        ]
        if rules:
            return sorted(rules, key=lambda r: r.min_income)

        logger.warning(
            "Using default %s rates for %s taxpayers in %s",
            tax_type.value,
            category.value,
            tax_year,
        )
        if tax_type != TaxType.INCOME_TAX:
            return []
        return [
            TaxRateRule(
                tax_year=tax_year,
                tax_type=tax_type,
                category=category,
                min_income=lo,
                max_income=hi,
                rate=rate,
                description=desc,
            )
            for lo, hi, rate, desc in _DEFAULT_INCOME_TAX.get(category, [])
        ]

    def resolve_allowances(
        self, tax_year: int, category: TaxpayerCategory
    ) -> list[TaxAllowance]:
        return [
            a
            for a in self._allowances
            if a.is_active and a.tax_year == tax_year and a.category == category
        ]

    def resolve_gst_rate(self, tax_year: int, is_export: bool = False) -> Decimal:
        """Standard GST rate in percent; exports are zero-rated."""
        if is_export:
            return Decimal("0")
        rate = self._gst_rates.get(tax_year)
        if rate is None:
            logger.warning(
                "No GST rate configured for %s; using %s%%",
                tax_year,
                self.settings.gst_rate_percent,
            )
            return self.settings.gst_rate_percent
        return rate

    def resolve_levy_rate(self, tax_year: int) -> Decimal:
        """Skills development levy in percent of total payroll."""
        rate = self._levy_rates.get(tax_year)
        if rate is None:
            logger.warning(
                "No skills levy configured for %s; using %s%%",
                tax_year,
                self.settings.skills_levy_rate_percent,
            )
            return self.settings.skills_levy_rate_percent
        return rate

    def resolve_tax_free_threshold(self, tax_year: int) -> Decimal:
        """Monthly PAYE tax-free threshold."""
        for a in self._allowances:
            if a.is_active and a.tax_year == tax_year and a.allowance_type == "Personal":
                if a.amount is not None:
                    return a.amount
        threshold = self._thresholds.get(tax_year)
        if threshold is None:
            logger.warning(
                "No PAYE threshold configured for %s; using %s",
                tax_year,
                self.settings.paye_tax_free_threshold,
            )
            return self.settings.paye_tax_free_threshold
        return threshold

    def resolve_excise_rates(
        self, tax_year: int, product_category: str
    ) -> list[ExciseRate]:
        rates = [
            r
            for r in self._excise_rates
            if r.is_active
            and r.tax_year == tax_year
            and r.product_category == product_category
        ]
        if rates:
            return rates

        logger.warning(
            "Using default excise duty rates for category %s", product_category
        )
        return [
            ExciseRate(
                product_code=code,
                product_name=name,
                product_category=product_category,
                rate=rate,
                rate_type=ExciseRateType.SPECIFIC,
                unit_of_measure=unit,
            )
            for code, name, rate, unit in _DEFAULT_EXCISE.get(product_category, [])
        ]

    # ------------------------------------------------------------------
    # Penalty rules
    # ------------------------------------------------------------------

    def _matching(
        self,
        rules: list[PenaltyRule] | tuple[PenaltyRule, ...],
        tax_type: TaxType,
        kind: PenaltyKind,
        category: Optional[TaxpayerCategory],
        as_of: date,
    ) -> list[PenaltyRule]:
        return [
            r
            for r in rules
            if r.tax_type == tax_type
            and r.kind == kind
            and r.in_force(as_of)
            and (r.category is None or r.category == category)
        ]

    def resolve_penalty_rule(
        self,
        tax_type: TaxType,
        kind: PenaltyKind,
        category: Optional[TaxpayerCategory] = None,
        as_of: Optional[date] = None,
    ) -> Result[PenaltyRule]:
        """
        Pick the rule that prices ``kind`` for ``tax_type``.

        A rule scoped to ``category`` beats a category-agnostic one, then
        lower priority wins, then the most recent effective date.
        """
        ref = as_of or date.today()
        candidates = self._matching(self._penalty_rules, tax_type, kind, category, ref)
        if not candidates:
            candidates = self._matching(
                self._default_penalty_rules, tax_type, kind, category, ref
            )
            if candidates:
                logger.warning(
                    "Using default %s rule for %s", kind.label, tax_type.value
                )
        if not candidates:
            return Result.failure(
                RuleNotFound(
                    f"No {kind.label} rule configured for {tax_type.value}"
                )
            )
        return Result.success(sorted(candidates, key=_rule_sort_key)[0])

    def legal_reference(self, tax_type: TaxType, kind: PenaltyKind) -> str:
        result = self.resolve_penalty_rule(tax_type, kind)
        if result.is_success and result.value.legal_reference:
            return result.value.legal_reference
        return self.settings.default_legal_reference

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _audit(self, action: str, subject: str, details: dict) -> None:
        try:
            self.audit.record(action, subject, details)
        except Exception:
            logger.exception("Audit sink failed for %s %s", action, subject)

    def add_tax_rate(self, rule: TaxRateRule, actor: str = "system") -> None:
        self._tax_rates.append(rule)
        self._audit(
            "tax_rate.created",
            f"{rule.tax_type.value}/{rule.category.value}/{rule.tax_year}",
            {"rate": str(rule.rate), "min": str(rule.min_income), "actor": actor},
        )

    def add_allowance(self, allowance: TaxAllowance, actor: str = "system") -> None:
        self._allowances.append(allowance)
        self._audit(
            "allowance.created",
            f"{allowance.allowance_type}/{allowance.category.value}/{allowance.tax_year}",
            {"amount": str(allowance.amount), "actor": actor},
        )

    def add_penalty_rule(self, rule: PenaltyRule, actor: str = "system") -> None:
        self._penalty_rules.append(rule)
        self._audit(
            "penalty_rule.created",
            f"{rule.tax_type.value}/{rule.kind.value}",
            {"name": rule.name, "actor": actor},
        )

    def add_excise_rate(self, rate: ExciseRate, actor: str = "system") -> None:
        self._excise_rates.append(rate)
        self._audit(
            "excise_rate.created",
            rate.product_code,
            {"rate": str(rate.rate), "actor": actor},
        )

    def supersede_penalty_rule(
        self, old: PenaltyRule, replacement: PenaltyRule, actor: str = "system"
    ) -> None:
        """Deactivate ``old`` and add ``replacement`` with a later effective date."""
        if replacement.effective_date <= old.effective_date:
            raise ValueError("Replacement rule must take effect after the rule it supersedes")
        try:
            idx = self._penalty_rules.index(old)
        except ValueError:
            raise ValueError(
                f"Penalty rule not configured: {old.name or old.kind.value}"
            ) from None
        self._penalty_rules[idx] = replace(old, is_active=False)
        self._penalty_rules.append(replacement)
        self._audit(
            "penalty_rule.superseded",
            f"{old.tax_type.value}/{old.kind.value}",
            {
                "old": old.name,
                "new": replacement.name,
                "effective": replacement.effective_date.isoformat(),
                "actor": actor,
            },
        )

    def supersede_tax_rate(
        self, old: TaxRateRule, replacement: TaxRateRule, actor: str = "system"
    ) -> None:
        if replacement.effective_date <= old.effective_date:
            raise ValueError("Replacement rate must take effect after the rate it supersedes")
        try:
            idx = self._tax_rates.index(old)
        except ValueError:
            raise ValueError("Tax rate not configured") from None
        self._tax_rates[idx] = replace(old, is_active=False)
        self._tax_rates.append(replacement)
        self._audit(
            "tax_rate.superseded",
            f"{old.tax_type.value}/{old.category.value}/{old.tax_year}",
            {
                "old_rate": str(old.rate),
                "new_rate": str(replacement.rate),
                "actor": actor,
            },
        )

    def penalty_rules(self) -> list[PenaltyRule]:
        """All configured rule rows, including deactivated ones."""
        return list(self._penalty_rules)
