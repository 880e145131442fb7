"""
Engine settings.

Values here are the statutory fallbacks used when the rate store has no
configured row for a year. Override any of them with environment
variables prefixed ``COMPLIANCE_ENGINE_``.
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Defaults and policy knobs for the calculation engine."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_ENGINE_",
        extra="ignore",
    )

    currency: str = Field(default="SLE", description="Reporting currency code")
    default_legal_reference: str = Field(default="Sierra Leone Finance Act")

    gst_rate_percent: Decimal = Field(default=Decimal("15"), ge=0)
    skills_levy_rate_percent: Decimal = Field(default=Decimal("1"), ge=0)
    paye_tax_free_threshold: Decimal = Field(
        default=Decimal("600000"),
        ge=0,
        description="Monthly PAYE tax-free threshold",
    )

    interest_rate_annual_percent: Decimal = Field(default=Decimal("18"), ge=0)
    interest_days_per_year: int = Field(default=365, gt=0)

    minimum_tax_rate_large: Decimal = Field(
        default=Decimal("0.005"), description="Share of gross income"
    )
    minimum_tax_rate_medium: Decimal = Field(
        default=Decimal("0.0025"), description="Share of gross income"
    )

    non_filing_threshold_days: int = Field(default=30, ge=0)
    filing_deadline_month: int = Field(default=3, ge=1, le=12)
    filing_deadline_day: int = Field(default=31, ge=1, le=31)

    log_level: str = Field(default="INFO")


@lru_cache
def get_settings() -> EngineSettings:
    """Return the process-wide settings loaded from the environment."""
    return EngineSettings()
