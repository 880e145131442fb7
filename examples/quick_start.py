#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates basic usage of the TaxCalculator for an individual's income
tax, a late-paid liability with penalties, and one monitoring pass.

Usage:
    python examples/quick_start.py
"""

from datetime import date, timedelta
from decimal import Decimal

from compliance_engine.calculator import IncomeTaxRequest, TaxCalculator
from compliance_engine.monitor import DeadlineMonitor
from compliance_engine.rates import TaxpayerCategory, TaxType


def main() -> None:
    calculator = TaxCalculator()

    # 8,000,000 SLE individual income, paid on time
    result = calculator.calculate_income_tax(
        IncomeTaxRequest(
            tax_year=2025,
            category=TaxpayerCategory.INDIVIDUAL,
            gross_income=Decimal("8000000"),
        )
    ).unwrap()

    print(f"Gross Income:   {result.gross_income:,.2f}")
    print(f"Taxable Income: {result.taxable_income:,.2f}")
    for line in result.brackets:
        print(f"  {line.rate:>5}% on {line.taxable_amount:,.2f} = {line.tax_amount:,.2f}")
    print(f"Tax Due:        {result.tax_due:,.2f}")
    print(f"Effective Rate: {result.effective_rate:.2%}")

    # Same liability paid 45 days late
    print("\n--- Late Payment ---")
    late = calculator.calculate_income_tax(
        IncomeTaxRequest(
            tax_year=2025,
            category=TaxpayerCategory.INDIVIDUAL,
            gross_income=Decimal("8000000"),
            due_date=date(2026, 3, 31),
            payment_date=date(2026, 5, 15),
        )
    ).unwrap()
    for penalty in late.penalties.items:
        print(f"{penalty.kind.value}: {penalty.amount:,.2f}")
        for step in penalty.calculation_steps:
            print(f"    {step}")
    print(f"Total Amount Due: {late.total_amount_due:,.2f}")

    # Monitoring: an obligation due in 7 days
    print("\n--- Deadline Monitor ---")
    monitor = DeadlineMonitor()
    monitor.register(
        client_id="CL-001",
        tax_year=2025,
        tax_type=TaxType.GST,
        due_date=date.today() + timedelta(days=7),
        amount=Decimal("250000"),
        recipient="accounts@example.com",
    )
    summary = monitor.run()
    for alert in summary.alerts:
        print(f"{alert.alert_type.value}: {alert.message}")
    print(f"Second run alerts: {monitor.run().alerts_emitted}")


if __name__ == "__main__":
    main()
