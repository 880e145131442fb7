"""
Command-line interface for the Compliance Engine.

Provides subcommands for tax calculation, penalty and interest pricing,
rate table inspection, and a deadline-monitoring pass over a CSV of
obligations.
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from compliance_engine.calculator import (
    ExciseDutyRequest,
    GstRequest,
    IncomeTaxRequest,
    PayrollTaxRequest,
    PenaltySummary,
    TaxCalculator,
    employees_from_rows,
    excise_items_from_rows,
)
from compliance_engine.config import get_settings
from compliance_engine.errors import Result
from compliance_engine.monitor import AlertStatus, DeadlineMonitor
from compliance_engine.penalties import PenaltyCalculationResult, PenaltyEngine
from compliance_engine.rates import (
    FixedAmount,
    PenaltyKind,
    RateProvider,
    TaxpayerCategory,
    TaxType,
    pricing_rate,
)

console = Console()

TAX_TYPES: dict[str, TaxType] = {
    "income-tax": TaxType.INCOME_TAX,
    "gst": TaxType.GST,
    "payroll": TaxType.PAYROLL_TAX,
    "excise": TaxType.EXCISE_DUTY,
}

PENALTY_KINDS: dict[str, PenaltyKind] = {
    "late-filing": PenaltyKind.LATE_FILING,
    "late-payment": PenaltyKind.LATE_PAYMENT,
    "non-filing": PenaltyKind.NON_FILING,
    "under-declaration": PenaltyKind.UNDER_DECLARATION,
}

CATEGORIES: dict[str, TaxpayerCategory] = {c.value.lower(): c for c in TaxpayerCategory}


def _sle(amount: Decimal) -> str:
    return f"{amount:,.2f} {get_settings().currency}"


def _decimal(value: Optional[str], name: str) -> Decimal:
    try:
        return Decimal(value) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        console.print(f"[red]Invalid amount for {name}: {value}[/red]")
        sys.exit(1)


def _date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date (expected YYYY-MM-DD): {value}[/red]")
        sys.exit(1)


def _load_csv(path: str) -> list[dict]:
    csv_path = Path(path)
    if not csv_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)
    with open(csv_path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def _unwrap(result: Result):
    """Print the failure reason and exit, or return the value."""
    if not result.is_success:
        console.print(
            Panel(
                result.message,
                title="[red]Calculation failed[/red]",
                border_style="red",
            )
        )
        sys.exit(1)
    return result.value


def _print_penalties(summary: PenaltySummary) -> None:
    if not summary.items:
        return
    table = Table(
        title=f"Penalties ({summary.days_late} days late)",
        box=box.ROUNDED,
        show_lines=True,
    )
    table.add_column("Kind", style="bold")
    table.add_column("Description")
    table.add_column("Rate", justify="right")
    table.add_column("Amount", justify="right", style="bold red")
    for p in summary.items:
        table.add_row(
            p.kind.value,
            p.description,
            f"{p.rate:.4f}%" if p.rate is not None else "-",
            _sle(p.amount),
        )
    console.print(table)


def _print_penalty_result(result: PenaltyCalculationResult, title: str) -> None:
    steps = "\n".join(f"  {i}. {s}" for i, s in enumerate(result.calculation_steps, 1))
    console.print(
        Panel(
            f"[bold]Base Amount:[/bold] {_sle(result.base_amount)}\n"
            f"[bold]Days Overdue:[/bold] {result.days_overdue}\n"
            f"[bold]Amount:[/bold] {_sle(result.amount)}\n"
            f"[bold]Method:[/bold] {result.method or '-'}\n"
            f"[bold]Legal Reference:[/bold] {result.legal_reference}\n\n"
            f"[bold]Calculation Steps:[/bold]\n{steps}",
            title=title,
            border_style="blue",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: income-tax
# -----------------------------------------------------------------------


def cmd_income_tax(args: argparse.Namespace) -> None:
    """Calculate income tax for one taxpayer and year."""
    calc = TaxCalculator()
    result = _unwrap(
        calc.calculate_income_tax(
            IncomeTaxRequest(
                tax_year=args.year,
                category=CATEGORIES[args.category],
                gross_income=_decimal(args.income, "--income"),
                deductions=_decimal(args.deductions, "--deductions"),
                due_date=_date(args.due),
                payment_date=_date(args.paid),
            )
        )
    )

    table = Table(title="Tax Brackets", box=box.ROUNDED)
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Taxed", justify="right")
    table.add_column("Tax", justify="right", style="bold")
    for line in result.brackets:
        table.add_row(
            f"{line.min_income:,.0f}",
            f"{line.max_income:,.0f}" if line.max_income is not None else "and above",
            f"{line.rate}%",
            _sle(line.taxable_amount),
            _sle(line.tax_amount),
        )
    console.print(table)
    _print_penalties(result.penalties)
    console.print(
        Panel(
            f"[bold]Gross Income:[/bold] {_sle(result.gross_income)}\n"
            f"[bold]Allowances:[/bold] {_sle(result.allowances)}\n"
            f"[bold]Taxable Income:[/bold] {_sle(result.taxable_income)}\n"
            f"[bold]Bracket Tax:[/bold] {_sle(result.bracket_tax)}\n"
            f"[bold]Minimum Tax:[/bold] {_sle(result.minimum_tax)}\n"
            f"[bold]Tax Due:[/bold] {_sle(result.tax_due)}\n"
            f"[bold]Effective Rate:[/bold] {result.effective_rate:.2%}\n"
            f"[bold]Total Amount Due:[/bold] {_sle(result.total_amount_due)}",
            title=f"Income Tax {result.tax_year} - {result.category.value}",
            border_style="green",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: gst
# -----------------------------------------------------------------------


def cmd_gst(args: argparse.Namespace) -> None:
    """Calculate GST for a return period."""
    calc = TaxCalculator()
    result = _unwrap(
        calc.calculate_gst(
            GstRequest(
                tax_year=args.year,
                taxable_supplies=_decimal(args.supplies, "--supplies"),
                input_tax=_decimal(args.input_tax, "--input-tax"),
                is_export=args.export,
                import_value=_decimal(args.import_value, "--import-value"),
                due_date=_date(args.due),
                filing_date=_date(args.filed),
            )
        )
    )
    _print_penalties(result.penalties)
    console.print(
        Panel(
            f"[bold]Rate:[/bold] {result.rate}%{' (zero-rated export)' if args.export else ''}\n"
            f"[bold]Taxable Supplies:[/bold] {_sle(result.taxable_supplies)}\n"
            f"[bold]Output GST:[/bold] {_sle(result.output_gst)}\n"
            f"[bold]Input Tax:[/bold] {_sle(result.input_tax)}\n"
            f"[bold]Reverse Charge:[/bold] {_sle(result.reverse_charge_gst)}\n"
            f"[bold]Net Liability:[/bold] {_sle(result.net_liability)}\n"
            f"[bold]Total Amount Due:[/bold] {_sle(result.total_amount_due)}",
            title=f"GST {result.tax_year}",
            border_style="green",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: payroll
# -----------------------------------------------------------------------


def cmd_payroll(args: argparse.Namespace) -> None:
    """Calculate PAYE and skills levy from an employee CSV."""
    rows = _load_csv(args.file)
    try:
        employees = employees_from_rows(rows)
    except (KeyError, InvalidOperation) as e:
        console.print(f"[red]Bad employee row: {e}[/red]")
        sys.exit(1)

    calc = TaxCalculator()
    result = _unwrap(
        calc.calculate_payroll_tax(
            PayrollTaxRequest(
                tax_year=args.year,
                employees=employees,
                total_payroll=_decimal(args.total_payroll, "--total-payroll")
                if args.total_payroll
                else None,
                due_date=_date(args.due),
                remittance_date=_date(args.remitted),
            )
        )
    )

    table = Table(title="Employee PAYE", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Annual Salary", justify="right")
    table.add_column("Monthly Taxable", justify="right")
    table.add_column("Annual PAYE", justify="right", style="bold")
    for c in result.contributions:
        table.add_row(
            c.employee_id,
            c.name,
            _sle(c.annual_salary),
            _sle(c.taxable_income),
            _sle(c.paye_tax),
        )
    console.print(table)
    _print_penalties(result.penalties)
    console.print(
        Panel(
            f"[bold]Total Payroll:[/bold] {_sle(result.total_payroll)}\n"
            f"[bold]PAYE:[/bold] {_sle(result.paye_total)}\n"
            f"[bold]Skills Levy ({result.levy_rate}%):[/bold] {_sle(result.skills_levy)}\n"
            f"[bold]Payroll Tax Due:[/bold] {_sle(result.payroll_tax_due)}\n"
            f"[bold]Total Amount Due:[/bold] {_sle(result.total_amount_due)}",
            title=f"Payroll Tax {result.tax_year}",
            border_style="green",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: excise
# -----------------------------------------------------------------------


def cmd_excise(args: argparse.Namespace) -> None:
    """Calculate excise duty from a product CSV."""
    rows = _load_csv(args.file)
    try:
        items = excise_items_from_rows(rows)
    except (KeyError, InvalidOperation) as e:
        console.print(f"[red]Bad product row: {e}[/red]")
        sys.exit(1)

    calc = TaxCalculator()
    result = _unwrap(
        calc.calculate_excise_duty(
            ExciseDutyRequest(
                tax_year=args.year,
                items=items,
                due_date=_date(args.due),
                payment_date=_date(args.paid),
            )
        )
    )

    table = Table(title="Excise Duty", box=box.ROUNDED)
    table.add_column("Code", style="bold")
    table.add_column("Product")
    table.add_column("Category")
    table.add_column("Quantity", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Duty", justify="right", style="bold")
    for line in result.lines:
        table.add_row(
            line.product_code,
            line.product_name,
            line.product_category,
            f"{line.quantity:,}",
            f"{line.rate} ({line.rate_type.value})",
            _sle(line.duty),
        )
    console.print(table)
    for code in result.unmatched_codes:
        console.print(f"[yellow]Warning: no excise rate for {code}; not assessed[/yellow]")
    _print_penalties(result.penalties)
    console.print(
        Panel(
            f"[bold]Total Duty:[/bold] {_sle(result.total_duty)}\n"
            f"[bold]Total Amount Due:[/bold] {_sle(result.total_amount_due)}",
            title=f"Excise Duty {result.tax_year}",
            border_style="green",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: penalty / interest
# -----------------------------------------------------------------------


def cmd_penalty(args: argparse.Namespace) -> None:
    """Price a single penalty with its calculation steps."""
    engine = PenaltyEngine()
    tax_type = TAX_TYPES[args.tax_type]
    kind = PENALTY_KINDS[args.kind]
    category = CATEGORIES[args.category] if args.category else None
    amount = _decimal(args.amount, "--amount")
    due = _date(args.due)
    actual = _date(args.actual)

    if kind == PenaltyKind.UNDER_DECLARATION:
        result = engine.calculate_under_declaration_penalty(
            tax_type, _decimal(args.declared, "--declared"), amount, category
        )
    elif due is None:
        console.print("[red]Provide --due for time-based penalties[/red]")
        sys.exit(1)
    elif kind == PenaltyKind.LATE_FILING:
        result = engine.calculate_late_filing_penalty(tax_type, amount, due, actual, category)
    elif kind == PenaltyKind.LATE_PAYMENT:
        result = engine.calculate_late_payment_penalty(tax_type, amount, due, actual, category)
    else:
        result = engine.calculate_non_filing_penalty(tax_type, amount, due, actual, category)

    _print_penalty_result(_unwrap(result), f"{tax_type.value} {kind.label} penalty")


def cmd_interest(args: argparse.Namespace) -> None:
    """Simple daily interest on an unpaid balance."""
    engine = PenaltyEngine()
    due = _date(args.due)
    if due is None:
        console.print("[red]Provide --due[/red]")
        sys.exit(1)
    result = engine.calculate_interest(
        _decimal(args.amount, "--amount"), due, _date(args.paid)
    )
    _print_penalty_result(_unwrap(result), "Interest on unpaid tax")


# -----------------------------------------------------------------------
# Subcommand: rates
# -----------------------------------------------------------------------


def cmd_rates(args: argparse.Namespace) -> None:
    """Display income tax bands and penalty rules in force."""
    provider = RateProvider()
    categories = [CATEGORIES[args.category]] if args.category else list(TaxpayerCategory)

    table = Table(title=f"Income Tax Rates {args.year}", box=box.ROUNDED)
    table.add_column("Category", style="bold")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Description")
    for cat in categories:
        for band in provider.resolve_tax_rates(args.year, TaxType.INCOME_TAX, cat):
            table.add_row(
                cat.value,
                f"{band.min_income:,.0f}",
                f"{band.max_income:,.0f}" if band.max_income is not None else "and above",
                f"{band.rate}%",
                band.description,
            )
    console.print(table)

    console.print(
        Panel(
            f"[bold]GST:[/bold] {provider.resolve_gst_rate(args.year)}%\n"
            f"[bold]Skills Levy:[/bold] {provider.resolve_levy_rate(args.year)}%\n"
            f"[bold]PAYE Threshold (monthly):[/bold] "
            f"{_sle(provider.resolve_tax_free_threshold(args.year))}",
            title="Flat Rates",
            border_style="cyan",
        )
    )

    table = Table(title="Penalty Rules", box=box.SIMPLE)
    table.add_column("Tax Type", style="bold")
    table.add_column("Kind")
    table.add_column("Pricing", justify="right")
    table.add_column("Grace", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Reference")
    for tax_type in TaxType:
        for kind in PENALTY_KINDS.values():
            resolved = provider.resolve_penalty_rule(tax_type, kind)
            if not resolved.is_success:
                continue
            rule = resolved.value
            pricing = (
                _sle(rule.pricing.amount)
                if isinstance(rule.pricing, FixedAmount)
                else f"{pricing_rate(rule.pricing)}% {type(rule.pricing).__name__}"
            )
            table.add_row(
                tax_type.value,
                kind.label,
                pricing,
                f"{rule.grace_period_days or 0}d",
                _sle(rule.minimum_amount) if rule.minimum_amount is not None else "-",
                _sle(rule.maximum_amount) if rule.maximum_amount is not None else "-",
                rule.legal_reference or "-",
            )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: monitor
# -----------------------------------------------------------------------


def cmd_monitor(args: argparse.Namespace) -> None:
    """
    Run one monitoring pass over obligations loaded from CSV.

    Expected columns: client_id, tax_year, tax_type, due_date, amount,
                      recipient, category
    """
    monitor = DeadlineMonitor()
    by_value = {t.value.lower(): t for t in TaxType} | TAX_TYPES

    for i, row in enumerate(_load_csv(args.file)):
        try:
            category = (row.get("category") or "").strip().lower()
            monitor.register(
                client_id=row["client_id"],
                tax_year=int(row["tax_year"]),
                tax_type=by_value[row["tax_type"].strip().lower()],
                due_date=date.fromisoformat(row["due_date"]),
                amount=Decimal(row["amount"]),
                recipient=row.get("recipient", ""),
                category=CATEGORIES[category] if category else None,
            )
        except (KeyError, ValueError, InvalidOperation) as e:
            console.print(f"[yellow]Skipping row {i + 1}: {e}[/yellow]")

    summary = monitor.run(_date(args.today))

    if summary.alerts:
        table = Table(title="Alerts Emitted", box=box.ROUNDED, show_lines=True)
        table.add_column("Type", style="bold")
        table.add_column("Recipient")
        table.add_column("Message")
        table.add_column("Status", justify="center")
        for alert in summary.alerts:
            color = "green" if alert.status == AlertStatus.SENT else "red"
            table.add_row(
                alert.alert_type.value,
                alert.recipient or "-",
                alert.message,
                f"[{color}]{alert.status.value}[/{color}]",
            )
        console.print(table)
    else:
        console.print("[green]No alerts due.[/green]")

    overdue = monitor.overdue_items()
    if overdue:
        table = Table(title="Overdue Obligations", box=box.ROUNDED, border_style="red")
        table.add_column("Client", style="bold")
        table.add_column("Tax Type")
        table.add_column("Due")
        table.add_column("Days Overdue", justify="right")
        table.add_column("Est. Penalty", justify="right")
        for item in overdue:
            table.add_row(
                item.client_id,
                item.tax_type.value,
                item.due_date.isoformat(),
                str(item.days_overdue),
                _sle(item.estimated_penalty) if item.estimated_penalty is not None else "-",
            )
        console.print(table)

    stats = monitor.statistics()
    console.print(
        Panel(
            f"[bold]Items Scanned:[/bold] {summary.items_scanned}\n"
            f"[bold]Alerts:[/bold] {summary.alerts_emitted} "
            f"({summary.failed_deliveries} failed)\n"
            f"[bold]Errors:[/bold] {len(summary.errors)}\n"
            f"[bold]Overdue:[/bold] {stats.overdue_count}\n"
            f"[bold]Estimated Penalties:[/bold] {_sle(stats.total_penalties)}",
            title=f"Monitoring Run {summary.run_date.isoformat()}",
            border_style="green",
        )
    )


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    this_year = date.today().year
    parser = argparse.ArgumentParser(
        prog="compliance-engine",
        description="Tax & Compliance Engine - tax liabilities, penalties, interest and deadline monitoring",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # income-tax
    it_p = subparsers.add_parser("income-tax", help="Calculate income tax")
    it_p.add_argument("--income", required=True, help="Gross income")
    it_p.add_argument("--deductions", help="Deductions")
    it_p.add_argument("--category", choices=sorted(CATEGORIES), default="individual")
    it_p.add_argument("--year", type=int, default=this_year)
    it_p.add_argument("--due", help="Payment due date (YYYY-MM-DD)")
    it_p.add_argument("--paid", help="Actual payment date (YYYY-MM-DD)")
    it_p.set_defaults(func=cmd_income_tax)

    # gst
    gst_p = subparsers.add_parser("gst", help="Calculate GST")
    gst_p.add_argument("--supplies", required=True, help="Taxable supplies")
    gst_p.add_argument("--input-tax", help="Input tax credit")
    gst_p.add_argument("--import-value", help="Value of imported services (reverse charge)")
    gst_p.add_argument("--export", action="store_true", help="Zero-rated export")
    gst_p.add_argument("--year", type=int, default=this_year)
    gst_p.add_argument("--due", help="Filing due date (YYYY-MM-DD)")
    gst_p.add_argument("--filed", help="Actual filing date (YYYY-MM-DD)")
    gst_p.set_defaults(func=cmd_gst)

    # payroll
    pay_p = subparsers.add_parser("payroll", help="Calculate payroll tax")
    pay_p.add_argument(
        "--file", "-f", required=True, help="CSV with employee_id, name, annual_salary"
    )
    pay_p.add_argument("--total-payroll", help="Total payroll (default: sum of salaries)")
    pay_p.add_argument("--year", type=int, default=this_year)
    pay_p.add_argument("--due", help="Remittance due date (YYYY-MM-DD)")
    pay_p.add_argument("--remitted", help="Actual remittance date (YYYY-MM-DD)")
    pay_p.set_defaults(func=cmd_payroll)

    # excise
    exc_p = subparsers.add_parser("excise", help="Calculate excise duty")
    exc_p.add_argument(
        "--file", "-f", required=True, help="CSV with product_code, quantity, value"
    )
    exc_p.add_argument("--year", type=int, default=this_year)
    exc_p.add_argument("--due", help="Payment due date (YYYY-MM-DD)")
    exc_p.add_argument("--paid", help="Actual payment date (YYYY-MM-DD)")
    exc_p.set_defaults(func=cmd_excise)

    # penalty
    pen_p = subparsers.add_parser("penalty", help="Price a single penalty")
    pen_p.add_argument("--tax-type", choices=sorted(TAX_TYPES), required=True)
    pen_p.add_argument("--kind", choices=sorted(PENALTY_KINDS), required=True)
    pen_p.add_argument("--amount", required=True, help="Base amount (actual amount for under-declaration)")
    pen_p.add_argument("--declared", help="Declared amount (under-declaration only)")
    pen_p.add_argument("--due", help="Due date (YYYY-MM-DD)")
    pen_p.add_argument("--actual", help="Actual filing/payment date (default: today)")
    pen_p.add_argument("--category", choices=sorted(CATEGORIES))
    pen_p.set_defaults(func=cmd_penalty)

    # interest
    int_p = subparsers.add_parser("interest", help="Interest on an unpaid balance")
    int_p.add_argument("--amount", required=True, help="Unpaid amount")
    int_p.add_argument("--due", required=True, help="Due date (YYYY-MM-DD)")
    int_p.add_argument("--paid", help="Payment date (default: today)")
    int_p.set_defaults(func=cmd_interest)

    # rates
    rates_p = subparsers.add_parser("rates", help="View rate tables and penalty rules")
    rates_p.add_argument("--year", type=int, default=this_year)
    rates_p.add_argument("--category", choices=sorted(CATEGORIES))
    rates_p.set_defaults(func=cmd_rates)

    # monitor
    mon_p = subparsers.add_parser("monitor", help="Run a deadline monitoring pass")
    mon_p.add_argument("--file", "-f", required=True, help="CSV of obligations")
    mon_p.add_argument("--today", help="Run as of this date (YYYY-MM-DD)")
    mon_p.set_defaults(func=cmd_monitor)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level="DEBUG" if args.verbose else get_settings().log_level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)
