"""Smoke tests for the command-line interface."""

from pathlib import Path

import pytest

from compliance_engine.cli import build_parser, main

DATA = Path(__file__).resolve().parent.parent / "data"


def test_income_tax_command(capsys):
    main(["income-tax", "--income", "8000000", "--category", "individual", "--year", "2025"])
    out = capsys.readouterr().out
    assert "120,000.00 SLE" in out


def test_penalty_command_prints_steps(capsys):
    main([
        "penalty", "--tax-type", "income-tax", "--kind", "late-payment",
        "--amount", "1000000", "--due", "2025-01-01", "--actual", "2025-02-15",
    ])
    out = capsys.readouterr().out
    assert "20,000.00 SLE" in out
    assert "Effective days overdue: 15" in out


def test_bad_amount_exits(capsys):
    with pytest.raises(SystemExit):
        main(["interest", "--amount", "lots", "--due", "2025-01-01"])


def test_monitor_command(tmp_path, capsys):
    csv_file = tmp_path / "obligations.csv"
    csv_file.write_text(
        "client_id,tax_year,tax_type,due_date,amount,recipient,category\n"
        "CL-001,2025,GST,2025-03-31,250000,ops@client.sl,small\n"
        "CL-002,2025,nonsense,2025-03-31,1000,,\n"
    )
    main(["monitor", "--file", str(csv_file), "--today", "2025-03-24"])
    out = capsys.readouterr().out
    assert "7DayWarning" in out
    assert "Skipping row 2" in out


def test_parser_requires_known_subcommand():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["refunds"])


# ── Bundled sample files ─────────────────────────────────────────────


def test_sample_payroll_file(capsys):
    main(["payroll", "--file", str(DATA / "employees.csv"), "--year", "2025"])
    out = capsys.readouterr().out
    assert "Bad employee row" not in out
    assert "116,400,000.00 SLE" in out


def test_sample_excise_file(capsys):
    main(["excise", "--file", str(DATA / "products.csv"), "--year", "2025"])
    out = capsys.readouterr().out
    assert "Total Duty" in out


def test_sample_obligations_file(capsys):
    main(["monitor", "--file", str(DATA / "obligations.csv"), "--today", "2026-03-24"])
    out = capsys.readouterr().out
    assert "Skipping row" not in out
    assert "7DayWarning" in out
