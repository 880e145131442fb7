#!/usr/bin/env python3
"""
Compliance Engine - Entry Point

Computes tax liabilities, prices late penalties and interest, and runs
deadline-monitoring passes that escalate alerts as due dates approach.

Usage:
    python main.py income-tax --income 8000000 --category individual
    python main.py gst --supplies 2000000 --input-tax 100000 --due 2025-02-15 --filed 2025-03-20
    python main.py payroll --file data/employees.csv
    python main.py excise --file data/products.csv
    python main.py penalty --tax-type income-tax --kind late-payment --amount 1000000 --due 2025-01-01 --actual 2025-02-15
    python main.py interest --amount 500000 --due 2025-01-01 --paid 2025-03-02
    python main.py rates --year 2025
    python main.py monitor --file data/obligations.csv --today 2026-03-24
"""

from compliance_engine.cli import main

if __name__ == "__main__":
    main()
