"""
Compliance Engine
=================

A tax and compliance calculation toolkit for tax-practice backends:
liabilities, penalties and interest, compliance scoring, and deadline
monitoring with escalating alerts.

Modules:
    config      - Environment-driven engine settings
    errors      - Error taxonomy and the calculation Result type
    audit       - Audit sinks for rule changes and overrides
    rates       - Rate tables, allowances and penalty rules
    penalties   - Penalty and interest engine
    calculator  - Income tax, GST, payroll tax and excise duty
    compliance  - Compliance score and issue detection
    monitor     - Deadline monitoring state machine
    statistics  - Portfolio statistics over monitored items
    cli         - Command-line interface
"""

__version__ = "1.0.0"

from compliance_engine.calculator import TaxCalculator
from compliance_engine.compliance import ComplianceScorer
from compliance_engine.config import EngineSettings, get_settings
from compliance_engine.errors import Result
from compliance_engine.monitor import DeadlineMonitor
from compliance_engine.penalties import PenaltyEngine
from compliance_engine.rates import RateProvider

__all__ = [
    "ComplianceScorer",
    "DeadlineMonitor",
    "EngineSettings",
    "PenaltyEngine",
    "RateProvider",
    "Result",
    "TaxCalculator",
    "get_settings",
]
