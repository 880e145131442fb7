"""Audit sink used for rule changes and manual penalty overrides."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(self, action: str, subject: str, details: dict[str, Any]) -> None:
        ...


class LoggingAuditSink:
    """Writes audit entries to the ``compliance_engine.audit`` logger."""

    def record(self, action: str, subject: str, details: dict[str, Any]) -> None:
        logger.info("audit %s %s %s", action, subject, details)


class MemoryAuditSink:
    """Keeps entries in a list; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, str, dict[str, Any]]] = []

    def record(self, action: str, subject: str, details: dict[str, Any]) -> None:
        self.entries.append((action, subject, dict(details)))
