"""
Audit records for Domain Expert requests.

Exactly one record is written per request. Records hold identifiers,
outcome codes and counts only: no SQL text, no credential and no row
contents.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Optional

AUDIT_LOGGER_NAME = "domain_expert.audit"


@dataclass(frozen=True)
class AuditRecord:
    """What happened to one request."""

    timestamp: str
    request_id: str
    domain_id: str
    caller_subject: Optional[str]
    verdict: Optional[str]
    outcome: str
    attempts: int
    row_count: int
    elapsed_ms: float

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


class AuditSink(ABC):
    """Destination for audit records."""

    @abstractmethod
    def emit(self, record: AuditRecord) -> None:
        ...


class LoggingAuditSink(AuditSink):
    """Writes each record as one JSON line to the audit logger."""

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME):
        self._logger = logging.getLogger(logger_name)

    def emit(self, record: AuditRecord) -> None:
        self._logger.info(record.to_json())


class InMemoryAuditSink(AuditSink):
    """Keeps records in a list, for local runs and tests."""

    def __init__(self):
        self.records: List[AuditRecord] = []

    def emit(self, record: AuditRecord) -> None:
        self.records.append(record)
