"""Audit facts emitted on every aggregate transition."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional

from .domain import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuditFact:
    """Something an external audit collaborator may want to persist."""

    action: str
    module: str
    record_id: str
    record_name: str
    before: Mapping[str, Any] = field(default_factory=dict)
    after: Mapping[str, Any] = field(default_factory=dict)
    actor: str = "system"
    timestamp: datetime = field(default_factory=utcnow)


AuditSink = Callable[[AuditFact], None]


class AuditTrail:
    """In-memory sink that keeps every fact it receives."""

    def __init__(self) -> None:
        self._facts: List[AuditFact] = []
        self._lock = threading.Lock()

    def __call__(self, fact: AuditFact) -> None:
        with self._lock:
            self._facts.append(fact)

    def __len__(self) -> int:  # pragma: no cover - convenience
        return len(self._facts)

    def facts(
        self, *, module: Optional[str] = None, record_id: Optional[str] = None
    ) -> List[AuditFact]:
        with self._lock:
            return [
                fact
                for fact in self._facts
                if (module is None or fact.module == module)
                and (record_id is None or fact.record_id == record_id)
            ]

    def actions(self, record_id: str) -> List[str]:
        return [fact.action for fact in self.facts(record_id=record_id)]


class LoggingAuditSink:
    """Forwards facts to a standard library logger."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def __call__(self, fact: AuditFact) -> None:
        self._log.info(
            "[%s] %s %s (%s) by %s: %s -> %s",
            fact.module,
            fact.action,
            fact.record_name,
            fact.record_id,
            fact.actor,
            dict(fact.before),
            dict(fact.after),
        )


def publish(sinks: Iterable[AuditSink], facts: Iterable[AuditFact]) -> None:
    facts = list(facts)
    for sink in sinks:
        for fact in facts:
            sink(fact)


__all__ = ["AuditFact", "AuditSink", "AuditTrail", "LoggingAuditSink", "publish"]
