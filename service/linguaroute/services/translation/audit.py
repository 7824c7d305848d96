"""Audit trail of routed translations."""

import hashlib
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from linguaroute.models.translation import AuditRecord

logger = logging.getLogger(__name__)


def fingerprint(text: str) -> str:
    """SHA-256 hex digest of the source text."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> AuditRecord: ...


class AuditLogger:
    """In-memory audit sink.

    Keeps only the source fingerprint unless `fingerprint_only` is disabled.
    """

    def __init__(
        self,
        fingerprint_only: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.fingerprint_only = fingerprint_only
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def record(self, record: AuditRecord) -> AuditRecord:
        stored = replace(
            record,
            timestamp=record.timestamp or self._clock(),
            source_text=None if self.fingerprint_only else record.source_text,
            metadata=dict(record.metadata),
        )
        with self._lock:
            self._records.append(stored)
        logger.debug(
            f"Audit record: tenant={stored.tenant_id} model={stored.model_id} "
            f"latency={stored.latency_ms}ms"
        )
        return stored

    def query(
        self,
        tenant_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AuditRecord]:
        """Return records for a tenant within an inclusive time range."""
        with self._lock:
            records = list(self._records)
        return [
            record
            for record in records
            if (not tenant_id or record.tenant_id == tenant_id)
            and (start is None or record.timestamp >= start)
            and (end is None or record.timestamp <= end)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
