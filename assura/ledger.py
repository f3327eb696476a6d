"""
Assura Attestation Ledger

Append-only, per-subject history of issued attestations. Insertion order is
chronological order. Appends for one subject are serialized; appends for
different subjects proceed independently.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import LedgerWriteError
from .hashing import normalize_address
from .locking import KeyedLock
from .types import LedgerRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerStats:
    total_subjects: int
    total_records: int

    def to_dict(self) -> Dict[str, int]:
        return {"totalSubjects": self.total_subjects, "totalRecords": self.total_records}


class LedgerStore(ABC):
    """
    Storage boundary for the ledger.

    Implementations must keep records for a subject in append order and
    must raise on write failure rather than drop the record.
    """

    @abstractmethod
    def append(self, record: LedgerRecord) -> None:
        pass

    @abstractmethod
    def records(self, subject: str) -> List[LedgerRecord]:
        pass

    @abstractmethod
    def latest(self, subject: str) -> Optional[LedgerRecord]:
        pass

    @abstractmethod
    def counts(self) -> LedgerStats:
        pass


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory ledger store for development/testing.

    WARNING: Not persistent across restarts.
    """

    def __init__(self):
        self._records: Dict[str, List[LedgerRecord]] = {}
        self._lock = threading.Lock()

    def append(self, record: LedgerRecord) -> None:
        with self._lock:
            self._records.setdefault(record.subject, []).append(record)

    def records(self, subject: str) -> List[LedgerRecord]:
        with self._lock:
            return list(self._records.get(subject, []))

    def latest(self, subject: str) -> Optional[LedgerRecord]:
        with self._lock:
            history = self._records.get(subject)
            return history[-1] if history else None

    def counts(self) -> LedgerStats:
        with self._lock:
            return LedgerStats(
                total_subjects=len(self._records),
                total_records=sum(len(v) for v in self._records.values()),
            )


class AttestationLedger:
    """Append-only multimap subject -> records."""

    def __init__(self, store: Optional[LedgerStore] = None):
        self.store = store or InMemoryLedgerStore()
        self._locks = KeyedLock()

    def append(self, record: LedgerRecord) -> None:
        """
        Append a record for its subject.

        Raises:
            LedgerWriteError: the store failed; the record was not kept
        """
        with self._locks.hold(record.subject):
            try:
                self.store.append(record)
            except LedgerWriteError:
                raise
            except Exception as e:
                logger.error("Ledger append failed for %s: %s", record.subject, e)
                raise LedgerWriteError(f"Could not record attestation for {record.subject}") from e

    def latest(self, subject: str) -> Optional[LedgerRecord]:
        return self.store.latest(normalize_address(subject))

    def all(self, subject: str) -> List[LedgerRecord]:
        return self.store.records(normalize_address(subject))

    def stats(self) -> LedgerStats:
        return self.store.counts()
