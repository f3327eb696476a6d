"""
Assura Bypass Ledger

Time-delayed alternate path to acceptance when a claim's score falls short
of a policy. Entries are keyed by (beneficiary, resource, policy key) and
move through a small state machine:

    absent -> PENDING (now < expiry) -> ACTIVE (now >= expiry) -> CONSUMED
    CONSUMED -> PENDING on the next failure, with nonce + 1

Repeated failures while PENDING or ACTIVE never reset the timer.
The wait is linear in the score deficit: 10 time units per point.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

from .errors import BypassNotYetActive
from .hashing import normalize_address, now_epoch, to_bytes32
from .locking import KeyedLock
from .types import BypassEntry, BypassState


logger = logging.getLogger(__name__)

BYPASS_SECONDS_PER_POINT = 10

BypassKey = Tuple[str, str, bytes]


def bypass_key(beneficiary: str, resource: str, policy_key: Union[bytes, str]) -> BypassKey:
    return (normalize_address(beneficiary), normalize_address(resource), to_bytes32(policy_key))


class BypassStore(ABC):
    """get/put storage boundary for bypass entries."""

    @abstractmethod
    def get(self, key: BypassKey) -> Optional[BypassEntry]:
        pass

    @abstractmethod
    def put(self, key: BypassKey, entry: BypassEntry) -> None:
        pass


class InMemoryBypassStore(BypassStore):
    """In-memory bypass store for development/testing."""

    def __init__(self):
        self._entries: Dict[BypassKey, BypassEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: BypassKey) -> Optional[BypassEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: BypassKey, entry: BypassEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BypassOutcome(str, Enum):
    """What a failed score check did to the bypass entry."""
    OPENED = "OPENED"        # new pending entry created
    PENDING = "PENDING"      # existing entry still waiting, left unchanged
    GRANTED = "GRANTED"      # active entry consumed, access granted


class BypassLedger:
    """Per-key serialized bypass bookkeeping."""

    def __init__(
        self,
        store: Optional[BypassStore] = None,
        clock: Callable[[], int] = now_epoch,
        on_open: Optional[Callable[[BypassKey, BypassEntry], None]] = None,
    ):
        self.store = store or InMemoryBypassStore()
        self._clock = clock
        self._locks = KeyedLock()
        self._on_open = on_open

    def get(self, beneficiary: str, resource: str, policy_key: Union[bytes, str]) -> Optional[BypassEntry]:
        return self.store.get(bypass_key(beneficiary, resource, policy_key))

    def _open(self, key: BypassKey, previous: Optional[BypassEntry], score_deficit: int, now: int) -> BypassEntry:
        if score_deficit < 0:
            raise ValueError("score_deficit must be non-negative")
        nonce = 1 if previous is None else previous.nonce + 1
        entry = BypassEntry(
            expiry=now + score_deficit * BYPASS_SECONDS_PER_POINT,
            nonce=nonce,
            allowed=True,
        )
        self.store.put(key, entry)
        logger.info(
            "BYPASS_ENTRY_CREATED beneficiary=%s resource=%s expiry=%d nonce=%d",
            key[0], key[1], entry.expiry, entry.nonce,
        )
        if self._on_open is not None:
            self._on_open(key, entry)
        return entry

    def open_or_get(
        self,
        beneficiary: str,
        resource: str,
        policy_key: Union[bytes, str],
        score_deficit: int,
        now: Optional[int] = None,
    ) -> BypassEntry:
        """
        Return the current entry, creating one if absent or consumed.

        A pending or active entry is returned unchanged.
        """
        key = bypass_key(beneficiary, resource, policy_key)
        now = self._clock() if now is None else now
        with self._locks.hold(key):
            entry = self.store.get(key)
            if entry is None or entry.state(now) == BypassState.CONSUMED:
                return self._open(key, entry, score_deficit, now)
            return entry

    def consume(
        self,
        beneficiary: str,
        resource: str,
        policy_key: Union[bytes, str],
        now: Optional[int] = None,
    ) -> BypassEntry:
        """
        Mark an active entry consumed.

        Raises:
            BypassNotYetActive: the entry is still pending
            LookupError: there is no usable entry
        """
        key = bypass_key(beneficiary, resource, policy_key)
        now = self._clock() if now is None else now
        with self._locks.hold(key):
            entry = self.store.get(key)
            if entry is None:
                raise LookupError("No bypass entry")
            state = entry.state(now)
            if state == BypassState.PENDING:
                raise BypassNotYetActive(entry.expiry, now)
            if state == BypassState.CONSUMED:
                raise LookupError("Bypass entry already consumed")
            consumed = replace(entry, consumed=True)
            self.store.put(key, consumed)
            return consumed

    def settle_failure(
        self,
        beneficiary: str,
        resource: str,
        policy_key: Union[bytes, str],
        score_deficit: int,
        now: Optional[int] = None,
    ) -> Tuple[BypassEntry, BypassOutcome]:
        """
        Apply one failed score check atomically.

        ACTIVE entries are consumed and grant access; PENDING entries are
        left alone; absent or consumed entries open a new pending entry.
        """
        key = bypass_key(beneficiary, resource, policy_key)
        now = self._clock() if now is None else now
        with self._locks.hold(key):
            entry = self.store.get(key)
            if entry is not None:
                state = entry.state(now)
                if state == BypassState.ACTIVE:
                    consumed = replace(entry, consumed=True)
                    self.store.put(key, consumed)
                    return consumed, BypassOutcome.GRANTED
                if state == BypassState.PENDING:
                    return entry, BypassOutcome.PENDING
            return self._open(key, entry, score_deficit, now), BypassOutcome.OPENED
