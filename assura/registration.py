"""
Username registration side-channel.

Registration never blocks issuance: a subject that is already registered,
or a username that is already taken, is reported as ``created=False``.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .hashing import normalize_address
from .types import Registration


class UsernameRegistry(ABC):
    """Maps subjects to usernames, first writer wins."""

    @abstractmethod
    def register(self, subject: str, username: str) -> Registration:
        pass

    @abstractmethod
    def lookup(self, subject: str) -> Optional[str]:
        pass


class InMemoryUsernameRegistry(UsernameRegistry):
    """
    In-memory registry for development/testing.

    Use the SQLite registry in ``assura_tee.db`` for the service.
    """

    def __init__(self):
        self._by_subject: Dict[str, str] = {}
        self._by_username: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, subject: str, username: str) -> Registration:
        subject = normalize_address(subject)
        with self._lock:
            existing = self._by_subject.get(subject)
            if existing is not None:
                return Registration(subject, username, created=False, existing_username=existing)
            if username in self._by_username:
                return Registration(subject, username, created=False)
            self._by_subject[subject] = username
            self._by_username[username] = subject
            return Registration(subject, username, created=True)

    def lookup(self, subject: str) -> Optional[str]:
        with self._lock:
            return self._by_subject.get(normalize_address(subject))
