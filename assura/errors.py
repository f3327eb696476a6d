"""
Assura Error Types

Fatal conditions raise one of these exceptions. Verification outcomes are
not exceptions: the verifier returns a typed rejection reason instead, and
``ComplianceRejected`` wraps such a result for callers that want to raise.
"""

from typing import Any, Optional


class AssuraError(Exception):
    """Base class for all Assura errors."""


class SigningUnavailable(AssuraError):
    """The signing key cannot be loaded or used. Never falls back."""


class DecodeError(AssuraError):
    """A compliance bundle is truncated or malformed."""


class LedgerWriteError(AssuraError):
    """The attestation ledger could not persist a record."""


class BypassNotYetActive(AssuraError):
    """A bypass entry was consumed before its expiry."""

    def __init__(self, expiry: int, now: int):
        self.expiry = expiry
        self.now = now
        super().__init__(f"Bypass not active until {expiry} (now {now})")


class Unauthorized(AssuraError):
    """Caller is not allowed to mutate the requested policy."""


class ComplianceRejected(AssuraError):
    """Raised by ``require`` helpers when verification rejects a bundle."""

    def __init__(self, result: Any):
        self.result = result
        reason: Optional[Any] = getattr(result, "reason", None)
        code = reason.value if reason is not None else "UNKNOWN"
        super().__init__(f"Compliance check failed: {code}")
