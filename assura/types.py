"""
Assura Data Model

The records exchanged between the attestation service, the verifier and the
ledger environment. Claims and signed claims are immutable once built.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .hashing import from_hex, normalize_address, to_bytes32, to_hex


MAX_SCORE = 1000
UINT256_MAX = 2 ** 256 - 1


def _require_uint(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{name} out of uint256 range")
    return value


@dataclass(frozen=True)
class Claim:
    """
    The attested payload (``AttestedData``).

    Exactly these three fields are covered by the signature.
    """
    score: int
    issued_at: int
    context_id: int

    def __post_init__(self):
        _require_uint("score", self.score)
        _require_uint("issued_at", self.issued_at)
        _require_uint("context_id", self.context_id)
        if self.score > MAX_SCORE:
            raise ValueError(f"score must be within [0, {MAX_SCORE}]")

    def to_dict(self) -> Dict[str, str]:
        return {
            "score": str(self.score),
            "timeAtWhichAttested": str(self.issued_at),
            "chainId": str(self.context_id),
        }


@dataclass(frozen=True)
class SignedClaim:
    """A claim bundle (``ComplianceData``): the only artifact crossing trust domains."""
    subject: str
    policy_key: bytes
    signature: bytes
    claim: Claim

    def __post_init__(self):
        object.__setattr__(self, "subject", normalize_address(self.subject))
        object.__setattr__(self, "policy_key", to_bytes32(self.policy_key))
        if not isinstance(self.signature, (bytes, bytearray)):
            raise ValueError("signature must be bytes")
        object.__setattr__(self, "signature", bytes(self.signature))
        if not isinstance(self.claim, Claim):
            raise ValueError("claim must be a Claim")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedClaim":
        """Build from the camelCase form produced by ``to_dict``."""
        attested = data["actualAttestedData"]
        return cls(
            subject=data["userAddress"],
            policy_key=data["key"],
            signature=from_hex(data["signedAttestedDataWithTEESignature"]),
            claim=Claim(
                score=int(attested["score"]),
                issued_at=int(attested["timeAtWhichAttested"]),
                context_id=int(attested["chainId"]),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userAddress": self.subject,
            "key": to_hex(self.policy_key),
            "signedAttestedDataWithTEESignature": to_hex(self.signature),
            "actualAttestedData": self.claim.to_dict(),
        }


@dataclass(frozen=True)
class Policy:
    """
    Resource-side requirements (``VerifyingData``).

    ``expiry`` 0 never expires; ``context_id`` 0 accepts any context.
    """
    min_score: int = 0
    expiry: int = 0
    context_id: int = 0

    def __post_init__(self):
        _require_uint("min_score", self.min_score)
        _require_uint("expiry", self.expiry)
        _require_uint("context_id", self.context_id)

    def to_dict(self) -> Dict[str, int]:
        return {"score": self.min_score, "expiry": self.expiry, "chainId": self.context_id}


class BypassState(str, Enum):
    """Lifecycle of a bypass entry. An absent entry has no state."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"


@dataclass(frozen=True)
class BypassEntry:
    """
    Delayed-access grant for (beneficiary, resource, policy key).

    ``allowed`` is informational; only ``now >= expiry`` makes the entry
    usable, and a consumed entry is never usable again.
    """
    expiry: int
    nonce: int
    allowed: bool = True
    consumed: bool = False

    def state(self, now: int) -> BypassState:
        if self.consumed:
            return BypassState.CONSUMED
        if now >= self.expiry:
            return BypassState.ACTIVE
        return BypassState.PENDING

    def is_active(self, now: int) -> bool:
        return self.state(now) == BypassState.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expiry": self.expiry,
            "nonce": self.nonce,
            "allowed": self.allowed,
            "consumed": self.consumed,
        }


@dataclass(frozen=True)
class LedgerRecord:
    """One issued attestation, as kept in the append-only ledger."""
    subject: str
    score: int
    issued_at: int
    context_id: int
    signature: bytes
    signer_address: str
    policy_key: bytes = field(default=b"\x00" * 32)

    def __post_init__(self):
        object.__setattr__(self, "subject", normalize_address(self.subject))
        object.__setattr__(self, "signer_address", normalize_address(self.signer_address))
        object.__setattr__(self, "policy_key", to_bytes32(self.policy_key))

    @property
    def claim(self) -> Claim:
        return Claim(score=self.score, issued_at=self.issued_at, context_id=self.context_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userAddress": self.subject,
            "score": self.score,
            "timeAtWhichAttested": self.issued_at,
            "chainId": self.context_id,
            "signature": to_hex(self.signature),
            "teeAddress": self.signer_address,
            "key": to_hex(self.policy_key),
        }


@dataclass(frozen=True)
class Registration:
    """Outcome of the optional username side-channel."""
    subject: str
    username: str
    created: bool
    existing_username: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "username": self.existing_username or self.username,
            "created": self.created,
        }
