"""
Assura Attestation Signing

Builds claims and signs them with secp256k1 keys.

Two encodings cover exactly the three claim fields:

- EIP-712 typed data (primary): domain separated by verifier name,
  version, chain id and verifying contract.
- EIP-191 personal message (legacy): the Keccak-256 hash of the
  ABI-encoded ``(score, issuedAt, contextId)`` tuple, prefixed with
  ``"\\x19Ethereum Signed Message:\\n32"``.

The signer computes both digests itself; key providers only sign digests.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data

from .errors import SigningUnavailable
from .hashing import ZERO_KEY, keccak256, normalize_address, now_epoch, to_bytes32, to_hex
from .ledger import AttestationLedger
from .registration import UsernameRegistry
from .scoring import derive_score
from .types import Claim, LedgerRecord, Registration, SignedClaim


logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65

ATTESTED_DATA_FIELDS = [
    {"name": "score", "type": "uint256"},
    {"name": "timeAtWhichAttested", "type": "uint256"},
    {"name": "chainId", "type": "uint256"},
]

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


class SignatureScheme(str, Enum):
    """Signature encodings accepted by the verifier."""
    EIP712 = "eip712"
    EIP191 = "eip191"


@dataclass(frozen=True)
class Eip712Domain:
    """EIP-712 domain shared by the signer and the verifier."""
    chain_id: int
    verifying_contract: str
    name: str = "AssuraVerifier"
    version: str = "1"

    def __post_init__(self):
        object.__setattr__(self, "verifying_contract", normalize_address(self.verifying_contract))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def typed_message(claim: Claim, domain: Eip712Domain) -> SignableMessage:
    """EIP-712 signable message for a claim."""
    return encode_typed_data(full_message={
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            "AttestedData": ATTESTED_DATA_FIELDS,
        },
        "primaryType": "AttestedData",
        "domain": domain.to_dict(),
        "message": {
            "score": claim.score,
            "timeAtWhichAttested": claim.issued_at,
            "chainId": claim.context_id,
        },
    })


def legacy_data_hash(claim: Claim) -> bytes:
    """keccak256(abi.encode(score, issuedAt, contextId))."""
    encoded = abi_encode(
        ["uint256", "uint256", "uint256"],
        [claim.score, claim.issued_at, claim.context_id],
    )
    return keccak256(encoded)


def legacy_message(claim: Claim) -> SignableMessage:
    """EIP-191 personal message over the legacy data hash."""
    return encode_defunct(primitive=legacy_data_hash(claim))


def message_digest(message: SignableMessage) -> bytes:
    """The 32-byte digest actually signed for an EIP-191 envelope."""
    return keccak256(b"\x19" + message.version + message.header + message.body)


def claim_digest(claim: Claim, domain: Eip712Domain, scheme: SignatureScheme) -> bytes:
    if scheme == SignatureScheme.EIP712:
        return message_digest(typed_message(claim, domain))
    return message_digest(legacy_message(claim))


class KeyProvider(ABC):
    """Signing capability: an address and a digest signer."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address of the signing key."""

    @abstractmethod
    def sign_digest(self, digest: bytes) -> bytes:
        """
        Sign a 32-byte digest.

        Returns:
            65-byte ``r || s || v`` signature with v in {27, 28}
        """

    @property
    def kid(self) -> str:
        return self.address


class LocalKeyProvider(KeyProvider):
    """In-process secp256k1 key."""

    def __init__(self, private_key: Union[bytes, str], kid: Optional[str] = None):
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise SigningUnavailable("Invalid secp256k1 private key") from e
        self._kid = kid

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def kid(self) -> str:
        return self._kid or self._account.address

    def sign_digest(self, digest: bytes) -> bytes:
        if len(digest) != 32:
            raise ValueError("digest must be 32 bytes")
        signed = Account.unsafe_sign_hash(digest, self._account.key)
        return bytes(signed.signature)


def generate_private_key() -> bytes:
    """Generate a fresh secp256k1 private key."""
    return bytes(Account.create().key)


def write_key_file(path: str, private_key: bytes, kid: Optional[str] = None) -> Dict[str, str]:
    """
    Write a JSON key file ``{kid, address, private_key_hex}``.

    The file is created with mode 0600.
    """
    provider = LocalKeyProvider(private_key, kid=kid)
    data = {
        "kid": provider.kid,
        "address": provider.address,
        "private_key_hex": to_hex(bytes(private_key)),
    }
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return data


def read_key_file(path: str) -> LocalKeyProvider:
    """Load a key written by ``write_key_file``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return LocalKeyProvider(raw["private_key_hex"], kid=raw.get("kid"))
    except SigningUnavailable:
        raise
    except (OSError, ValueError, KeyError) as e:
        raise SigningUnavailable(f"Cannot load signing key from {path}: {e}") from e


@dataclass(frozen=True)
class IssuedAttestation:
    """A signed bundle plus the registration outcome, if a username was sent."""
    bundle: SignedClaim
    registration: Optional[Registration] = None


class AttestationSigner:
    """
    The trusted signer.

    Usage:
        signer = AttestationSigner(LocalKeyProvider(key), domain, ledger)
        bundle = signer.issue("0xAbc...", context_id=84532)
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        domain: Eip712Domain,
        ledger: AttestationLedger,
        clock: Callable[[], int] = now_epoch,
        scheme: SignatureScheme = SignatureScheme.EIP712,
        default_policy_key: bytes = ZERO_KEY,
        registry: Optional[UsernameRegistry] = None,
    ):
        if key_provider is None:
            raise SigningUnavailable("No signing key provider configured")
        self.key_provider = key_provider
        self.domain = domain
        self.ledger = ledger
        self.scheme = SignatureScheme(scheme)
        self.default_policy_key = to_bytes32(default_policy_key)
        self.registry = registry
        self._clock = clock

    @property
    def address(self) -> str:
        try:
            return normalize_address(self.key_provider.address)
        except SigningUnavailable:
            raise
        except Exception as e:
            raise SigningUnavailable(f"Signer address unavailable: {e}") from e

    def sign_claim(self, claim: Claim, scheme: Optional[SignatureScheme] = None) -> bytes:
        digest = claim_digest(claim, self.domain, SignatureScheme(scheme or self.scheme))
        try:
            signature = self.key_provider.sign_digest(digest)
        except SigningUnavailable:
            raise
        except Exception as e:
            raise SigningUnavailable(f"Signing failed: {e}") from e
        if len(signature) != SIGNATURE_LENGTH:
            raise SigningUnavailable(f"Signer returned {len(signature)} bytes, expected 65")
        return bytes(signature)

    def attest(
        self,
        subject: str,
        context_id: int,
        username: Optional[str] = None,
        policy_key: Optional[Union[bytes, str]] = None,
    ) -> IssuedAttestation:
        """
        Derive, sign and record an attestation for ``subject``.

        The score is always derived here; there is no way to pass one in.
        Raises SigningUnavailable or LedgerWriteError; nothing is returned
        unless the ledger append succeeded, and a username is registered
        only after it did.
        """
        subject = normalize_address(subject)
        signer_address = self.address

        claim = Claim(
            score=derive_score(subject),
            issued_at=self._clock(),
            context_id=context_id,
        )
        signature = self.sign_claim(claim)
        key = self.default_policy_key if policy_key is None else to_bytes32(policy_key)

        self.ledger.append(LedgerRecord(
            subject=subject,
            score=claim.score,
            issued_at=claim.issued_at,
            context_id=claim.context_id,
            signature=signature,
            signer_address=signer_address,
            policy_key=key,
        ))
        logger.debug("Issued attestation for %s (score=%d)", subject, claim.score)

        # Only an issued attestation registers a username.
        registration = None
        if username and self.registry is not None:
            registration = self.registry.register(subject, username)
            if not registration.created:
                logger.info("Subject %s already registered, continuing", subject)

        bundle = SignedClaim(subject=subject, policy_key=key, signature=signature, claim=claim)
        return IssuedAttestation(bundle=bundle, registration=registration)

    def issue(
        self,
        subject: str,
        context_id: int,
        username: Optional[str] = None,
        policy_key: Optional[Union[bytes, str]] = None,
    ) -> SignedClaim:
        return self.attest(subject, context_id, username=username, policy_key=policy_key).bundle
