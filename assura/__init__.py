"""
Assura Compliance Attestation Protocol

Version: 1.0.0

Signed, time-bounded, score-bearing claims that gate access to protected
operations. A trusted signer derives a score for a subject and signs it;
an independent verifier, with no access to the signer, accepts or rejects
the encoded bundle against a resource's policy. When the score falls
short, a bypass entry opens a time-delayed path to acceptance.

Usage:
    from assura import (
        AttestationLedger,
        AttestationSigner,
        ComplianceVerifier,
        Eip712Domain,
        LocalKeyProvider,
        Policy,
        encode,
    )

    domain = Eip712Domain(chain_id=84532, verifying_contract=verifier_address)

    # Issuer side
    signer = AttestationSigner(LocalKeyProvider(private_key), domain, AttestationLedger())
    bundle = signer.issue(user_address, context_id=84532)
    wire = encode(bundle)

    # Verifier side
    verifier = ComplianceVerifier(owner, signer.address, domain, context_id=84532)
    verifier.set_policy(vault, vault, key, Policy(min_score=100))
    result = verifier.verify_with_bypass(vault, key, wire)

    if result.accepted:
        # proceed
        ...
    else:
        print(result.reason.value)
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    AssuraError,
    SigningUnavailable,
    DecodeError,
    LedgerWriteError,
    BypassNotYetActive,
    Unauthorized,
    ComplianceRejected,
)

# Hashing and hex helpers
from .hashing import (
    ZERO_KEY,
    keccak256,
    normalize_address,
    to_bytes32,
    selector_key,
    to_hex,
    from_hex,
    now_epoch,
)

# Data model
from .types import (
    MAX_SCORE,
    Claim,
    SignedClaim,
    Policy,
    BypassEntry,
    BypassState,
    LedgerRecord,
    Registration,
)

# Score derivation
from .scoring import derive_score, score_deficit

# Signing
from .signing import (
    SignatureScheme,
    Eip712Domain,
    KeyProvider,
    LocalKeyProvider,
    AttestationSigner,
    IssuedAttestation,
    typed_message,
    legacy_message,
    claim_digest,
    generate_private_key,
    write_key_file,
    read_key_file,
)

# Ledger and registration
from .ledger import AttestationLedger, LedgerStore, InMemoryLedgerStore, LedgerStats
from .registration import UsernameRegistry, InMemoryUsernameRegistry

# Codec
from .codec import encode, decode, encode_hex

# Verification
from .policy import PolicyRegistry, UNSET_POLICY
from .bypass import (
    BYPASS_SECONDS_PER_POINT,
    BypassLedger,
    BypassOutcome,
    BypassStore,
    InMemoryBypassStore,
)
from .verifier import (
    RejectionReason,
    VerificationResult,
    ComplianceVerifier,
    verify_claim,
    signature_valid,
)
from .protected import ProtectedResource, requires_compliance


__all__ = [
    # Version
    "__version__",

    # Errors
    "AssuraError",
    "SigningUnavailable",
    "DecodeError",
    "LedgerWriteError",
    "BypassNotYetActive",
    "Unauthorized",
    "ComplianceRejected",

    # Hashing
    "ZERO_KEY",
    "keccak256",
    "normalize_address",
    "to_bytes32",
    "selector_key",
    "to_hex",
    "from_hex",
    "now_epoch",

    # Data model
    "MAX_SCORE",
    "Claim",
    "SignedClaim",
    "Policy",
    "BypassEntry",
    "BypassState",
    "LedgerRecord",
    "Registration",

    # Scoring
    "derive_score",
    "score_deficit",

    # Signing
    "SignatureScheme",
    "Eip712Domain",
    "KeyProvider",
    "LocalKeyProvider",
    "AttestationSigner",
    "IssuedAttestation",
    "typed_message",
    "legacy_message",
    "claim_digest",
    "generate_private_key",
    "write_key_file",
    "read_key_file",

    # Ledger
    "AttestationLedger",
    "LedgerStore",
    "InMemoryLedgerStore",
    "LedgerStats",
    "UsernameRegistry",
    "InMemoryUsernameRegistry",

    # Codec
    "encode",
    "decode",
    "encode_hex",

    # Verification
    "PolicyRegistry",
    "UNSET_POLICY",
    "BYPASS_SECONDS_PER_POINT",
    "BypassLedger",
    "BypassOutcome",
    "BypassStore",
    "InMemoryBypassStore",
    "RejectionReason",
    "VerificationResult",
    "ComplianceVerifier",
    "verify_claim",
    "signature_valid",
    "ProtectedResource",
    "requires_compliance",
]
