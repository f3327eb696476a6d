"""
Assura Verification

Decides whether a claim bundle satisfies a resource's policy, without
access to the issuer. The predicate runs these checks in order and stops
at the first failure:

1. Policy expiry
2. Policy context vs. runtime context
3. Bundle decoding
4. Policy key match
5. Signature from the trusted signer (EIP-712 OR legacy EIP-191)
6. Claim context vs. runtime context (only when the policy pins one)
7. Minimum score

Every rejection carries a typed reason. ``ComplianceVerifier`` wraps the
predicate with the mutable environment state: policies, the trusted signer
and the bypass ledger.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from eth_account import Account
from eth_account.messages import SignableMessage

from .bypass import BypassLedger, BypassOutcome
from .codec import decode
from .errors import ComplianceRejected, DecodeError, Unauthorized
from .hashing import normalize_address, now_epoch, to_bytes32, to_hex
from .policy import PolicyRegistry
from .scoring import score_deficit
from .signing import Eip712Domain, legacy_message, message_digest, typed_message
from .types import BypassEntry, Claim, Policy, SignedClaim


logger = logging.getLogger(__name__)

# (signer, digest, signature) -> bool, e.g. an ERC-1271 isValidSignature call
ContractChecker = Callable[[str, bytes, bytes], bool]

Bundle = Union[bytes, str, SignedClaim]


class RejectionReason(str, Enum):
    """Why a bundle was rejected."""
    POLICY_EXPIRED = "POLICY_EXPIRED"
    CONTEXT_MISMATCH = "CONTEXT_MISMATCH"
    DECODE_ERROR = "DECODE_ERROR"
    KEY_MISMATCH = "KEY_MISMATCH"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    SCORE_INSUFFICIENT = "SCORE_INSUFFICIENT"
    BYPASS_NOT_YET_ACTIVE = "BYPASS_NOT_YET_ACTIVE"


@dataclass
class VerificationResult:
    """Result of verifying a claim bundle."""
    accepted: bool
    reason: Optional[RejectionReason] = None
    details: Dict[str, Any] = field(default_factory=dict)
    bundle: Optional[SignedClaim] = None

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def accept(cls, bundle: SignedClaim, details: Dict[str, Any] = None) -> "VerificationResult":
        return cls(accepted=True, details=details or {}, bundle=bundle)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        details: Dict[str, Any] = None,
        bundle: Optional[SignedClaim] = None,
    ) -> "VerificationResult":
        return cls(accepted=False, reason=reason, details=details or {}, bundle=bundle)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "details": self.details,
        }


def _signed_by(
    message: SignableMessage,
    signature: bytes,
    trusted_signer: str,
    contract_checker: Optional[ContractChecker],
) -> bool:
    try:
        if Account.recover_message(message, signature=signature) == trusted_signer:
            return True
    except Exception:
        pass
    if contract_checker is None:
        return False
    try:
        return bool(contract_checker(trusted_signer, message_digest(message), signature))
    except Exception as e:
        logger.warning("Contract signature check failed: %s", e)
        return False


def typed_signature_valid(
    claim: Claim,
    signature: bytes,
    trusted_signer: str,
    domain: Eip712Domain,
    contract_checker: Optional[ContractChecker] = None,
) -> bool:
    """EIP-712 path."""
    return _signed_by(typed_message(claim, domain), signature, trusted_signer, contract_checker)


def legacy_signature_valid(
    claim: Claim,
    signature: bytes,
    trusted_signer: str,
    contract_checker: Optional[ContractChecker] = None,
) -> bool:
    """EIP-191 personal-message path."""
    return _signed_by(legacy_message(claim), signature, trusted_signer, contract_checker)


def signature_valid(
    claim: Claim,
    signature: bytes,
    trusted_signer: str,
    domain: Eip712Domain,
    contract_checker: Optional[ContractChecker] = None,
) -> bool:
    trusted_signer = normalize_address(trusted_signer)
    return (
        typed_signature_valid(claim, signature, trusted_signer, domain, contract_checker)
        or legacy_signature_valid(claim, signature, trusted_signer, contract_checker)
    )


def verify_claim(
    protected_resource: str,
    policy_key: Union[bytes, str],
    bundle: Bundle,
    policy: Policy,
    *,
    trusted_signer: str,
    domain: Eip712Domain,
    runtime_context: int,
    now: int,
    contract_checker: Optional[ContractChecker] = None,
) -> VerificationResult:
    """
    Verify a bundle against a policy. Pure: nothing is mutated.

    Args:
        protected_resource: Address of the resource being accessed
        policy_key: Key the resource checks against
        bundle: Encoded bundle (bytes or 0x hex) or a decoded SignedClaim
        policy: The resource's policy for ``policy_key``
        trusted_signer: Address of the attestation signer
        domain: EIP-712 domain the signer uses
        runtime_context: Context id of the executing environment
        now: Current timestamp

    Returns:
        VerificationResult with a reason when rejected

    Raises:
        ValueError: ``protected_resource`` or ``trusted_signer`` is not an address
    """
    protected_resource = normalize_address(protected_resource)
    trusted_signer = normalize_address(trusted_signer)

    if policy.expiry != 0 and policy.expiry < now:
        return VerificationResult.reject(
            RejectionReason.POLICY_EXPIRED,
            {"expiry": policy.expiry, "now": now},
        )

    if policy.context_id != 0 and policy.context_id != runtime_context:
        return VerificationResult.reject(
            RejectionReason.CONTEXT_MISMATCH,
            {"source": "policy", "required": policy.context_id, "observed": runtime_context},
        )

    if isinstance(bundle, SignedClaim):
        claim_bundle = bundle
    else:
        try:
            claim_bundle = decode(bundle)
        except DecodeError as e:
            return VerificationResult.reject(RejectionReason.DECODE_ERROR, {"error": str(e)})

    expected_key = to_bytes32(policy_key)
    if claim_bundle.policy_key != expected_key:
        return VerificationResult.reject(
            RejectionReason.KEY_MISMATCH,
            {"required": to_hex(expected_key), "observed": to_hex(claim_bundle.policy_key)},
            bundle=claim_bundle,
        )

    claim = claim_bundle.claim
    if not signature_valid(claim, claim_bundle.signature, trusted_signer, domain, contract_checker):
        return VerificationResult.reject(
            RejectionReason.SIGNATURE_INVALID,
            {"trusted_signer": trusted_signer},
            bundle=claim_bundle,
        )

    if policy.context_id != 0 and claim.context_id != runtime_context:
        return VerificationResult.reject(
            RejectionReason.CONTEXT_MISMATCH,
            {"source": "claim", "required": runtime_context, "observed": claim.context_id},
            bundle=claim_bundle,
        )

    if claim.score < policy.min_score:
        return VerificationResult.reject(
            RejectionReason.SCORE_INSUFFICIENT,
            {
                "required": policy.min_score,
                "observed": claim.score,
                "deficit": score_deficit(policy.min_score, claim.score),
            },
            bundle=claim_bundle,
        )

    return VerificationResult.accept(claim_bundle, {"resource": protected_resource})


class ComplianceVerifier:
    """
    Verifier environment state.

    Usage:
        verifier = ComplianceVerifier(owner, signer_address, domain, context_id=84532)
        verifier.set_policy(vault, vault, key, Policy(min_score=100))

        result = verifier.verify_with_bypass(vault, key, encoded_bundle)
        if not result:
            print(result.reason)
    """

    def __init__(
        self,
        owner: str,
        trusted_signer: str,
        domain: Eip712Domain,
        context_id: int,
        clock: Callable[[], int] = now_epoch,
        policies: Optional[PolicyRegistry] = None,
        bypass: Optional[BypassLedger] = None,
        contract_checker: Optional[ContractChecker] = None,
    ):
        self.owner = normalize_address(owner)
        self._trusted_signer = normalize_address(trusted_signer)
        self.domain = domain
        self.context_id = context_id
        self.policies = policies or PolicyRegistry()
        self.bypass = bypass or BypassLedger(clock=clock)
        self.contract_checker = contract_checker
        self._clock = clock

    @property
    def trusted_signer(self) -> str:
        return self._trusted_signer

    def update_signer(self, caller: str, new_signer: str) -> None:
        if normalize_address(caller) != self.owner:
            raise Unauthorized("Only the owner may change the trusted signer")
        old, self._trusted_signer = self._trusted_signer, normalize_address(new_signer)
        logger.warning("Trusted signer changed from %s to %s", old, self._trusted_signer)

    def set_policy(self, caller: str, resource: str, policy_key: Union[bytes, str], policy: Policy) -> None:
        self.policies.set(caller, resource, policy_key, policy)

    def get_policy(self, resource: str, policy_key: Union[bytes, str]) -> Policy:
        return self.policies.get(resource, policy_key)

    def bypass_entry(self, beneficiary: str, resource: str, policy_key: Union[bytes, str]) -> Optional[BypassEntry]:
        return self.bypass.get(beneficiary, resource, policy_key)

    def _check(self, resource: str, policy_key: Union[bytes, str], bundle: Bundle, now: int) -> VerificationResult:
        return verify_claim(
            resource,
            policy_key,
            bundle,
            self.get_policy(resource, policy_key),
            trusted_signer=self._trusted_signer,
            domain=self.domain,
            runtime_context=self.context_id,
            now=now,
            contract_checker=self.contract_checker,
        )

    def verify(self, resource: str, policy_key: Union[bytes, str], bundle: Bundle) -> VerificationResult:
        """Direct verification; never touches bypass state."""
        result = self._check(resource, policy_key, bundle, self._clock())
        logger.debug("Verification for %s: %s", resource, result.reason or "ACCEPTED")
        return result

    def verify_with_bypass(self, resource: str, policy_key: Union[bytes, str], bundle: Bundle) -> VerificationResult:
        """
        Verification that falls back to the bypass ledger on low scores.

        Only SCORE_INSUFFICIENT rejections touch bypass state. The first
        such failure opens a pending entry and still rejects; once the
        entry is active the next attempt is accepted and consumes it.
        """
        now = self._clock()
        result = self._check(resource, policy_key, bundle, now)
        if result.accepted or result.reason != RejectionReason.SCORE_INSUFFICIENT:
            return result

        claim_bundle = result.bundle
        deficit = result.details["deficit"]
        entry, outcome = self.bypass.settle_failure(
            claim_bundle.subject, resource, policy_key, deficit, now=now
        )
        details = dict(result.details, bypass=entry.to_dict())

        if outcome == BypassOutcome.GRANTED:
            logger.info("Bypass granted to %s on %s (nonce=%d)", claim_bundle.subject, resource, entry.nonce)
            return VerificationResult.accept(claim_bundle, details)
        if outcome == BypassOutcome.PENDING:
            return VerificationResult.reject(RejectionReason.BYPASS_NOT_YET_ACTIVE, details, bundle=claim_bundle)
        return VerificationResult.reject(RejectionReason.SCORE_INSUFFICIENT, details, bundle=claim_bundle)

    def require(
        self,
        resource: str,
        policy_key: Union[bytes, str],
        bundle: Bundle,
        bypass: bool = False,
    ) -> SignedClaim:
        """Verify and return the decoded bundle, or raise ComplianceRejected."""
        check = self.verify_with_bypass if bypass else self.verify
        result = check(resource, policy_key, bundle)
        if not result.accepted:
            raise ComplianceRejected(result)
        return result.bundle
