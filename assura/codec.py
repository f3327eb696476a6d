"""
Assura Compliance Codec

ABI encoding of a claim bundle. The layout is a single tuple and is the
compatibility contract between issuer and verifier:

    (address subject, bytes32 policyKey, bytes signature,
     (uint256 score, uint256 issuedAt, uint256 contextId))

Any change to this tuple is a breaking wire-format change.
"""

from typing import Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError

from .errors import DecodeError
from .hashing import from_hex, to_hex
from .types import Claim, SignedClaim


COMPLIANCE_DATA_TYPE = "(address,bytes32,bytes,(uint256,uint256,uint256))"


def encode(bundle: SignedClaim) -> bytes:
    """Encode a signed claim to its wire bytes."""
    claim = bundle.claim
    try:
        return abi_encode(
            [COMPLIANCE_DATA_TYPE],
            [(
                bundle.subject,
                bundle.policy_key,
                bundle.signature,
                (claim.score, claim.issued_at, claim.context_id),
            )],
        )
    except EncodingError as e:
        raise ValueError(f"Bundle cannot be encoded: {e}") from e


def decode(data: Union[bytes, str]) -> SignedClaim:
    """
    Decode wire bytes (or 0x hex) into a signed claim.

    Truncated, padded, trailing or otherwise non-canonical input is
    rejected; no field is ever defaulted.

    Raises:
        DecodeError
    """
    if isinstance(data, str):
        try:
            data = from_hex(data)
        except ValueError as e:
            raise DecodeError(str(e)) from e
    if not isinstance(data, (bytes, bytearray)) or not data:
        raise DecodeError("Empty compliance data")
    data = bytes(data)

    try:
        (subject, policy_key, signature, (score, issued_at, context_id)), = abi_decode(
            [COMPLIANCE_DATA_TYPE], data
        )
    except (DecodingError, ValueError, TypeError, OverflowError) as e:
        raise DecodeError(f"Malformed compliance data: {e}") from e

    try:
        bundle = SignedClaim(
            subject=subject,
            policy_key=policy_key,
            signature=signature,
            claim=Claim(score=score, issued_at=issued_at, context_id=context_id),
        )
    except ValueError as e:
        raise DecodeError(f"Invalid compliance data: {e}") from e

    if encode(bundle) != data:
        raise DecodeError("Non-canonical compliance data encoding")
    return bundle


def encode_hex(bundle: SignedClaim) -> str:
    return to_hex(encode(bundle))
