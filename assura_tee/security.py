"""
Security module for the Assura attestation service.

Provides input validation, sanitization, and request-id helpers.
"""

import re
import uuid
from typing import Any, Dict, List, Optional

from assura import normalize_address, to_bytes32


# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^0x[a-fA-F0-9]*$')

MAX_USERNAME_LENGTH = 64
MAX_COMPLIANCE_DATA_LENGTH = 8192
MAX_CHAIN_ID = 2 ** 256 - 1


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_address(value: Any, field_name: str) -> str:
    """
    Validate a ledger address.

    Returns:
        The checksummed address

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    try:
        return normalize_address(value.strip())
    except ValueError:
        raise ValidationError(field_name, "must be a valid address")


def validate_chain_id(value: Any, field_name: str = "chainId") -> int:
    """Validate a chain id (non-negative uint256)."""
    if isinstance(value, bool):
        raise ValidationError(field_name, "must be an integer")
    try:
        chain_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be an integer")
    if chain_id < 0 or chain_id > MAX_CHAIN_ID:
        raise ValidationError(field_name, "out of range")
    return chain_id


def validate_policy_key(value: Any, field_name: str = "key") -> bytes:
    """Validate a policy key: 0x hex of at most 32 bytes."""
    if not isinstance(value, str) or not HEX_PATTERN.match(value):
        raise ValidationError(field_name, "must be 0x-prefixed hex")
    try:
        return to_bytes32(value)
    except ValueError as e:
        raise ValidationError(field_name, str(e))


def validate_username(value: Any, field_name: str = "username") -> str:
    """
    Validate a username.

    Usernames are passed through verbatim; only type and length are checked.
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    if not value.strip():
        raise ValidationError(field_name, "cannot be empty")
    if len(value) > MAX_USERNAME_LENGTH:
        raise ValidationError(field_name, f"must not exceed {MAX_USERNAME_LENGTH} characters")
    return value


def validate_compliance_data(value: Any, field_name: str = "complianceData") -> str:
    """
    Bound the size of a transport-form bundle.

    Content is not checked here; malformed bundles are rejected by the
    verifier with DECODE_ERROR.
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    value = value.strip()
    if len(value) > MAX_COMPLIANCE_DATA_LENGTH:
        raise ValidationError(field_name, f"must not exceed {MAX_COMPLIANCE_DATA_LENGTH} characters")
    return value


# ============================================================
# Request ID Generation
# ============================================================

def generate_request_id() -> str:
    """Generate a unique request ID for audit trail correlation."""
    return str(uuid.uuid4())


# ============================================================
# Audit Logging Helpers
# ============================================================

SENSITIVE_FIELDS = [
    "signature",
    "signedAttestedDataWithTEESignature",
    "complianceData",
    "private_key_hex",
    "private_key",
    "secret",
    "password",
    "token",
]


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 12:
                result[key] = value[:6] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
