"""
Configuration module for the Assura attestation service.

Environment variables are read once at import. Helpers build the
EIP-712 domain and report which required settings are present.
"""

import os
from pathlib import Path
from typing import Dict

from assura import Eip712Domain, SignatureScheme, ZERO_KEY, to_bytes32

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("ASSURA_ENV", "dev")  # dev|stage|prod

# Persistence
DB_PATH = os.getenv("ASSURA_DB_PATH", "data/assura.db")

# Signing configuration
SIGNER_TYPE = os.getenv("ASSURA_SIGNER", "env")  # env|file|aws_kms
SIGNING_KEY_PATH = os.getenv("SIGNING_KEY_PATH", "secrets/assura_signing_key.json")
KEY_ID = os.getenv("KEY_ID", "")
AWS_KMS_KEY_ID = os.getenv("AWS_KMS_KEY_ID", "")
AWS_REGION = os.getenv("AWS_REGION", "")

# EIP-712 domain
CHAIN_ID = int(os.getenv("CHAIN_ID", "84532"))
VERIFIER_ADDRESS = os.getenv("VERIFIER_ADDRESS", "0x0cd35ce218e0d9ed83a5da919d0e1ce9c60d49a7")
EIP712_NAME = os.getenv("EIP712_NAME", "AssuraVerifier")
EIP712_VERSION = os.getenv("EIP712_VERSION", "1")

SIGNATURE_SCHEME = os.getenv("SIGNATURE_SCHEME", SignatureScheme.EIP712.value)
DEFAULT_POLICY_KEY = os.getenv("DEFAULT_POLICY_KEY", "")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")


# ============================================================
# Derived Settings
# ============================================================

def domain() -> Eip712Domain:
    """EIP-712 domain the service signs under."""
    return Eip712Domain(
        chain_id=CHAIN_ID,
        verifying_contract=VERIFIER_ADDRESS,
        name=EIP712_NAME,
        version=EIP712_VERSION,
    )


def default_policy_key() -> bytes:
    """Policy key placed in bundles when the request names none."""
    return to_bytes32(DEFAULT_POLICY_KEY) if DEFAULT_POLICY_KEY else ZERO_KEY


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate required settings.
    Returns dict of setting -> present/valid.
    """
    checks: Dict[str, bool] = {
        "signature_scheme": SIGNATURE_SCHEME in {s.value for s in SignatureScheme},
        "signer_type": SIGNER_TYPE in ("env", "file", "aws_kms"),
    }

    try:
        domain()
        checks["verifier_address"] = True
    except ValueError:
        checks["verifier_address"] = False

    if SIGNER_TYPE == "file":
        checks["signing_key"] = Path(SIGNING_KEY_PATH).exists()
    elif SIGNER_TYPE == "aws_kms":
        checks["aws_kms_key_id"] = bool(AWS_KMS_KEY_ID)

    if is_production():
        checks["no_local_dev_key"] = os.getenv("ALLOW_LOCAL_DEV") != "true"

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("ASSURA_DEBUG", "").lower() in ("1", "true", "yes")
