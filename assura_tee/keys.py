"""
Key management for the Assura attestation service.

Provides secp256k1 key providers for the attestation signer: an
environment/secret-file key, a JSON key file, and AWS KMS.
"""

import logging
import os
import re
import threading
from pathlib import Path
from typing import Mapping, Optional, Sequence

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_keys import keys as eth_keys

from assura import KeyProvider, LocalKeyProvider, SigningUnavailable, read_key_file

logger = logging.getLogger(__name__)

SECRET_KEY_PATHS = (
    "/run/secrets/private_key",
    "/run/tee/private_key",
    "/secure/private_key",
    os.path.join(".tee", "private_key"),
)

LOCAL_DEV_KEY_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def _with_prefix(key: str) -> str:
    key = key.strip()
    return key if key.startswith("0x") else "0x" + key


def resolve_private_key(
    environ: Optional[Mapping[str, str]] = None,
    search_paths: Sequence[str] = SECRET_KEY_PATHS,
) -> str:
    """
    Find the service's private key.

    Lookup order:
    1. TEE_PRIVATE_KEY, then PRIVATE_KEY
    2. Secret files in ``search_paths``
    3. LOCAL_DEV_SK, only when ALLOW_LOCAL_DEV=true and it is a 32-byte hex key

    Raises:
        SigningUnavailable: nothing found
    """
    env = os.environ if environ is None else environ

    env_key = env.get("TEE_PRIVATE_KEY") or env.get("PRIVATE_KEY")
    if env_key:
        logger.info("Using private key from environment variable")
        return _with_prefix(env_key)

    for path in search_paths:
        try:
            key = Path(path).read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if key:
            logger.info("Using private key from %s", path)
            return _with_prefix(key)

    fallback = env.get("LOCAL_DEV_SK", "")
    if env.get("ALLOW_LOCAL_DEV") == "true" and LOCAL_DEV_KEY_PATTERN.match(fallback):
        logger.warning("Using LOCAL_DEV_SK fallback (development only)")
        return fallback

    raise SigningUnavailable(
        "Private key not found. Set TEE_PRIVATE_KEY, place a key in secure storage, "
        "or enable the local fallback with ALLOW_LOCAL_DEV=true and LOCAL_DEV_SK."
    )


class FileKeyProvider(KeyProvider):
    """Key provider backed by a JSON key file ``{kid, private_key_hex}``."""

    def __init__(self, signing_key_path: str):
        self.path = signing_key_path
        self._key = read_key_file(signing_key_path)

    @property
    def address(self) -> str:
        return self._key.address

    @property
    def kid(self) -> str:
        return self._key.kid

    def sign_digest(self, digest: bytes) -> bytes:
        return self._key.sign_digest(digest)


class AwsKmsSecp256k1Provider(KeyProvider):
    """
    AWS KMS signing provider using ECC_SECG_P256K1 keys.

    Signs 32-byte digests with ``MessageType=DIGEST`` and
    ``ECDSA_SHA_256``. KMS returns DER signatures; these are converted to
    ``r || s || v`` with low-s normalization and v found by recovering the
    public key.
    """

    def __init__(
        self,
        kms_key_id: str,
        region: Optional[str] = None,
        kid: Optional[str] = None,
        client=None,
    ):
        self._kms_key_id = kms_key_id
        self._region = region
        self._kid = kid
        self._client = client
        self._public_key: Optional[eth_keys.PublicKey] = None
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise SigningUnavailable(
                    "boto3 required for AWS KMS signing. Install with: pip install assura[kms]"
                ) from e
            self._client = boto3.client("kms", region_name=self._region or None)
        return self._client

    def _get_public_key(self) -> eth_keys.PublicKey:
        with self._lock:
            if self._public_key is None:
                try:
                    resp = self._get_client().get_public_key(KeyId=self._kms_key_id)
                    public_key = serialization.load_der_public_key(resp["PublicKey"])
                except SigningUnavailable:
                    raise
                except Exception as e:
                    raise SigningUnavailable(f"Cannot load KMS public key: {e}") from e
                if not isinstance(public_key, ec.EllipticCurvePublicKey) or \
                        not isinstance(public_key.curve, ec.SECP256K1):
                    raise SigningUnavailable("KMS key is not a secp256k1 key")
                numbers = public_key.public_numbers()
                self._public_key = eth_keys.PublicKey(
                    numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")
                )
            return self._public_key

    @property
    def address(self) -> str:
        return self._get_public_key().to_checksum_address()

    @property
    def kid(self) -> str:
        return self._kid or self._kms_key_id

    def sign_digest(self, digest: bytes) -> bytes:
        if len(digest) != 32:
            raise ValueError("digest must be 32 bytes")
        try:
            resp = self._get_client().sign(
                KeyId=self._kms_key_id,
                Message=digest,
                MessageType="DIGEST",
                SigningAlgorithm="ECDSA_SHA_256",
            )
        except SigningUnavailable:
            raise
        except Exception as e:
            raise SigningUnavailable(f"KMS signing failed: {e}") from e

        r, s = decode_dss_signature(resp["Signature"])
        if s > SECP256K1_N // 2:
            s = SECP256K1_N - s

        expected = self._get_public_key()
        for v in (0, 1):
            candidate = eth_keys.Signature(vrs=(v, r, s))
            if candidate.recover_public_key_from_msg_hash(digest).to_bytes() == expected.to_bytes():
                return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v + 27])
        raise SigningUnavailable("KMS signature does not recover to the KMS public key")


def get_key_provider(
    signer_type: str = "env",
    signing_key_path: str = "secrets/assura_signing_key.json",
    kms_key_id: Optional[str] = None,
    kms_region: Optional[str] = None,
    kid: Optional[str] = None,
) -> KeyProvider:
    """
    Factory function to create the configured key provider.

    Args:
        signer_type: "env", "file" or "aws_kms"
        signing_key_path: Path to key JSON (file provider)
        kms_key_id: AWS KMS key ID (KMS provider)
        kms_region: AWS region (KMS provider)
        kid: Key identifier reported alongside the address

    Raises:
        SigningUnavailable: the key cannot be found or loaded
    """
    if signer_type == "aws_kms":
        if not kms_key_id:
            raise SigningUnavailable("AWS_KMS_KEY_ID required for aws_kms signer")
        return AwsKmsSecp256k1Provider(kms_key_id=kms_key_id, region=kms_region, kid=kid)

    if signer_type == "file":
        return FileKeyProvider(signing_key_path)

    if signer_type != "env":
        raise SigningUnavailable(f"Unknown signer type: {signer_type}")
    return LocalKeyProvider(resolve_private_key(), kid=kid)
