"""
Assura Hashing and Hex Helpers

All protocol hashes are Keccak-256, the hash used by the ledger
environment. Addresses are carried as EIP-55 checksummed strings and
policy keys as 32-byte values.
"""

import time
from typing import Union

from eth_utils import decode_hex, encode_hex, is_address, keccak, to_checksum_address


BYTES32_LENGTH = 32
ZERO_KEY = b"\x00" * BYTES32_LENGTH


def keccak256(data: Union[bytes, str]) -> bytes:
    """Keccak-256 digest. Strings are hashed as UTF-8 text."""
    if isinstance(data, str):
        return keccak(text=data)
    return keccak(primitive=data)


def normalize_address(value: Union[str, bytes]) -> str:
    """
    Return the checksummed form of an address.

    Accepts a 20-byte value, a lowercase hex string or a correctly
    checksummed hex string. Raises ValueError otherwise.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"Address must be 20 bytes, got {len(value)}")
        return to_checksum_address(bytes(value))
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def address_bytes(address: str) -> bytes:
    """Raw 20 bytes of an address."""
    return decode_hex(normalize_address(address))


def to_bytes32(key: Union[str, bytes]) -> bytes:
    """
    Left-pad a policy key to 32 bytes.

    A 4-byte function selector such as ``0xa9059cbb`` becomes
    ``0x000...0a9059cbb``. Values longer than 32 bytes are rejected.
    """
    if isinstance(key, str):
        text = key[2:] if key.lower().startswith("0x") else key
        if not text:
            text = "0"
        if len(text) % 2:
            text = "0" + text
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Policy key is not hex: {key!r}")
    else:
        raw = bytes(key)
    if len(raw) > BYTES32_LENGTH:
        raise ValueError(f"Policy key longer than 32 bytes ({len(raw)})")
    return raw.rjust(BYTES32_LENGTH, b"\x00")


def selector_key(function_signature: str) -> bytes:
    """Policy key for a function: its 4-byte selector padded to bytes32."""
    return to_bytes32(keccak256(function_signature)[:4])


def to_hex(data: bytes) -> str:
    """0x-prefixed lowercase hex."""
    return encode_hex(data)


def from_hex(value: str) -> bytes:
    """Decode 0x-prefixed (or bare) hex. Raises ValueError on bad input."""
    if not isinstance(value, str):
        raise ValueError("hex value must be a string")
    text = value[2:] if value.lower().startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise ValueError(f"Invalid hex string: {value[:20]!r}")


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())
