"""
Assura Score Derivation

Deterministic placeholder scoring: the low 32 bits of the Keccak-256 hash
of the subject address, reduced into [0, 1000]. Identical input always
yields identical output. Scores are only ever computed inside the signer.
"""

from typing import Union

from .hashing import address_bytes, keccak256, normalize_address
from .types import MAX_SCORE


SCORE_MODULUS = MAX_SCORE + 1


def derive_score(subject: Union[str, bytes]) -> int:
    """Score for a subject address, in [0, 1000]."""
    raw = address_bytes(normalize_address(subject))
    low32 = int.from_bytes(keccak256(raw)[-4:], "big")
    return low32 % SCORE_MODULUS


def score_deficit(min_score: int, score: int) -> int:
    """How far a score falls short of a minimum, clamped at zero."""
    return max(0, min_score - score)
