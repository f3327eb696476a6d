"""
Compliance codec tests.

The wire layout is the compatibility contract between issuer and verifier.
"""

import unittest

from eth_abi import encode as abi_encode

from assura import (
    AttestationLedger,
    AttestationSigner,
    Claim,
    DecodeError,
    Eip712Domain,
    LocalKeyProvider,
    SignedClaim,
    decode,
    encode,
    encode_hex,
    selector_key,
)
from assura.codec import COMPLIANCE_DATA_TYPE

SIGNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
USER = "0x" + "ab" * 20


class TestComplianceCodec(unittest.TestCase):

    def setUp(self):
        signer = AttestationSigner(
            LocalKeyProvider(SIGNER_KEY),
            Eip712Domain(chain_id=84532, verifying_contract="0x" + "11" * 20),
            AttestationLedger(),
            clock=lambda: 1_700_000_000,
        )
        self.bundle = signer.issue(USER, 84532, policy_key=selector_key("withdraw(uint256,bytes)"))

    def test_round_trip(self):
        self.assertEqual(decode(encode(self.bundle)), self.bundle)

    def test_round_trip_hex(self):
        data = encode_hex(self.bundle)
        self.assertTrue(data.startswith("0x"))
        self.assertEqual(decode(data), self.bundle)

    def test_round_trip_edge_values(self):
        bundle = SignedClaim(
            subject="0x" + "00" * 20,
            policy_key=b"\xff" * 32,
            signature=b"",
            claim=Claim(score=1000, issued_at=2 ** 256 - 1, context_id=0),
        )
        self.assertEqual(decode(encode(bundle)), bundle)

    def test_layout_is_abi_tuple(self):
        claim = self.bundle.claim
        expected = abi_encode(
            [COMPLIANCE_DATA_TYPE],
            [(self.bundle.subject, self.bundle.policy_key, self.bundle.signature,
              (claim.score, claim.issued_at, claim.context_id))],
        )
        self.assertEqual(encode(self.bundle), expected)

    def test_dict_round_trip(self):
        self.assertEqual(SignedClaim.from_dict(self.bundle.to_dict()), self.bundle)

    def test_empty_rejected(self):
        with self.assertRaises(DecodeError):
            decode(b"")
        with self.assertRaises(DecodeError):
            decode("0x")

    def test_truncated_rejected(self):
        data = encode(self.bundle)
        for cut in (1, 31, 32, len(data) // 2, len(data) - 1):
            with self.assertRaises(DecodeError):
                decode(data[:cut])

    def test_trailing_bytes_rejected(self):
        with self.assertRaises(DecodeError):
            decode(encode(self.bundle) + b"\x00" * 32)

    def test_bad_hex_rejected(self):
        with self.assertRaises(DecodeError):
            decode("0xnothex")

    def test_out_of_range_score_rejected(self):
        data = abi_encode(
            [COMPLIANCE_DATA_TYPE],
            [(USER, b"\x00" * 32, b"\x01" * 65, (1001, 1, 1))],
        )
        with self.assertRaises(DecodeError):
            decode(data)

    def test_dirty_address_padding_rejected(self):
        data = bytearray(encode(self.bundle))
        # First word is the tuple offset; the address word follows it.
        data[32] = 0x01
        with self.assertRaises(DecodeError):
            decode(bytes(data))

    def test_oversized_length_word_rejected(self):
        data = bytearray(encode(self.bundle))
        # Word 7 is the signature length.
        data[224:256] = b"\xff" * 32
        with self.assertRaises(DecodeError):
            decode(bytes(data))

    def test_oversized_offset_words_rejected(self):
        for start in (0, 96):
            data = bytearray(encode(self.bundle))
            data[start:start + 32] = b"\xff" * 32
            with self.assertRaises(DecodeError):
                decode(bytes(data))

    def test_corrupted_words_never_escape_decode_error(self):
        original = encode(self.bundle)
        fills = (b"\xff" * 32, b"\x7f" + b"\xff" * 31, (2 ** 64).to_bytes(32, "big"), b"\x00" * 32)
        for word in range(len(original) // 32):
            for fill in fills:
                data = bytearray(original)
                data[word * 32:(word + 1) * 32] = fill
                try:
                    decoded = decode(bytes(data))
                except DecodeError:
                    continue
                self.assertEqual(encode(decoded), bytes(data))


if __name__ == "__main__":
    unittest.main()
