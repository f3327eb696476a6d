"""
Bypass ledger test suite.

Covers the entry state machine, the linear timer, nonce monotonicity and
the bypass-aware verification flow.
"""

import threading
import unittest

from assura import (
    BYPASS_SECONDS_PER_POINT,
    AttestationLedger,
    AttestationSigner,
    BypassLedger,
    BypassNotYetActive,
    BypassOutcome,
    BypassState,
    Claim,
    ComplianceRejected,
    ComplianceVerifier,
    Eip712Domain,
    LocalKeyProvider,
    Policy,
    ProtectedResource,
    RejectionReason,
    SignedClaim,
    encode,
    requires_compliance,
    selector_key,
)

SIGNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
USER = "0x" + "ab" * 20
VAULT = "0x" + "cd" * 20
OWNER = "0x" + "ef" * 20
CHAIN = 84532
NOW = 1_700_000_000

DEPOSIT = selector_key("deposit(uint256,address,bytes)")
WITHDRAW = selector_key("withdraw(uint256,bytes)")


class Clock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestBypassLedger(unittest.TestCase):

    def setUp(self):
        self.clock = Clock()
        self.opened = []
        self.bypass = BypassLedger(clock=self.clock, on_open=lambda key, entry: self.opened.append(entry))

    def test_first_entry(self):
        entry = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.assertEqual(entry.nonce, 1)
        self.assertEqual(entry.expiry, NOW + 600)
        self.assertTrue(entry.allowed)
        self.assertEqual(entry.state(NOW), BypassState.PENDING)
        self.assertEqual(self.opened, [entry])

    def test_linear_wait(self):
        entry = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 7)
        self.assertEqual(entry.expiry - NOW, 7 * BYPASS_SECONDS_PER_POINT)

    def test_zero_deficit_is_immediately_active(self):
        entry = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 0)
        self.assertTrue(entry.is_active(NOW))

    def test_negative_deficit_rejected(self):
        with self.assertRaises(ValueError):
            self.bypass.open_or_get(USER, VAULT, DEPOSIT, -1)

    def test_pending_entry_not_reset(self):
        first = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.clock.now += 300
        again = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 90)
        self.assertEqual(again, first)
        self.assertEqual(len(self.opened), 1)

    def test_active_entry_not_reset(self):
        first = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.clock.now += 10_000
        self.assertEqual(self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60), first)

    def test_consumed_entry_reopens_with_next_nonce(self):
        self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.clock.now += 600
        consumed = self.bypass.consume(USER, VAULT, DEPOSIT)
        self.assertEqual(consumed.state(self.clock.now), BypassState.CONSUMED)

        entry = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 30)
        self.assertEqual(entry.nonce, 2)
        self.assertEqual(entry.expiry, self.clock.now + 300)

    def test_nonce_strictly_increasing(self):
        nonces = []
        for _ in range(5):
            entry = self.bypass.open_or_get(USER, VAULT, DEPOSIT, 1)
            nonces.append(entry.nonce)
            self.clock.now = entry.expiry
            self.bypass.consume(USER, VAULT, DEPOSIT)
        self.assertEqual(nonces, [1, 2, 3, 4, 5])

    def test_consume_pending(self):
        self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.clock.now += 599
        with self.assertRaises(BypassNotYetActive) as ctx:
            self.bypass.consume(USER, VAULT, DEPOSIT)
        self.assertEqual(ctx.exception.expiry, NOW + 600)

    def test_consume_absent_or_twice(self):
        with self.assertRaises(LookupError):
            self.bypass.consume(USER, VAULT, DEPOSIT)
        self.bypass.open_or_get(USER, VAULT, DEPOSIT, 0)
        self.bypass.consume(USER, VAULT, DEPOSIT)
        with self.assertRaises(LookupError):
            self.bypass.consume(USER, VAULT, DEPOSIT)

    def test_keys_are_independent(self):
        self.bypass.open_or_get(USER, VAULT, DEPOSIT, 60)
        self.assertIsNone(self.bypass.get(USER, VAULT, WITHDRAW))
        self.assertIsNone(self.bypass.get(VAULT, USER, DEPOSIT))
        self.assertIsNotNone(self.bypass.get(USER.lower(), VAULT, DEPOSIT))

    def test_settle_failure_transitions(self):
        entry, outcome = self.bypass.settle_failure(USER, VAULT, DEPOSIT, 10)
        self.assertEqual(outcome, BypassOutcome.OPENED)

        _, outcome = self.bypass.settle_failure(USER, VAULT, DEPOSIT, 10)
        self.assertEqual(outcome, BypassOutcome.PENDING)

        self.clock.now = entry.expiry
        granted, outcome = self.bypass.settle_failure(USER, VAULT, DEPOSIT, 10)
        self.assertEqual(outcome, BypassOutcome.GRANTED)
        self.assertTrue(granted.consumed)

        reopened, outcome = self.bypass.settle_failure(USER, VAULT, DEPOSIT, 10)
        self.assertEqual(outcome, BypassOutcome.OPENED)
        self.assertEqual(reopened.nonce, 2)

    def test_concurrent_failures_open_once(self):
        barrier = threading.Barrier(8)
        outcomes = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            _, outcome = self.bypass.settle_failure(USER, VAULT, DEPOSIT, 60)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count(BypassOutcome.OPENED), 1)
        self.assertEqual(outcomes.count(BypassOutcome.PENDING), 7)
        self.assertEqual(self.bypass.get(USER, VAULT, DEPOSIT).nonce, 1)


class BypassFlowTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = Clock()
        self.domain = Eip712Domain(chain_id=CHAIN, verifying_contract="0x" + "11" * 20)
        self.signer = AttestationSigner(
            LocalKeyProvider(SIGNER_KEY), self.domain, AttestationLedger(), clock=self.clock
        )
        self.verifier = ComplianceVerifier(
            OWNER, self.signer.address, self.domain, context_id=CHAIN, clock=self.clock
        )
        self.verifier.set_policy(VAULT, VAULT, WITHDRAW, Policy(min_score=100))

    def bundle_with_score(self, score: int) -> bytes:
        claim = Claim(score=score, issued_at=self.clock(), context_id=CHAIN)
        return encode(SignedClaim(
            subject=USER,
            policy_key=WITHDRAW,
            signature=self.signer.sign_claim(claim),
            claim=claim,
        ))


class TestVerifyWithBypass(BypassFlowTestCase):

    def test_score_40_against_100(self):
        data = self.bundle_with_score(40)

        result = self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)
        self.assertFalse(result.accepted)
        self.assertEqual(result.reason, RejectionReason.SCORE_INSUFFICIENT)
        self.assertEqual(result.details["bypass"]["expiry"], NOW + 600)
        self.assertEqual(result.details["bypass"]["nonce"], 1)

        self.clock.now = NOW + 599
        result = self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)
        self.assertEqual(result.reason, RejectionReason.BYPASS_NOT_YET_ACTIVE)

        self.clock.now = NOW + 600
        result = self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)
        self.assertTrue(result.accepted)
        self.assertTrue(self.verifier.bypass_entry(USER, VAULT, WITHDRAW).consumed)

    def test_retry_does_not_reset_timer(self):
        data = self.bundle_with_score(40)
        self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)

        self.clock.now = NOW + 300
        self.verifier.verify_with_bypass(VAULT, WITHDRAW, self.bundle_with_score(10))
        self.assertEqual(self.verifier.bypass_entry(USER, VAULT, WITHDRAW).expiry, NOW + 600)

    def test_grant_is_single_use(self):
        data = self.bundle_with_score(90)
        self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)
        self.clock.now = NOW + 100
        self.assertTrue(self.verifier.verify_with_bypass(VAULT, WITHDRAW, data).accepted)

        result = self.verifier.verify_with_bypass(VAULT, WITHDRAW, data)
        self.assertEqual(result.reason, RejectionReason.SCORE_INSUFFICIENT)
        self.assertEqual(result.details["bypass"]["nonce"], 2)
        self.assertEqual(result.details["bypass"]["expiry"], NOW + 200)

    def test_sufficient_score_leaves_no_entry(self):
        result = self.verifier.verify_with_bypass(VAULT, WITHDRAW, self.bundle_with_score(100))
        self.assertTrue(result.accepted)
        self.assertIsNone(self.verifier.bypass_entry(USER, VAULT, WITHDRAW))

    def test_other_failures_leave_no_entry(self):
        result = self.verifier.verify_with_bypass(VAULT, DEPOSIT, self.bundle_with_score(40))
        self.assertEqual(result.reason, RejectionReason.KEY_MISMATCH)
        self.assertIsNone(self.verifier.bypass_entry(USER, VAULT, WITHDRAW))
        self.assertIsNone(self.verifier.bypass_entry(USER, VAULT, DEPOSIT))


class Vault(ProtectedResource):

    def __init__(self, verifier, address):
        super().__init__(verifier, address)
        self.balance = 0

    @requires_compliance(DEPOSIT)
    def deposit(self, compliance_data, amount):
        self.balance += amount
        return self.balance

    @requires_compliance(WITHDRAW, bypass=True)
    def withdraw(self, compliance_data, amount):
        self.balance -= amount
        return self.balance


class TestProtectedResource(BypassFlowTestCase):

    def setUp(self):
        super().setUp()
        self.vault = Vault(self.verifier, VAULT)
        self.vault.set_policy(DEPOSIT, Policy(min_score=50))

    def deposit_bundle(self, score: int) -> bytes:
        claim = Claim(score=score, issued_at=self.clock(), context_id=CHAIN)
        return encode(SignedClaim(
            subject=USER, policy_key=DEPOSIT,
            signature=self.signer.sign_claim(claim), claim=claim,
        ))

    def test_policy_set_through_resource(self):
        self.assertEqual(self.vault.get_policy(DEPOSIT).min_score, 50)

    def test_compliant_call_runs(self):
        self.assertEqual(self.vault.deposit(self.deposit_bundle(50), 10), 10)

    def test_rejected_call_does_not_run(self):
        with self.assertRaises(ComplianceRejected) as ctx:
            self.vault.deposit(self.deposit_bundle(49), 10)
        self.assertEqual(ctx.exception.result.reason, RejectionReason.SCORE_INSUFFICIENT)
        self.assertEqual(self.vault.balance, 0)
        # Direct checks never open bypass entries
        self.assertIsNone(self.vault.bypass_entry(USER, DEPOSIT))

    def test_bypass_call(self):
        data = self.bundle_with_score(99)
        with self.assertRaises(ComplianceRejected):
            self.vault.withdraw(data, 5)
        self.assertEqual(self.vault.bypass_entry(USER, WITHDRAW).expiry, NOW + 10)

        self.clock.now = NOW + 10
        self.assertEqual(self.vault.withdraw(data, 5), -5)


if __name__ == "__main__":
    unittest.main()
