import os
from dataclasses import replace

from eth_account import Account
from eth_utils import to_checksum_address
from fastapi.testclient import TestClient

from assura import (
    AttestationSigner,
    SigningUnavailable,
    decode,
    derive_score,
    encode_hex,
    selector_key,
    signature_valid,
    typed_message,
    to_hex,
)
from assura_tee import main
from assura_tee.db import get_db_stats
from assura_tee.main import app

client = TestClient(app)

USER = "0x" + "ab" * 20
VAULT = "0x" + "cd" * 20
TEE_ADDRESS = Account.from_key(os.environ["TEE_PRIVATE_KEY"]).address


def attest(**body):
    body.setdefault("userAddress", USER)
    return client.post("/attest", json=body)


def verify(compliance_data, app_address=VAULT, key="0x00", **policy):
    return client.post("/verify", json={
        "app": app_address,
        "key": key,
        "complianceData": compliance_data,
        "policy": policy,
    })


# --- health and signer address ---

def test_health_ok():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "teeAddress": TEE_ADDRESS, "chainId": 84532}


def test_address():
    r = client.get("/address")
    assert r.status_code == 200
    assert r.json()["address"] == TEE_ADDRESS


def test_request_id_header_echoed():
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    assert client.get("/health").headers["X-Request-ID"]


# --- attestation issuance ---

def test_attest_returns_signed_bundle():
    r = attest()
    assert r.status_code == 200
    body = r.json()

    assert body["userAddress"] == to_checksum_address(USER)
    assert body["teeAddress"] == TEE_ADDRESS
    assert body["attestedData"]["score"] == str(derive_score(USER))
    assert body["attestedData"]["chainId"] == "84532"
    assert body["key"] == "0x" + "00" * 32
    assert "registration" not in body

    bundle = decode(body["complianceData"])
    assert to_hex(bundle.signature) == body["signature"]
    assert signature_valid(bundle.claim, bundle.signature, TEE_ADDRESS, main.SIGNER.domain)


def test_attest_signature_is_typed_data_over_claim():
    body = attest().json()
    bundle = decode(body["complianceData"])
    recovered = Account.recover_message(
        typed_message(bundle.claim, main.SIGNER.domain), signature=bundle.signature
    )
    assert recovered == TEE_ADDRESS


def test_attest_ignores_client_score():
    body = attest(score=1000).json()
    assert body["attestedData"]["score"] == str(derive_score(USER))


def test_attest_with_chain_id_and_key():
    body = attest(chainId=1, key="0xa9059cbb").json()
    assert body["attestedData"]["chainId"] == "1"
    assert body["key"] == to_hex(selector_key("transfer(address,uint256)"))


def test_attest_rejects_bad_input():
    assert attest(userAddress="0x1234").status_code == 400
    assert attest(userAddress=12).status_code == 400
    assert attest(chainId=-1).status_code == 400
    assert attest(key="0x" + "00" * 33).status_code == 400
    assert attest(username="").status_code == 400
    assert client.post("/attest", json={}).status_code == 400


def test_attest_invalid_address_reports_field():
    r = attest(userAddress="not-an-address")
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "userAddress"


def test_registration_is_idempotent():
    first = attest(username="alice").json()
    assert first["registration"] == {"success": True, "username": "alice", "created": True}

    second = attest(username="alice2")
    assert second.status_code == 200
    assert second.json()["registration"] == {"success": True, "username": "alice", "created": False}


def test_taken_username_still_issues():
    attest(username="alice")
    r = attest(userAddress="0x" + "12" * 20, username="alice")
    assert r.status_code == 200
    assert r.json()["registration"]["created"] is False


def test_attest_without_signer_is_503(monkeypatch):
    monkeypatch.setattr(main, "SIGNER", None)
    assert attest().status_code == 503
    assert client.get("/address").status_code == 503
    assert client.get("/health").json()["status"] == "degraded"


def test_signing_failure_is_503(monkeypatch):
    def broken(self, claim, scheme=None):
        raise SigningUnavailable("hsm offline")

    monkeypatch.setattr(AttestationSigner, "sign_claim", broken)
    r = attest()
    assert r.status_code == 503
    assert get_db_stats()["attestations_count"] == 0


def test_ledger_failure_is_500_and_nothing_returned(monkeypatch):
    def fail(record):
        raise OSError("disk full")

    monkeypatch.setattr(main.LEDGER.store, "append", fail)
    r = attest(username="alice")
    assert r.status_code == 500
    assert "complianceData" not in r.text
    assert get_db_stats()["users_count"] == 0


# --- ledger queries ---

def test_attestations_history():
    attest()
    attest(key="0xa9059cbb")

    r = client.get(f"/attestations/{USER}")
    assert r.status_code == 200
    records = r.json()["attestations"]
    assert len(records) == 2
    assert records[-1]["key"] == to_hex(selector_key("transfer(address,uint256)"))
    assert all(rec["teeAddress"] == TEE_ADDRESS for rec in records)


def test_latest_attestation():
    assert client.get(f"/attestations/{USER}/latest").status_code == 404
    body = attest().json()

    r = client.get(f"/attestations/{USER}/latest")
    assert r.status_code == 200
    assert r.json()["signature"] == body["signature"]


def test_attestations_bad_address():
    assert client.get("/attestations/0xnope").status_code == 400


def test_stats():
    attest()
    attest()
    attest(userAddress="0x" + "12" * 20)
    assert client.get("/stats").json() == {"totalSubjects": 2, "totalRecords": 3}
    assert get_db_stats()["attestations_count"] == 3


# --- verification preflight ---

def test_verify_accepts_fresh_bundle():
    data = attest().json()["complianceData"]
    r = verify(data, score=0, chainId=84532)
    assert r.status_code == 200
    assert r.json() == {"accepted": True, "reason": None, "details": {"resource": to_checksum_address(VAULT)}}


def test_verify_score_insufficient():
    data = attest().json()["complianceData"]
    body = verify(data, score=1001).json()
    assert body["accepted"] is False
    assert body["reason"] == "SCORE_INSUFFICIENT"
    assert body["details"]["deficit"] == 1001 - derive_score(USER)


def test_verify_key_mismatch():
    data = attest(key="0xa9059cbb").json()["complianceData"]
    body = verify(data, key="0x00").json()
    assert body["reason"] == "KEY_MISMATCH"
    assert verify(data, key="0xa9059cbb").json()["accepted"] is True


def test_verify_expired_policy():
    data = attest().json()["complianceData"]
    assert verify(data, expiry=1).json()["reason"] == "POLICY_EXPIRED"


def test_verify_context_mismatch():
    data = attest(chainId=1).json()["complianceData"]
    assert verify(data, chainId=84532).json()["reason"] == "CONTEXT_MISMATCH"
    assert verify(data).json()["accepted"] is True


def test_verify_garbage_is_decode_error_not_400():
    r = verify("0xdeadbeef")
    assert r.status_code == 200
    assert r.json()["reason"] == "DECODE_ERROR"

    r = verify("not hex at all")
    assert r.status_code == 200
    assert r.json()["reason"] == "DECODE_ERROR"


def test_verify_corrupted_length_word_is_decode_error():
    data = bytearray(bytes.fromhex(attest().json()["complianceData"][2:]))
    data[224:256] = b"\xff" * 32
    r = verify("0x" + data.hex())
    assert r.status_code == 200
    assert r.json()["reason"] == "DECODE_ERROR"


def test_verify_foreign_signer():
    bundle = decode(attest().json()["complianceData"])
    forged = bytearray(bundle.signature)
    forged[10] ^= 0xFF
    tampered = encode_hex(replace(bundle, signature=bytes(forged)))
    assert verify(tampered).json()["reason"] == "SIGNATURE_INVALID"


def test_verify_rejects_bad_request():
    assert verify("0x00", app_address="0x12").status_code == 400
    assert verify("0x00", score=-1).status_code == 400
