import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from assura import (
    AttestationLedger,
    AttestationSigner,
    LedgerWriteError,
    Policy,
    SigningUnavailable,
    encode_hex,
    now_epoch,
    to_hex,
    verify_claim,
)

from .config import (
    AWS_KMS_KEY_ID,
    AWS_REGION,
    CHAIN_ID,
    KEY_ID,
    LOG_JSON,
    LOG_LEVEL,
    SIGNATURE_SCHEME,
    SIGNER_TYPE,
    SIGNING_KEY_PATH,
    default_policy_key,
    domain,
    is_debug,
    validate_config,
)
from .db import SqliteLedgerStore, SqliteUsernameRegistry, init_db
from .keys import get_key_provider
from .logging_config import audit_log, configure_logging, set_request_id
from .models import AttestRequest, AttestResponse, VerifyRequest, VerifyResponse
from .security import (
    ValidationError,
    generate_request_id,
    sanitize_for_logging,
    validate_address,
    validate_chain_id,
    validate_compliance_data,
    validate_policy_key,
    validate_username,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Assura Attestation Service")

LEDGER = AttestationLedger(SqliteLedgerStore())
REGISTRY = SqliteUsernameRegistry()
SIGNER: Optional[AttestationSigner] = None


def build_signer() -> AttestationSigner:
    provider = get_key_provider(
        signer_type=SIGNER_TYPE,
        signing_key_path=SIGNING_KEY_PATH,
        kms_key_id=AWS_KMS_KEY_ID,
        kms_region=AWS_REGION,
        kid=KEY_ID or None,
    )
    return AttestationSigner(
        provider,
        domain(),
        LEDGER,
        scheme=SIGNATURE_SCHEME,
        default_policy_key=default_policy_key(),
        registry=REGISTRY,
    )


@app.on_event("startup")
def _startup():
    global SIGNER
    configure_logging("DEBUG" if is_debug() else LOG_LEVEL, json_format=LOG_JSON)
    missing = [name for name, ok in validate_config().items() if not ok]
    if missing:
        logger.warning("Configuration problems: %s", ", ".join(missing))
    init_db()
    try:
        SIGNER = build_signer()
    except SigningUnavailable as e:
        # No fallback key: requests needing the signer answer 503.
        SIGNER = None
        audit_log.security_event("SIGNER_UNAVAILABLE", severity="critical", error=str(e))
        return
    logger.info("Signer loaded (kid=%s)", SIGNER.key_provider.kid)


def get_signer() -> AttestationSigner:
    if SIGNER is None:
        raise HTTPException(503, "SIGNING_UNAVAILABLE")
    return SIGNER


def signer_address(signer: AttestationSigner) -> str:
    try:
        return signer.address
    except SigningUnavailable as e:
        audit_log.security_event("SIGNER_ADDRESS_UNAVAILABLE", severity="high", error=str(e))
        raise HTTPException(503, "SIGNING_UNAVAILABLE")


def bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(400, {"field": e.field, "message": e.message})


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id") or generate_request_id())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.get("/health")
def health():
    address = None
    if SIGNER is not None:
        try:
            address = SIGNER.address
        except SigningUnavailable:
            address = None
    return {
        "status": "ok" if address else "degraded",
        "teeAddress": address,
        "chainId": CHAIN_ID,
    }


@app.get("/address")
def address():
    return {"address": signer_address(get_signer())}


@app.post("/attest", response_model=AttestResponse, response_model_exclude_none=True)
def attest(req: AttestRequest):
    try:
        user_address = validate_address(req.userAddress, "userAddress")
        chain_id = validate_chain_id(CHAIN_ID if req.chainId is None else req.chainId)
        username = None if req.username is None else validate_username(req.username)
        key = None if req.key is None else validate_policy_key(req.key)
    except ValidationError as e:
        raise bad_request(e)

    signer = get_signer()
    tee_address = signer_address(signer)
    try:
        issued = signer.attest(user_address, chain_id, username=username, policy_key=key)
    except SigningUnavailable as e:
        audit_log.security_event("SIGNING_FAILED", severity="high", error=str(e))
        raise HTTPException(503, "SIGNING_UNAVAILABLE")
    except LedgerWriteError as e:
        logger.error("Ledger write failed: %s", e)
        raise HTTPException(500, "LEDGER_WRITE_FAILED")

    bundle = issued.bundle
    audit_log.attestation_issued(bundle.subject, bundle.claim.score, chain_id, tee_address)
    if issued.registration is not None:
        audit_log.registration(bundle.subject, issued.registration.username, issued.registration.created)

    response = {
        "attestedData": bundle.claim.to_dict(),
        "signature": to_hex(bundle.signature),
        "teeAddress": tee_address,
        "userAddress": bundle.subject,
        "key": to_hex(bundle.policy_key),
        "complianceData": encode_hex(bundle),
    }
    if issued.registration is not None:
        response["registration"] = issued.registration.to_dict()
    logger.debug("Attest response: %s", sanitize_for_logging(response))
    return response


@app.get("/attestations/{user_address}")
def attestations(user_address: str):
    try:
        subject = validate_address(user_address, "userAddress")
    except ValidationError as e:
        raise bad_request(e)
    return {
        "userAddress": subject,
        "attestations": [record.to_dict() for record in LEDGER.all(subject)],
    }


@app.get("/attestations/{user_address}/latest")
def latest_attestation(user_address: str):
    try:
        subject = validate_address(user_address, "userAddress")
    except ValidationError as e:
        raise bad_request(e)
    record = LEDGER.latest(subject)
    if record is None:
        raise HTTPException(404, "NOT_FOUND")
    return record.to_dict()


@app.get("/stats")
def stats():
    return LEDGER.stats().to_dict()


@app.post("/verify", response_model=VerifyResponse)
def verify(req: VerifyRequest):
    """Stateless preflight against the service's own signer and domain."""
    try:
        resource = validate_address(req.app, "app")
        key = validate_policy_key(req.key)
        data = validate_compliance_data(req.complianceData)
    except ValidationError as e:
        raise bad_request(e)
    try:
        policy = Policy(
            min_score=req.policy.score,
            expiry=req.policy.expiry,
            context_id=req.policy.chainId,
        )
    except ValueError as e:
        raise bad_request(ValidationError("policy", str(e)))

    signer = get_signer()
    result = verify_claim(
        resource,
        key,
        data,
        policy,
        trusted_signer=signer_address(signer),
        domain=signer.domain,
        runtime_context=CHAIN_ID,
        now=now_epoch(),
    )
    audit_log.verification_decision(
        resource, result.accepted, result.reason.value if result.reason else None
    )
    return result.to_dict()
