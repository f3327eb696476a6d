"""
Assura attestation service.

FastAPI application issuing signed compliance attestations, with SQLite
persistence for the attestation ledger and username registrations.

Run with:
    uvicorn assura_tee.main:app --port 8080
"""
