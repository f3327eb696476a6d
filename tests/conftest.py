import os
import tempfile

import pytest

TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

# Service settings must be in place before assura_tee.config is imported
_tmp_dir = tempfile.mkdtemp(prefix="assura-tests-")
os.environ["ASSURA_ENV"] = "dev"
os.environ["ASSURA_DB_PATH"] = os.path.join(_tmp_dir, "assura.db")
os.environ["ASSURA_SIGNER"] = "env"
os.environ["TEE_PRIVATE_KEY"] = TEST_PRIVATE_KEY
os.environ["CHAIN_ID"] = "84532"
os.environ["VERIFIER_ADDRESS"] = "0x0cd35ce218e0d9ed83a5da919d0e1ce9c60d49a7"
os.environ["SIGNATURE_SCHEME"] = "eip712"
os.environ["DEFAULT_POLICY_KEY"] = ""
os.environ["LOG_JSON"] = "false"

from assura_tee.main import _startup
from assura_tee.db import init_db, reset_db

init_db()
_startup()


# Reset database before each test for isolation
@pytest.fixture(autouse=True)
def _reset_db():
    reset_db()
    yield
