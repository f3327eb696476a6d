"""
Client for the Assura attestation service.

Thin wrapper over ``requests`` with a fixed-delay retry loop. Retry and
backoff live here, in the caller, not in the protocol core.
"""

import logging
import os
import time
from typing import Any, Dict, Optional

import requests


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://tee.assura.network"
DEFAULT_CHAIN_ID = 84532


class TEEClientError(Exception):
    """The attestation service could not be reached or answered badly."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TEEClient:
    """
    HTTP client for the attestation service.

    Usage:
        client = TEEClient("http://localhost:8080")
        signer = client.get_tee_address()
        attestation = client.get_attestation("0xAbc...", username="alice")
        bundle_hex = attestation["complianceData"]
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or os.getenv("TEE_SERVICE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self.base_url + path
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.ConnectionError as e:
                last_error = e
            except requests.Timeout as e:
                last_error = e
            if attempt < self.max_retries - 1:
                logger.info("Retry %d/%d after %.1fs", attempt + 1, self.max_retries, self.retry_delay)
                time.sleep(self.retry_delay)

        if isinstance(last_error, requests.ConnectionError):
            raise TEEClientError(
                f"Cannot connect to TEE service at {self.base_url}. Make sure the TEE service is running."
            ) from last_error
        raise TEEClientError(f"TEE service request failed: {last_error}") from last_error

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise TEEClientError("Invalid response from TEE service", response.status_code)
        if not isinstance(data, dict):
            raise TEEClientError("Invalid response from TEE service", response.status_code)
        return data

    def get_tee_address(self) -> str:
        response = self._request("GET", "/address")
        if response.status_code != 200:
            raise TEEClientError(
                f"Failed to fetch TEE address: HTTP {response.status_code}", response.status_code
            )
        data = self._json(response)
        if not data.get("address"):
            raise TEEClientError("Invalid response from TEE service", response.status_code)
        return data["address"]

    def get_attestation(
        self,
        user_address: str,
        chain_id: int = DEFAULT_CHAIN_ID,
        username: Optional[str] = None,
        key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Request a signed attestation.

        A 409 answer to a request carrying a username means the subject is
        already registered; the request is repeated once without it.
        """
        body: Dict[str, Any] = {"userAddress": user_address, "chainId": chain_id}
        if key:
            body["key"] = key
        if username:
            body["username"] = username

        response = self._request("POST", "/attest", json=body)
        if response.status_code == 409 and username:
            logger.info("User already registered, fetching existing attestation")
            retry_body = {k: v for k, v in body.items() if k != "username"}
            response = self._request("POST", "/attest", json=retry_body)

        if response.status_code != 200:
            raise TEEClientError(
                f"Failed to get attestation: HTTP {response.status_code} {response.text[:200]}".strip(),
                response.status_code,
            )

        data = self._json(response)
        if not data.get("attestedData") or not data.get("signature"):
            raise TEEClientError("Invalid response from TEE service", response.status_code)
        return data
