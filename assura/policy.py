"""
Policy registry.

One policy per (protected resource, policy key). Only the resource itself
may set its policies; this ownership check belongs to the execution
environment and is not repeated by the verifier predicate.
"""

import logging
import threading
from typing import Dict, Tuple, Union

from .errors import Unauthorized
from .hashing import normalize_address, to_bytes32
from .types import Policy


logger = logging.getLogger(__name__)

UNSET_POLICY = Policy()


class PolicyRegistry:
    """Policies keyed by (resource, policy key); unset keys read as the zero policy."""

    def __init__(self):
        self._policies: Dict[Tuple[str, bytes], Policy] = {}
        self._lock = threading.Lock()

    def set(self, caller: str, resource: str, policy_key: Union[bytes, str], policy: Policy) -> None:
        caller = normalize_address(caller)
        resource = normalize_address(resource)
        if caller != resource:
            raise Unauthorized(f"{caller} may not set policies for {resource}")
        if not isinstance(policy, Policy):
            raise ValueError("policy must be a Policy")
        with self._lock:
            self._policies[(resource, to_bytes32(policy_key))] = policy
        logger.info("Policy set for %s: %s", resource, policy.to_dict())

    def get(self, resource: str, policy_key: Union[bytes, str]) -> Policy:
        key = (normalize_address(resource), to_bytes32(policy_key))
        with self._lock:
            return self._policies.get(key, UNSET_POLICY)
