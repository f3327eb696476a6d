"""
Protected resources.

A protected resource is an address holding policies in a ComplianceVerifier.
Methods decorated with ``requires_compliance`` take the encoded compliance
bundle as their first argument and only run once the verifier accepts it.

Usage:
    class Vault(ProtectedResource):
        @requires_compliance(selector_key("deposit(uint256,address,bytes)"))
        def deposit(self, compliance_data, amount):
            ...

        @requires_compliance(selector_key("withdraw(uint256,bytes)"), bypass=True)
        def withdraw(self, compliance_data, amount):
            ...
"""

from typing import Callable, Optional, Union

from .hashing import normalize_address
from .types import BypassEntry, Policy
from .verifier import ComplianceVerifier


def requires_compliance(policy_key: Union[bytes, str], bypass: bool = False):
    """
    Decorator gating a ProtectedResource method on a compliance check.

    Raises ComplianceRejected when the bundle is rejected. With
    ``bypass=True`` a low score opens (or consumes) a bypass entry.
    """
    def decorator(func: Callable):
        def wrapper(self, compliance_data, *args, **kwargs):
            self.verifier.require(self.address, policy_key, compliance_data, bypass=bypass)
            return func(self, compliance_data, *args, **kwargs)
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        wrapper.policy_key = policy_key
        return wrapper
    return decorator


class ProtectedResource:
    """Base for anything gated by compliance checks."""

    def __init__(self, verifier: ComplianceVerifier, address: str):
        self.verifier = verifier
        self.address = normalize_address(address)

    def set_policy(self, policy_key: Union[bytes, str], policy: Policy) -> None:
        # The resource acts as its own caller, so the owner check passes.
        self.verifier.set_policy(self.address, self.address, policy_key, policy)

    def get_policy(self, policy_key: Union[bytes, str]) -> Policy:
        return self.verifier.get_policy(self.address, policy_key)

    def bypass_entry(self, beneficiary: str, policy_key: Union[bytes, str]) -> Optional[BypassEntry]:
        return self.verifier.bypass_entry(beneficiary, self.address, policy_key)
