"""
account.py - Deterministic smart account derivation.

CRITICAL INVARIANTS:
1. compute_deploy_salt() is the ONLY salt routine. Sender and receiver paths
   both go through it; funds sent to a wrongly derived address are lost.
2. The address is a pure function of (factory, implementation, signers,
   threshold, salt). No network call, reproducible off-chain.
3. Nothing is deployed here; `deployed` is always False.
"""

from dataclasses import dataclass
from typing import List, Tuple

from eth_abi import encode
from eth_utils import keccak, to_bytes, to_checksum_address

from taco_wallet.errors import ConfigurationError, DerivationError, ValidationError
from taco_wallet.services.cohort import CohortDescriptor

INITIALIZE_SELECTOR = keccak(text="initialize(address[],uint256)")[:4]
FACTORY_DEPLOY_SELECTOR = keccak(text="deploy(bytes,bytes32)")[:4]


def compute_deploy_salt(user_id: str, origin_label: str, tenant_label: str) -> bytes:
    """
    Deterministic 32-byte deploy salt for a user identifier.

    keccak256(utf8("{user_id}|{origin_label}|{tenant_label}")), used directly
    as the CREATE2 salt.
    """
    if not user_id or not user_id.strip():
        raise ValidationError("userId is required", details={"field": "userId"})
    return keccak(text=f"{user_id}|{origin_label}|{tenant_label}")


@dataclass(frozen=True)
class AccountDescriptor:
    address: str
    deploy_salt: bytes
    threshold: int
    signers: Tuple[str, ...]
    deployed: bool = False

    @property
    def deploy_salt_hex(self) -> str:
        return "0x" + self.deploy_salt.hex()


@dataclass(frozen=True)
class AccountFactory:
    """CREATE2 deployment parameters of the MultiSig DeleGator factory."""

    factory_address: str
    implementation_address: str
    proxy_creation_code: bytes

    @classmethod
    def from_settings(cls, settings) -> "AccountFactory":
        code = settings.ACCOUNT_PROXY_CREATION_CODE
        if not code or code in ("0x", "0X"):
            raise ConfigurationError(
                "ACCOUNT_PROXY_CREATION_CODE is not configured",
                details={"missing": ["ACCOUNT_PROXY_CREATION_CODE"]},
            )
        return cls(
            factory_address=to_checksum_address(settings.ACCOUNT_FACTORY_ADDRESS),
            implementation_address=to_checksum_address(settings.ACCOUNT_IMPLEMENTATION_ADDRESS),
            proxy_creation_code=to_bytes(hexstr=code),
        )

    def init_code(self, signers: List[str], threshold: int) -> bytes:
        initializer = INITIALIZE_SELECTOR + encode(["address[]", "uint256"], [signers, threshold])
        return self.proxy_creation_code + encode(
            ["address", "bytes"], [self.implementation_address, initializer]
        )

    def address_of(self, signers: List[str], threshold: int, salt: bytes) -> str:
        init_code_hash = keccak(self.init_code(signers, threshold))
        digest = keccak(b"\xff" + to_bytes(hexstr=self.factory_address) + salt + init_code_hash)
        return to_checksum_address(digest[12:])


class AccountDeriver:
    """Derives counterfactual MultiSig smart accounts for user identifiers."""

    def __init__(self, factory: AccountFactory, origin_label: str, tenant_label: str):
        self.factory = factory
        self.origin_label = origin_label
        self.tenant_label = tenant_label

    def salt_for(self, user_id: str) -> bytes:
        return compute_deploy_salt(user_id, self.origin_label, self.tenant_label)

    def derive(self, user_id: str, cohort: CohortDescriptor) -> AccountDescriptor:
        """
        Compute the account address for a user under the given cohort.

        Raises:
            ValidationError: blank user id
            DerivationError: cohort cannot parameterize a multisig account
        """
        signers = cohort.signers
        if not signers:
            raise DerivationError("Cohort has no signers", details={"threshold": cohort.threshold})
        if cohort.threshold < 1 or cohort.threshold > len(signers):
            raise DerivationError(
                f"Threshold {cohort.threshold} invalid for {len(signers)} signers",
                details={"threshold": cohort.threshold, "signers": len(signers)},
            )

        salt = self.salt_for(user_id)
        address = self.factory.address_of(signers, cohort.threshold, salt)
        return AccountDescriptor(
            address=address,
            deploy_salt=salt,
            threshold=cohort.threshold,
            signers=tuple(signers),
            deployed=False,
        )

    def factory_data(self, account: AccountDescriptor) -> bytes:
        """Calldata for the factory call that deploys `account`."""
        init_code = self.factory.init_code(list(account.signers), account.threshold)
        return FACTORY_DEPLOY_SELECTOR + encode(["bytes", "bytes32"], [init_code, account.deploy_salt])
