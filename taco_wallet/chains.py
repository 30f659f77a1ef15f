"""
chains.py - Static per-chain wiring.

The account lives on the execution chain; the TACo SigningCoordinator lives on
the coordinator chain, which need not be the same network.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from taco_wallet.config import Settings
from taco_wallet.errors import ConfigurationError

DEFAULT_CHAIN_KEY = "base-sepolia"

RESOLVER_ROOT = "root"
RESOLVER_CHILD = "child"


@dataclass(frozen=True)
class ChainConfig:
    """Immutable wiring for one supported chain."""

    key: str
    label: str
    chain_id: int
    taco_domain: str
    cohort_id: int
    coordinator_address: str  # child coordinator on the execution chain
    signing_coordinator_address: Optional[str]  # root coordinator on the coordinator chain
    resolver: str
    execution_rpc_url: str
    coordinator_rpc_url: str
    bundler_url: str
    porter_url: str

    def __post_init__(self) -> None:
        required = {
            "execution_rpc_url": self.execution_rpc_url,
            "coordinator_rpc_url": self.coordinator_rpc_url,
            "bundler_url": self.bundler_url,
            "porter_url": self.porter_url,
            "coordinator_address": self.coordinator_address,
        }
        if self.resolver == RESOLVER_ROOT:
            required["signing_coordinator_address"] = self.signing_coordinator_address
        elif self.resolver != RESOLVER_CHILD:
            raise ConfigurationError(
                f'Unknown cohort resolver "{self.resolver}" for chain "{self.key}"',
                details={"chain": self.key, "resolver": self.resolver},
            )

        missing = sorted(name for name, value in required.items() if not value)
        if missing:
            raise ConfigurationError(
                f'Missing {", ".join(missing)} for chain "{self.key}"',
                details={"chain": self.key, "missing": missing},
            )


@dataclass(frozen=True)
class _ChainDefinition:
    label: str
    chain_id: int
    execution_rpc_setting: str
    coordinator_rpc_setting: str
    bundler_setting: str
    child_coordinator_setting: str
    resolver_setting: str


CHAIN_DEFINITIONS: Dict[str, _ChainDefinition] = {
    "base-sepolia": _ChainDefinition(
        label="Base Sepolia",
        chain_id=84532,
        execution_rpc_setting="SIGNING_CHAIN_RPC_URL",
        coordinator_rpc_setting="ETH_RPC_URL",
        bundler_setting="BUNDLER_URL",
        child_coordinator_setting="TACO_SIGNING_COORDINATOR_CHILD_ADDRESS_BASE",
        resolver_setting="COHORT_RESOLVER_BASE",
    ),
    "eth-sepolia": _ChainDefinition(
        label="Ethereum Sepolia",
        chain_id=11155111,
        execution_rpc_setting="ETH_RPC_URL",
        coordinator_rpc_setting="ETH_RPC_URL",
        bundler_setting="BUNDLER_URL_ETH",
        child_coordinator_setting="TACO_SIGNING_COORDINATOR_CHILD_ADDRESS_ETH",
        resolver_setting="COHORT_RESOLVER_ETH",
    ),
}


def is_supported_chain_key(value: str) -> bool:
    return value in CHAIN_DEFINITIONS


class ChainRegistry:
    """
    Lookup from chain key to validated ChainConfig.

    Configs are built from settings on first lookup and then reused. A chain
    with incomplete configuration fails on every lookup and never affects
    the other chains.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._configs: Dict[str, ChainConfig] = {}

    def resolve(self, chain_key: str) -> ChainConfig:
        """
        Return the ChainConfig for a canonical chain key.

        Raises:
            ConfigurationError: unknown key, or a required endpoint/address is absent.
        """
        config = self._configs.get(chain_key)
        if config is not None:
            return config

        definition = CHAIN_DEFINITIONS.get(chain_key)
        if definition is None:
            raise ConfigurationError(
                f'Unsupported chain key "{chain_key}"',
                details={"chain": chain_key, "supported": sorted(CHAIN_DEFINITIONS)},
            )

        s = self.settings
        config = ChainConfig(
            key=chain_key,
            label=definition.label,
            chain_id=definition.chain_id,
            taco_domain=s.TACO_DOMAIN,
            cohort_id=s.TACO_COHORT_ID,
            coordinator_address=getattr(s, definition.child_coordinator_setting),
            signing_coordinator_address=s.TACO_SIGNING_COORDINATOR_ADDRESS,
            resolver=getattr(s, definition.resolver_setting).lower(),
            execution_rpc_url=getattr(s, definition.execution_rpc_setting),
            coordinator_rpc_url=getattr(s, definition.coordinator_rpc_setting),
            bundler_url=getattr(s, definition.bundler_setting),
            porter_url=s.PORTER_URL,
        )
        self._configs[chain_key] = config
        return config

    def resolve_key(self, raw: Optional[str]) -> str:
        """
        Map a canonical key or a human-readable label to a chain key.

        Matching is case-insensitive. Absent or unrecognized values fall back
        to DEFAULT_CHAIN_KEY.
        """
        if not raw:
            return DEFAULT_CHAIN_KEY

        normalized = raw.strip().lower()

        # 1. Direct key match (e.g. "base-sepolia", "eth-sepolia")
        if is_supported_chain_key(normalized):
            return normalized

        # 2. Human-readable labels coming from Discord (e.g. "Base Sepolia")
        for key, definition in CHAIN_DEFINITIONS.items():
            if definition.label.lower() == normalized:
                return key

        return DEFAULT_CHAIN_KEY
