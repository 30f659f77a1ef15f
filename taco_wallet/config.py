from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # API
    API_KEY: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"

    # Network endpoints
    SIGNING_CHAIN_RPC_URL: Optional[str] = None  # Base Sepolia execution chain
    ETH_RPC_URL: Optional[str] = None  # Ethereum Sepolia (coordinator chain)
    BUNDLER_URL: Optional[str] = None
    BUNDLER_URL_ETH: Optional[str] = None
    PORTER_URL: str = "https://porter-lynx.nucypher.io/"

    # TACo cohort
    TACO_DOMAIN: str = "lynx"
    TACO_COHORT_ID: int = 1
    TACO_AA_VERSION: str = "mdt"
    TACO_SIGNING_COORDINATOR_ADDRESS: Optional[str] = None
    TACO_SIGNING_COORDINATOR_CHILD_ADDRESS_BASE: str = "0xcc537b292d142dABe2424277596d8FFCC3e6A12D"
    TACO_SIGNING_COORDINATOR_CHILD_ADDRESS_ETH: str = "0x4D9Dec33A74C366d0A2b4746c56D75A25f3627b2"
    COHORT_RESOLVER_BASE: str = "root"
    COHORT_RESOLVER_ETH: str = "root"
    COHORT_CACHE_TTL_SECONDS: float = 30.0

    # Smart account factory (MetaMask delegation framework)
    ACCOUNT_FACTORY_ADDRESS: str = "0x69Aa2f9fe1572F1B640E1bbc512f5c3a734fc77c"
    ACCOUNT_IMPLEMENTATION_ADDRESS: str = "0x56a9EdB16a0105eb5a4C54f4C062e2868844f3A7"
    ACCOUNT_PROXY_CREATION_CODE: str = ""
    ENTRY_POINT_ADDRESS: str = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"

    # Deploy salt labels (Collab.Land identity)
    SALT_ORIGIN_LABEL: str = "Discord"
    SALT_TENANT_LABEL: str = "Collab.Land"

    # Relay
    PAYMASTER_ENABLED: bool = True

    # Timeouts and retries
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0
    RECEIPT_TIMEOUT_SECONDS: float = 120.0
    RECEIPT_POLL_INTERVAL_SECONDS: float = 2.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_MIN_WAIT_SECONDS: float = 0.5
    RETRY_MAX_WAIT_SECONDS: float = 4.0

    class Config:
        env_file = ".env"
        extra = "allow"  # Allow extra environment variables


settings = Settings()
