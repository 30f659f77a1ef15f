import pytest

from taco_wallet.config import Settings
from taco_wallet.services.account import AccountDeriver, AccountFactory
from taco_wallet.services.cohort import CohortDescriptor, Participant

# Digit-only addresses are already in checksum form.
SIGNER_1 = "0x1111111111111111111111111111111111111111"
SIGNER_2 = "0x2222222222222222222222222222222222222222"
SIGNER_3 = "0x3333333333333333333333333333333333333333"
FACTORY = "0x4444444444444444444444444444444444444444"
IMPLEMENTATION = "0x5555555555555555555555555555555555555555"
ROOT_COORDINATOR = "0x6666666666666666666666666666666666666666"
MULTISIG = "0x7777777777777777777777777777777777777777"
PROXY_CREATION_CODE = "0x3d602d80600a3d3981f3363d3d373d3d3d363d73"


@pytest.fixture
def settings():
    return Settings(
        API_KEY="test-key",
        SIGNING_CHAIN_RPC_URL="http://base.rpc.test",
        ETH_RPC_URL="http://eth.rpc.test",
        BUNDLER_URL="http://bundler.test/rpc?apikey=abc",
        BUNDLER_URL_ETH="http://bundler-eth.test/rpc",
        PORTER_URL="http://porter.test/",
        TACO_SIGNING_COORDINATOR_ADDRESS=ROOT_COORDINATOR,
        ACCOUNT_FACTORY_ADDRESS=FACTORY,
        ACCOUNT_IMPLEMENTATION_ADDRESS=IMPLEMENTATION,
        ACCOUNT_PROXY_CREATION_CODE=PROXY_CREATION_CODE,
        COHORT_RESOLVER_BASE="root",
        COHORT_RESOLVER_ETH="root",
        COHORT_CACHE_TTL_SECONDS=30,
        RETRY_MAX_ATTEMPTS=3,
        RETRY_MIN_WAIT_SECONDS=0,
        RETRY_MAX_WAIT_SECONDS=0,
    )


@pytest.fixture
def cohort():
    """Signers [S1, S2, S3], threshold 2."""
    return CohortDescriptor(
        multisig_address=MULTISIG,
        participants=(
            Participant(signer_address=SIGNER_1),
            Participant(signer_address=SIGNER_2),
            Participant(signer_address=SIGNER_3),
        ),
        threshold=2,
    )


@pytest.fixture
def factory(settings):
    return AccountFactory.from_settings(settings)


@pytest.fixture
def deriver(factory):
    return AccountDeriver(factory, origin_label="Discord", tenant_label="Collab.Land")
