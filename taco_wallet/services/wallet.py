"""Account creation and balance lookups."""

import logging
from decimal import Decimal

from eth_utils import is_address, to_checksum_address

from taco_wallet.errors import ValidationError
from taco_wallet.services import contracts
from taco_wallet.services.account import AccountDescriptor
from taco_wallet.services.orchestrator import TransferOrchestrator
from taco_wallet.services.units import WEI_PER_ETHER

logger = logging.getLogger(__name__)


class WalletService:
    """
    Read-side operations sharing the orchestrator's derivation path.

    create_account() returns the same address transfer() would use as the
    sender for that user; nothing is deployed.
    """

    def __init__(self, orchestrator: TransferOrchestrator):
        self.orchestrator = orchestrator

    async def create_account(self, user_id: str, chain_key: str) -> AccountDescriptor:
        _config, _cohort, account = await self.orchestrator.resolve_sender(user_id, chain_key)
        logger.info("Derived account %s for user %s on %s", account.address, user_id, chain_key)
        return account

    async def get_balance(self, address: str, chain_key: str) -> Decimal:
        if not is_address(address):
            raise ValidationError("address must be an address", details={"field": "address"})

        orchestrator = self.orchestrator
        config = orchestrator.chains.resolve(chain_key)
        clients = await orchestrator.clients.get(config)
        checksum = to_checksum_address(address)
        wei = await orchestrator.retry.run(
            lambda: contracts.read_contract(
                clients.execution.eth.get_balance(checksum),
                f"get_balance({checksum})",
                orchestrator.upstream_timeout,
            ),
            "balance",
        )
        return Decimal(wei) / WEI_PER_ETHER
