"""
orchestrator.py - Cohort-signed value transfers from derived smart accounts.

SEQUENCE (any failure aborts the transfer; there is no partial success):
1. Reject requests without interaction proof, before any network call
2. Resolve chain → cohort → sender account (always derived, never trusted)
3. Best-effort receiver/amount override from the interaction payload
4. Base fee → FeePolicy
5. Build the user operation (nonce, factory data, gas, paymaster)
6. Signing context → cohort signature
7. Submit (idempotency key = operation content hash)
8. Bounded wait for settlement

CONCURRENCY:
Transfers from the same sender are serialized in-process. Two in-flight
operations from one account would read the same EntryPoint nonce and
compete for inclusion.
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Dict, Optional, Tuple, Union

from eth_utils import is_address, to_checksum_address

from taco_wallet.chains import ChainConfig, ChainRegistry
from taco_wallet.errors import (
    ConfigurationError,
    MissingAuthorizationError,
    PayloadParseError,
    ValidationError,
)
from taco_wallet.services import contracts
from taco_wallet.services.account import AccountDescriptor, AccountDeriver
from taco_wallet.services.clients import ChainClients, ClientRegistry
from taco_wallet.services.cohort import CohortDescriptor, CohortResolver
from taco_wallet.services.command import parse_execute_command
from taco_wallet.services.fees import FeeParameters, FeePolicy
from taco_wallet.services.operation import (
    VERIFICATION_GAS_LIMIT,
    Call,
    UserOperation,
    build_user_operation,
    stub_signature,
)
from taco_wallet.services.retry import RetryPolicy
from taco_wallet.services.signing import AuthorizationContext, SigningContextBuilder
from taco_wallet.services.units import to_wei

logger = logging.getLogger(__name__)

MAX_REMEMBERED_SUBMISSIONS = 1024


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse an ether amount; must be a finite, non-negative number."""
    if isinstance(value, bool):
        raise ValidationError("amountEth must be a number", details={"field": "amountEth"})
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValidationError("amountEth must be a number", details={"field": "amountEth"}) from e
    if not amount.is_finite() or amount < 0:
        raise ValidationError(
            "amountEth must be a non-negative number", details={"field": "amountEth"}
        )
    return amount


def ether_to_wei(amount: Decimal) -> int:
    try:
        return to_wei(amount)
    except ValueError as e:
        raise ValidationError(
            "amountEth has more than 18 decimal places", details={"field": "amountEth"}
        ) from e


@dataclass(frozen=True)
class TransferResult:
    sender: str
    target: str
    amount: Decimal
    user_op_hash: str
    transaction_hash: str

    @property
    def amount_eth(self) -> str:
        return format(self.amount, "f")


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class TransferOrchestrator:
    def __init__(
        self,
        chains: ChainRegistry,
        clients: ClientRegistry,
        cohorts: CohortResolver,
        deriver: AccountDeriver,
        fee_policy: FeePolicy,
        signing: SigningContextBuilder,
        retry: RetryPolicy,
        entry_point: str,
        paymaster_enabled: bool = True,
        upstream_timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        receipt_poll_interval: float = 2.0,
    ):
        self.chains = chains
        self.clients = clients
        self.cohorts = cohorts
        self.deriver = deriver
        self.fee_policy = fee_policy
        self.signing = signing
        self.retry = retry
        self.entry_point = entry_point
        self.paymaster_enabled = paymaster_enabled
        self.upstream_timeout = upstream_timeout
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval

        self._sender_locks = KeyedLock()
        self._submitted: "OrderedDict[str, str]" = OrderedDict()

    async def resolve_sender(self, user_id: str, chain_key: str) -> Tuple[ChainConfig, CohortDescriptor, AccountDescriptor]:
        config = self.chains.resolve(chain_key)
        cohort = await self.retry.run(lambda: self.cohorts.resolve(config), "cohort resolution")
        return config, cohort, self.deriver.derive(user_id, cohort)

    def reinterpret(
        self,
        target: str,
        amount: Decimal,
        auth_context: AuthorizationContext,
        cohort: CohortDescriptor,
    ) -> Tuple[str, Decimal]:
        """
        Apply a receiver/amount override carried by the interaction payload.

        The receiver id goes through the same deriver as the sender. A payload
        that cannot be parsed leaves the caller's values in place.
        """
        try:
            command = parse_execute_command(auth_context.payload)
        except PayloadParseError as e:
            logger.warning("Ignoring interaction payload override: %s", e.message)
            return target, amount

        if command is None:
            return target, amount

        if command.receiver_id is not None:
            receiver = self.deriver.derive(command.receiver_id, cohort)
            logger.info("Payload names receiver %s -> %s", command.receiver_id, receiver.address)
            target = receiver.address
        if command.amount is not None:
            amount = command.amount
        return target, amount

    async def transfer(
        self,
        user_id: str,
        target: str,
        amount: Union[str, Decimal],
        chain_key: str,
        auth_context: Optional[AuthorizationContext],
    ) -> TransferResult:
        """
        Move `amount` ether from the user's smart account to `target`.

        Raises:
            MissingAuthorizationError: no interaction proof
            ValidationError: malformed amount / user id
            ConfigurationError, UpstreamUnavailableError, CohortUnavailableError,
            SigningFailure, RelaySubmissionFailure, SettlementTimeout
        """
        if auth_context is None:
            raise MissingAuthorizationError(
                "Interaction proof (discordTimestamp, discordSignature, discordPayload) is required"
            )
        amount = parse_amount(amount)

        config, cohort, sender = await self.resolve_sender(user_id, chain_key)
        target, amount = self.reinterpret(target, amount, auth_context, cohort)
        if not is_address(target):
            raise ValidationError("to must be an address", details={"field": "to"})
        target = to_checksum_address(target)
        value = ether_to_wei(amount)

        async with self._sender_locks.hold(sender.address):
            clients = await self.clients.get(config)

            base_fee = await self.retry.run(lambda: self._base_fee(clients), "base fee")
            fees = self.fee_policy.compute(base_fee)

            user_op = await self._prepare(config, clients, sender, cohort, Call(to=target, value=value), fees)

            context = await self.retry.run(
                lambda: self.signing.build(config, auth_context), "signing context"
            )
            signature = await clients.porter.sign_user_operation(cohort, user_op, context)
            signed = user_op.with_updates(signature=signature)

            user_op_hash = await self._submit(config, clients, signed)
            receipt = await clients.bundler.wait_for_receipt(
                user_op_hash, self.receipt_timeout, self.receipt_poll_interval
            )

        transaction_hash = receipt.get("transactionHash")
        logger.info(
            "Transfer settled on %s: %s -> %s (%s ETH) userOp=%s tx=%s",
            config.key,
            sender.address,
            target,
            format(amount, "f"),
            user_op_hash,
            transaction_hash,
        )
        return TransferResult(
            sender=sender.address,
            target=target,
            amount=amount,
            user_op_hash=user_op_hash,
            transaction_hash=transaction_hash,
        )

    async def _base_fee(self, clients: ChainClients) -> int:
        block = await contracts.read_contract(
            clients.execution.eth.get_block("latest"), "get_block(latest)", self.upstream_timeout
        )
        return int(block.get("baseFeePerGas") or 0)

    async def _prepare(
        self,
        config: ChainConfig,
        clients: ChainClients,
        sender: AccountDescriptor,
        cohort: CohortDescriptor,
        call: Call,
        fees: FeeParameters,
    ) -> UserOperation:
        entry_point = contracts.entry_point(clients.execution, self.entry_point)
        nonce = await self.retry.run(
            lambda: contracts.read_contract(
                entry_point.functions.getNonce(sender.address, 0).call(),
                f"EntryPoint getNonce({sender.address})",
                self.upstream_timeout,
                revert_error=ConfigurationError,
            ),
            "nonce",
        )
        code = await self.retry.run(
            lambda: contracts.read_contract(
                clients.execution.eth.get_code(sender.address),
                f"getCode({sender.address})",
                self.upstream_timeout,
            ),
            "account code",
        )

        factory, factory_data = None, b""
        if not code:
            factory = self.deriver.factory.factory_address
            factory_data = self.deriver.factory_data(sender)
            logger.info("Account %s not deployed; operation carries factory data", sender.address)

        user_op = build_user_operation(
            sender=sender.address,
            nonce=nonce,
            calls=[call],
            fees=fees,
            factory=factory,
            factory_data=factory_data,
        )
        draft = user_op.with_updates(signature=stub_signature(cohort.threshold))

        bundler = clients.bundler
        if self.paymaster_enabled:
            stub = await self.retry.run(
                lambda: bundler.paymaster_stub_data(draft, config.chain_id), "paymaster stub data"
            )
            draft = draft.with_updates(**stub)

        estimate = await self.retry.run(lambda: bundler.estimate_gas(draft), "gas estimation")
        # Verification gas stays at the fixed ceiling regardless of the estimate.
        estimate["verification_gas_limit"] = VERIFICATION_GAS_LIMIT
        draft = draft.with_updates(**estimate)

        if self.paymaster_enabled:
            sponsorship = await self.retry.run(
                lambda: bundler.paymaster_data(draft, config.chain_id), "paymaster data"
            )
            draft = draft.with_updates(**sponsorship)

        return draft.with_updates(signature=b"")

    async def _submit(self, config: ChainConfig, clients: ChainClients, signed: UserOperation) -> str:
        key = signed.content_hash(config.chain_id)
        existing = self._submitted.get(key)
        if existing is not None:
            logger.info("Operation %s already submitted as %s; not resubmitting", key, existing)
            return existing

        user_op_hash = await self.retry.run(
            lambda: clients.bundler.send_user_operation(signed), "eth_sendUserOperation"
        )
        self._submitted[key] = user_op_hash
        while len(self._submitted) > MAX_REMEMBERED_SUBMISSIONS:
            self._submitted.popitem(last=False)

        logger.info("Submitted user operation %s from %s on %s", user_op_hash, signed.sender, config.key)
        return user_op_hash
