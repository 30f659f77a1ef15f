"""
contracts.py - Minimal ABIs and bounded async contract reads.

Only the view functions this service needs are declared. Every read goes
through read_contract() so timeouts and error mapping are uniform:
- revert / empty return → CohortUnavailableError (the contract answered "no")
- transport failure / timeout → UpstreamUnavailableError (try again later)
"""

import asyncio
import logging
from typing import Any, Awaitable, Type

from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from taco_wallet.errors import (
    CohortUnavailableError,
    UpstreamUnavailableError,
    WalletError,
)

logger = logging.getLogger(__name__)

CHILD_COORDINATOR_ABI = [
    {
        "type": "function",
        "name": "cohortMultisigs",
        "stateMutability": "view",
        "inputs": [{"name": "cohortId", "type": "uint32"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]

SIGNING_COORDINATOR_ABI = [
    {
        "type": "function",
        "name": "getSigners",
        "stateMutability": "view",
        "inputs": [{"name": "cohortId", "type": "uint32"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "provider", "type": "address"},
                    {"name": "signerAddress", "type": "address"},
                    {"name": "signingRequestStaticKey", "type": "bytes"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "getThreshold",
        "stateMutability": "view",
        "inputs": [{"name": "cohortId", "type": "uint32"}],
        "outputs": [{"name": "", "type": "uint16"}],
    },
    {
        "type": "function",
        "name": "getSigningCohortConditions",
        "stateMutability": "view",
        "inputs": [
            {"name": "cohortId", "type": "uint32"},
            {"name": "chainId", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bytes"}],
    },
]

MULTISIG_ABI = [
    {
        "type": "function",
        "name": "getSigners",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address[]"}],
    },
    {
        "type": "function",
        "name": "threshold",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint16"}],
    },
]

ENTRY_POINT_ABI = [
    {
        "type": "function",
        "name": "getNonce",
        "stateMutability": "view",
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "key", "type": "uint192"},
        ],
        "outputs": [{"name": "nonce", "type": "uint256"}],
    },
]


async def read_contract(
    call: Awaitable[Any],
    what: str,
    timeout: float,
    revert_error: Type[WalletError] = CohortUnavailableError,
) -> Any:
    """
    Await a contract read (or any RPC coroutine) with a bound and typed errors.

    Args:
        call: The pending ``.call()`` / ``w3.eth.*`` coroutine
        what: Human-readable description used in error messages
        timeout: Seconds before the read is abandoned
        revert_error: Error class raised when the contract reverts

    Raises:
        revert_error: contract reverted or returned nothing
        UpstreamUnavailableError: RPC unreachable, failed, or timed out
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except (ContractLogicError, BadFunctionCallOutput) as e:
        raise revert_error(f"{what} reverted: {e}", details={"call": what}) from e
    except asyncio.TimeoutError as e:
        raise UpstreamUnavailableError(
            f"{what} timed out after {timeout:.0f}s", details={"call": what}
        ) from e
    except WalletError:
        raise
    except Exception as e:
        logger.warning("RPC failure during %s: %s", what, e)
        raise UpstreamUnavailableError(
            f"{what} failed: {e}", details={"call": what}
        ) from e


def child_coordinator(w3: AsyncWeb3, address: str):
    return w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=CHILD_COORDINATOR_ABI)


def signing_coordinator(w3: AsyncWeb3, address: str):
    return w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=SIGNING_COORDINATOR_ABI)


def multisig(w3: AsyncWeb3, address: str):
    return w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=MULTISIG_ABI)


def entry_point(w3: AsyncWeb3, address: str):
    return w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=ENTRY_POINT_ABI)
