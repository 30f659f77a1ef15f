"""
operation.py - ERC-4337 (EntryPoint v0.7) user operations.

Fields are kept as Python ints/bytes; to_rpc() renders the hex-quantity JSON
shape bundlers expect.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

import jcs
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from taco_wallet.services.fees import FeeParameters

# Fixed ceiling for the MultiSig DeleGator signature check.
VERIFICATION_GAS_LIMIT = 500_000

EXECUTE_SELECTOR = keccak(text="execute((address,uint256,bytes))")[:4]


@dataclass(frozen=True)
class Call:
    to: str
    value: int
    data: bytes = b""

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError("call value must be non-negative")


def encode_call_data(calls: Tuple[Call, ...]) -> bytes:
    """DeleGator `execute(Execution)` calldata for a single call."""
    if len(calls) != 1:
        raise ValueError("exactly one call per operation is supported")
    call = calls[0]
    return EXECUTE_SELECTOR + encode(
        ["(address,uint256,bytes)"], [(to_checksum_address(call.to), call.value, call.data)]
    )


def _hex(value: int) -> str:
    return hex(value)


def _hex_bytes(value: bytes) -> str:
    return "0x" + value.hex()


@dataclass(frozen=True)
class UserOperation:
    sender: str
    nonce: int
    calls: Tuple[Call, ...]
    call_data: bytes
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    verification_gas_limit: int = VERIFICATION_GAS_LIMIT
    call_gas_limit: int = 0
    pre_verification_gas: int = 0
    factory: Optional[str] = None
    factory_data: bytes = b""
    paymaster: Optional[str] = None
    paymaster_verification_gas_limit: int = 0
    paymaster_post_op_gas_limit: int = 0
    paymaster_data: bytes = b""
    signature: bytes = b""

    def __post_init__(self) -> None:
        if not self.calls:
            raise ValueError("user operation must carry at least one call")

    def with_updates(self, **changes: Any) -> "UserOperation":
        return replace(self, **changes)

    def to_rpc(self) -> Dict[str, Any]:
        op: Dict[str, Any] = {
            "sender": self.sender,
            "nonce": _hex(self.nonce),
            "callData": _hex_bytes(self.call_data),
            "callGasLimit": _hex(self.call_gas_limit),
            "verificationGasLimit": _hex(self.verification_gas_limit),
            "preVerificationGas": _hex(self.pre_verification_gas),
            "maxFeePerGas": _hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _hex(self.max_priority_fee_per_gas),
            "signature": _hex_bytes(self.signature),
        }
        if self.factory:
            op["factory"] = self.factory
            op["factoryData"] = _hex_bytes(self.factory_data)
        if self.paymaster:
            op["paymaster"] = self.paymaster
            op["paymasterVerificationGasLimit"] = _hex(self.paymaster_verification_gas_limit)
            op["paymasterPostOpGasLimit"] = _hex(self.paymaster_post_op_gas_limit)
            op["paymasterData"] = _hex_bytes(self.paymaster_data)
        return op

    def content_hash(self, chain_id: int) -> str:
        """
        Idempotency key: keccak of the RFC 8785 canonical form of the operation's intent.

        Covers chain, sender, nonce and calls. Gas and signature are excluded
        so re-estimating or re-signing the same transfer keeps the key.
        """
        content = {
            "chainId": chain_id,
            "sender": self.sender.lower(),
            "nonce": str(self.nonce),
            "calls": [
                {"to": c.to.lower(), "value": str(c.value), "data": c.data.hex()} for c in self.calls
            ],
        }
        return "0x" + keccak(jcs.canonicalize(content)).hex()


def build_user_operation(
    sender: str,
    nonce: int,
    calls: List[Call],
    fees: FeeParameters,
    factory: Optional[str] = None,
    factory_data: bytes = b"",
) -> UserOperation:
    """Assemble an unsigned operation with the fixed verification gas ceiling."""
    calls_tuple = tuple(calls)
    return UserOperation(
        sender=sender,
        nonce=nonce,
        calls=calls_tuple,
        call_data=encode_call_data(calls_tuple),
        max_fee_per_gas=fees.max_fee_per_gas,
        max_priority_fee_per_gas=fees.max_priority_fee_per_gas,
        verification_gas_limit=VERIFICATION_GAS_LIMIT,
        factory=factory,
        factory_data=factory_data,
    )


def stub_signature(threshold: int) -> bytes:
    """Placeholder multisig signature sized for gas estimation."""
    single = b"\xff" * 64 + b"\x1c"
    return single * threshold
