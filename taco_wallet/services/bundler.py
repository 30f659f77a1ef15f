"""
bundler.py - JSON-RPC client for the ERC-4337 relay (bundler + ERC-7677 paymaster).

Error mapping:
- timeout / network failure / 5xx → UpstreamUnavailableError (transient)
- 4xx / JSON-RPC error object   → RelaySubmissionFailure (relay said no)
"""

import asyncio
import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from taco_wallet.errors import (
    RelaySubmissionFailure,
    SettlementTimeout,
    UpstreamUnavailableError,
)
from taco_wallet.services.operation import UserOperation

logger = logging.getLogger(__name__)


def _int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class BundlerClient:
    def __init__(self, http_client: httpx.AsyncClient, url: str, entry_point: str):
        self.http_client = http_client
        self.url = url
        self.entry_point = entry_point
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self.http_client.post(self.url, json=request)
            response.raise_for_status()
            body = response.json()

        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(f"Relay {method} timed out", details={"method": method}) from e

        except httpx.NetworkError as e:
            raise UpstreamUnavailableError(
                f"Relay {method} unreachable: {e}", details={"method": method}
            ) from e

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if 400 <= status_code < 500:
                raise RelaySubmissionFailure(
                    f"Relay {method} rejected with HTTP {status_code}",
                    details={"method": method, "status": status_code},
                ) from e
            raise UpstreamUnavailableError(
                f"Relay {method} failed with HTTP {status_code}",
                details={"method": method, "status": status_code},
            ) from e

        except ValueError as e:
            raise UpstreamUnavailableError(
                f"Relay {method} returned a non-JSON body", details={"method": method}
            ) from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            raise RelaySubmissionFailure(
                f"Relay {method} error: {error.get('message', error)}",
                details={"method": method, "rpc_code": error.get("code"), "data": error.get("data")},
            )
        return body.get("result")

    async def estimate_gas(self, user_op: UserOperation) -> Dict[str, int]:
        result = await self._rpc("eth_estimateUserOperationGas", [user_op.to_rpc(), self.entry_point])
        estimate = {
            "call_gas_limit": _int(result["callGasLimit"]),
            "verification_gas_limit": _int(result["verificationGasLimit"]),
            "pre_verification_gas": _int(result["preVerificationGas"]),
        }
        if result.get("paymasterVerificationGasLimit") is not None:
            estimate["paymaster_verification_gas_limit"] = _int(result["paymasterVerificationGasLimit"])
        if result.get("paymasterPostOpGasLimit") is not None:
            estimate["paymaster_post_op_gas_limit"] = _int(result["paymasterPostOpGasLimit"])
        return estimate

    async def _paymaster_fields(self, method: str, user_op: UserOperation, chain_id: int) -> Dict[str, Any]:
        result = await self._rpc(method, [user_op.to_rpc(), self.entry_point, hex(chain_id), {}])
        fields: Dict[str, Any] = {
            "paymaster": result["paymaster"],
            "paymaster_data": bytes.fromhex((result.get("paymasterData") or "0x")[2:]),
        }
        if result.get("paymasterVerificationGasLimit") is not None:
            fields["paymaster_verification_gas_limit"] = _int(result["paymasterVerificationGasLimit"])
        if result.get("paymasterPostOpGasLimit") is not None:
            fields["paymaster_post_op_gas_limit"] = _int(result["paymasterPostOpGasLimit"])
        return fields

    async def paymaster_stub_data(self, user_op: UserOperation, chain_id: int) -> Dict[str, Any]:
        """ERC-7677 `pm_getPaymasterStubData`: placeholder fields for gas estimation."""
        return await self._paymaster_fields("pm_getPaymasterStubData", user_op, chain_id)

    async def paymaster_data(self, user_op: UserOperation, chain_id: int) -> Dict[str, Any]:
        """ERC-7677 `pm_getPaymasterData`: final sponsorship fields."""
        return await self._paymaster_fields("pm_getPaymasterData", user_op, chain_id)

    async def send_user_operation(self, user_op: UserOperation) -> str:
        user_op_hash = await self._rpc("eth_sendUserOperation", [user_op.to_rpc(), self.entry_point])
        if not user_op_hash:
            raise RelaySubmissionFailure("Relay returned no user operation hash")
        return user_op_hash

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        return await self._rpc("eth_getUserOperationReceipt", [user_op_hash])

    async def wait_for_receipt(
        self, user_op_hash: str, timeout: float, poll_interval: float
    ) -> Dict[str, Any]:
        """
        Poll until the relay reports the operation mined.

        Transient polling failures are logged and polling continues until the
        deadline.

        Returns:
            The inner transaction receipt (has ``transactionHash``)

        Raises:
            SettlementTimeout: deadline passed without a receipt
            RelaySubmissionFailure: operation was mined but reverted
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                result = await self.get_user_operation_receipt(user_op_hash)
            except UpstreamUnavailableError as e:
                logger.warning("Receipt poll for %s failed: %s", user_op_hash, e.message)
                result = None

            if result:
                receipt = result.get("receipt") or {}
                if result.get("success") is False:
                    raise RelaySubmissionFailure(
                        f"User operation {user_op_hash} reverted on-chain",
                        details={
                            "userOpHash": user_op_hash,
                            "transactionHash": receipt.get("transactionHash"),
                            "reason": result.get("reason"),
                        },
                    )
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SettlementTimeout(user_op_hash, timeout)
            await asyncio.sleep(min(poll_interval, remaining))
