import asyncio
import json

import httpx
import pytest

from taco_wallet.errors import RelaySubmissionFailure, SettlementTimeout, UpstreamUnavailableError
from taco_wallet.services.bundler import BundlerClient
from taco_wallet.services.fees import FeeParameters
from taco_wallet.services.operation import Call, build_user_operation

ENTRY_POINT = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
BUNDLER_URL = "http://bundler.test/rpc?apikey=abc"


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def run_with_bundler(handler, fn):
    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await fn(BundlerClient(http_client, BUNDLER_URL, ENTRY_POINT))

    return asyncio.run(main())


@pytest.fixture
def user_op():
    return build_user_operation(
        sender="0x8888888888888888888888888888888888888888",
        nonce=0,
        calls=[Call(to="0x9999999999999999999999999999999999999999", value=1)],
        fees=FeeParameters(max_fee_per_gas=1, max_priority_fee_per_gas=1_000_000),
    )


class TestBundlerRpc:
    def test_estimate_gas(self, user_op):
        seen = {}

        def handler(request):
            seen["params"] = request.url.params
            seen["body"] = json.loads(request.content)
            return rpc_result(
                {
                    "callGasLimit": "0x186a0",
                    "verificationGasLimit": "0x1",
                    "preVerificationGas": "0xc350",
                    "paymasterVerificationGasLimit": "0x7530",
                }
            )

        estimate = run_with_bundler(handler, lambda bundler: bundler.estimate_gas(user_op))

        assert estimate == {
            "call_gas_limit": 100_000,
            "verification_gas_limit": 1,
            "pre_verification_gas": 50_000,
            "paymaster_verification_gas_limit": 30_000,
        }
        assert seen["params"]["apikey"] == "abc"
        assert seen["body"]["method"] == "eth_estimateUserOperationGas"
        assert seen["body"]["params"][1] == ENTRY_POINT

    def test_paymaster_stub_data(self, user_op):
        def handler(request):
            body = json.loads(request.content)
            assert body["method"] == "pm_getPaymasterStubData"
            assert body["params"][2] == hex(84532)
            return rpc_result(
                {
                    "paymaster": "0x7777777777777777777777777777777777777777",
                    "paymasterData": "0xabcd",
                    "paymasterPostOpGasLimit": "0x0",
                }
            )

        fields = run_with_bundler(handler, lambda bundler: bundler.paymaster_stub_data(user_op, 84532))

        assert fields == {
            "paymaster": "0x7777777777777777777777777777777777777777",
            "paymaster_data": b"\xab\xcd",
            "paymaster_post_op_gas_limit": 0,
        }

    def test_send_returns_hash(self, user_op):
        op_hash = "0x" + "ab" * 32
        result = run_with_bundler(
            lambda request: rpc_result(op_hash), lambda bundler: bundler.send_user_operation(user_op)
        )
        assert result == op_hash

    def test_rpc_error_is_relay_rejection(self, user_op):
        def handler(request):
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32500, "message": "AA21 didn't pay prefund"}},
            )

        with pytest.raises(RelaySubmissionFailure) as exc_info:
            run_with_bundler(handler, lambda bundler: bundler.send_user_operation(user_op))
        assert exc_info.value.details["rpc_code"] == -32500

    def test_client_error_is_relay_rejection(self, user_op):
        with pytest.raises(RelaySubmissionFailure):
            run_with_bundler(
                lambda request: httpx.Response(401, text="bad key"),
                lambda bundler: bundler.send_user_operation(user_op),
            )

    def test_server_error_is_transient(self, user_op):
        with pytest.raises(UpstreamUnavailableError):
            run_with_bundler(
                lambda request: httpx.Response(503, text="overloaded"),
                lambda bundler: bundler.send_user_operation(user_op),
            )

    def test_non_json_body_is_transient(self, user_op):
        with pytest.raises(UpstreamUnavailableError):
            run_with_bundler(
                lambda request: httpx.Response(200, text="<html>"),
                lambda bundler: bundler.send_user_operation(user_op),
            )


class TestWaitForReceipt:
    def test_returns_inner_receipt(self):
        def handler(request):
            return rpc_result({"success": True, "receipt": {"transactionHash": "0xfeed"}})

        receipt = run_with_bundler(
            handler, lambda bundler: bundler.wait_for_receipt("0xop", timeout=1, poll_interval=0.01)
        )
        assert receipt == {"transactionHash": "0xfeed"}

    def test_polls_until_mined(self):
        responses = iter(
            [
                rpc_result(None),
                httpx.Response(502, text="bad gateway"),
                rpc_result({"success": True, "receipt": {"transactionHash": "0xfeed"}}),
            ]
        )

        receipt = run_with_bundler(
            lambda request: next(responses),
            lambda bundler: bundler.wait_for_receipt("0xop", timeout=5, poll_interval=0.01),
        )
        assert receipt["transactionHash"] == "0xfeed"

    def test_reverted_operation(self):
        def handler(request):
            return rpc_result({"success": False, "reason": "0x", "receipt": {"transactionHash": "0xdead"}})

        with pytest.raises(RelaySubmissionFailure) as exc_info:
            run_with_bundler(
                handler, lambda bundler: bundler.wait_for_receipt("0xop", timeout=1, poll_interval=0.01)
            )
        assert exc_info.value.details["transactionHash"] == "0xdead"

    def test_timeout_reports_pending(self):
        with pytest.raises(SettlementTimeout) as exc_info:
            run_with_bundler(
                lambda request: rpc_result(None),
                lambda bundler: bundler.wait_for_receipt("0xop", timeout=0, poll_interval=0.01),
            )

        error = exc_info.value
        assert error.user_op_hash == "0xop"
        assert error.to_dict()["details"] == {"userOpHash": "0xop", "status": "pending"}
