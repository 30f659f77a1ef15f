import pytest

from taco_wallet.services.fees import FeeParameters
from taco_wallet.services.operation import (
    EXECUTE_SELECTOR,
    VERIFICATION_GAS_LIMIT,
    Call,
    build_user_operation,
    encode_call_data,
    stub_signature,
)

SENDER = "0x8888888888888888888888888888888888888888"
TARGET = "0x9999999999999999999999999999999999999999"
FEES = FeeParameters(max_fee_per_gas=60_000_000, max_priority_fee_per_gas=5_000_000)


def make_op(**kwargs):
    defaults = dict(sender=SENDER, nonce=0, calls=[Call(to=TARGET, value=10**16)], fees=FEES)
    defaults.update(kwargs)
    return build_user_operation(**defaults)


class TestUserOperation:
    def test_call_data_uses_execute_selector(self):
        op = make_op()
        assert op.call_data[:4] == EXECUTE_SELECTOR
        assert op.call_data == encode_call_data((Call(to=TARGET, value=10**16),))

    def test_verification_gas_is_fixed(self):
        assert make_op().verification_gas_limit == VERIFICATION_GAS_LIMIT == 500_000

    def test_rpc_shape_without_factory_or_paymaster(self):
        rpc = make_op(nonce=5).to_rpc()

        assert rpc["sender"] == SENDER
        assert rpc["nonce"] == "0x5"
        assert rpc["maxFeePerGas"] == hex(60_000_000)
        assert rpc["maxPriorityFeePerGas"] == hex(5_000_000)
        assert rpc["verificationGasLimit"] == hex(500_000)
        assert rpc["signature"] == "0x"
        assert "factory" not in rpc
        assert "paymaster" not in rpc

    def test_rpc_includes_factory_and_paymaster_when_set(self):
        op = make_op(factory=SENDER, factory_data=b"\x01\x02").with_updates(
            paymaster=TARGET, paymaster_data=b"\xab", paymaster_verification_gas_limit=70_000
        )
        rpc = op.to_rpc()

        assert rpc["factory"] == SENDER
        assert rpc["factoryData"] == "0x0102"
        assert rpc["paymaster"] == TARGET
        assert rpc["paymasterData"] == "0xab"
        assert rpc["paymasterVerificationGasLimit"] == hex(70_000)

    def test_content_hash_ignores_gas_and_signature(self):
        op = make_op()
        estimated = op.with_updates(call_gas_limit=123_456, signature=b"\x11" * 130)
        assert op.content_hash(84532) == estimated.content_hash(84532)

    def test_content_hash_covers_intent(self):
        op = make_op()
        assert op.content_hash(84532) != op.content_hash(11155111)
        assert op.content_hash(84532) != make_op(nonce=1).content_hash(84532)
        assert op.content_hash(84532) != make_op(calls=[Call(to=TARGET, value=1)]).content_hash(84532)


class TestCalls:
    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            Call(to=TARGET, value=-1)

    def test_batches_not_supported(self):
        with pytest.raises(ValueError):
            encode_call_data((Call(to=TARGET, value=1), Call(to=TARGET, value=2)))


def test_stub_signature_is_sized_per_signer():
    stub = stub_signature(2)
    assert len(stub) == 130
    assert stub[64] == 0x1C
