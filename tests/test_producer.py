"""Message producer defaults, overrides and nonce bookkeeping."""

from __future__ import annotations

from chain_validation.actors import (
    ExecParams,
    InitMethod,
    MinerMethod,
    MultisigConstructorParams,
    MultisigMethod,
    PaymentChannelConstructorParams,
    ProposeParams,
    TxnIDParams,
)
from chain_validation.address import INIT_ACTOR_ADDR, new_id_address
from chain_validation.chain.producer import MessageKind, MessageProducer
from chain_validation.config import MULTISIG_ACTOR_CODE, PAYMENT_CHANNEL_ACTOR_CODE
from chain_validation.encoding import decode_as

ALICE = new_id_address(100)
BOB = new_id_address(101)


def _producer() -> MessageProducer:
    return MessageProducer(default_gas_fee_cap=200, default_gas_premium=1, default_gas_limit=1_000)


def test_defaults_apply_unless_overridden() -> None:
    p = _producer()
    msg = p.transfer(ALICE, BOB)
    assert (msg.gas_limit, msg.gas_fee_cap, msg.gas_premium, msg.value) == (1_000, 200, 1, 0)

    msg = p.transfer(ALICE, BOB, value=5, gas_limit=10, gas_fee_cap=150, gas_premium=3)
    assert (msg.gas_limit, msg.gas_fee_cap, msg.gas_premium, msg.value) == (10, 150, 3, 5)


def test_nonces_count_per_sender() -> None:
    p = _producer()
    assert [p.transfer(ALICE, BOB).nonce for _ in range(3)] == [0, 1, 2]
    assert p.transfer(BOB, ALICE).nonce == 0


def test_explicit_nonce_leaves_counter_alone() -> None:
    p = _producer()
    assert p.transfer(ALICE, BOB, nonce=7).nonce == 7
    assert p.transfer(ALICE, BOB).nonce == 0


def test_messages_are_remembered_in_order() -> None:
    p = _producer()
    first = p.transfer(ALICE, BOB)
    second = p.transfer(BOB, ALICE)
    assert p.messages() == [first, second]
    p.messages().clear()
    assert len(p.messages()) == 2


def test_create_payment_channel_targets_init() -> None:
    msg = _producer().create_payment_channel_actor(ALICE, BOB, value=9)
    assert msg.to == INIT_ACTOR_ADDR
    assert msg.method == InitMethod.EXEC
    params = decode_as(msg.params, ExecParams)
    assert params.code_cid == PAYMENT_CHANNEL_ACTOR_CODE
    assert decode_as(params.constructor_params, PaymentChannelConstructorParams) == PaymentChannelConstructorParams(
        from_=ALICE, to=BOB
    )


def test_create_multisig_params() -> None:
    msg = _producer().create_multisig_actor(ALICE, signers=[ALICE, BOB], unlock_duration=4, num_approvals_threshold=2)
    params = decode_as(msg.params, ExecParams)
    assert params.code_cid == MULTISIG_ACTOR_CODE
    ctor = decode_as(params.constructor_params, MultisigConstructorParams)
    assert ctor == MultisigConstructorParams(signers=[ALICE, BOB], num_approvals_threshold=2, unlock_duration=4)


def test_multisig_methods() -> None:
    p = _producer()
    multisig = new_id_address(200)
    proposal = ProposeParams(to=BOB, value=1, method=0, params=b"")

    msg = p.multisig_propose(ALICE, multisig, proposal)
    assert msg.method == MultisigMethod.PROPOSE
    assert decode_as(msg.params, ProposeParams) == proposal

    msg = p.multisig_approve(BOB, multisig, 3)
    assert msg.method == MultisigMethod.APPROVE
    assert decode_as(msg.params, TxnIDParams).id == 3

    assert p.multisig_cancel(ALICE, multisig, 3).method == MultisigMethod.CANCEL


def test_produce_dispatches_on_kind() -> None:
    p = _producer()
    assert p.produce(MessageKind.TRANSFER, ALICE, BOB, value=2).value == 2
    assert p.produce("miner_control_addresses", ALICE, BOB).method == MinerMethod.CONTROL_ADDRESSES
    msg = p.produce(MessageKind.CALL, ALICE, BOB, method=42, params=b"\x01")
    assert (msg.method, msg.params) == (42, b"\x01")
