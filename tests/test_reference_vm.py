"""Reference implementation: store, keys and message application."""

from __future__ import annotations

import pytest

from chain_validation.actors import ExecParams, InitMethod
from chain_validation.address import BURNT_FUNDS_ACTOR_ADDR, INIT_ACTOR_ADDR, new_id_address
from chain_validation.config import ACCOUNT_ACTOR_CODE
from chain_validation.drivers.state_driver import BLS, SECP
from chain_validation.drivers.test_driver import TestDriver
from chain_validation.encoding import serialize
from chain_validation.errors import ExitCode, UnknownKey
from chain_validation.reference.keys import ReferenceKeyManager
from chain_validation.reference.vm import message_size
from chain_validation.types import BlockMessagesInfo, Signature, SignedMessage, SigType

BALANCE = 10**13


def _total_balance(td: TestDriver) -> int:
    return sum(entry.balance for entry in td.state().actors.values())


def test_transfer_conserves_total_balance(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    _, bob = td.new_account_actor(BLS, 0)
    total = _total_balance(td)

    result = td.apply_ok(td.message_producer.transfer(alice, bob, value=5))
    assert result.receipt.gas_used > 0
    assert td.get_balance(bob) == 5
    assert _total_balance(td) == total


def test_rejected_sender_leaves_state_untouched(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    root = td.state().root()

    result = td.validator.apply_message(1, td.message_producer.transfer(new_id_address(4242), alice))
    assert result.receipt.exit_code == ExitCode.SYS_ERR_SENDER_INVALID
    assert result.receipt.gas_used == 0
    assert result.penalty == td.policy.miner_penalty(td.message_producer.default_gas_limit)

    result = td.validator.apply_message(1, td.message_producer.transfer(alice, alice, nonce=3))
    assert result.receipt.exit_code == ExitCode.SYS_ERR_SENDER_STATE_INVALID
    assert td.state().root() == root


def test_out_of_gas_charges_full_limit(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    msg = td.message_producer.transfer(alice, BURNT_FUNDS_ACTOR_ADDR, value=1, gas_limit=10)
    result = td.apply_failure(msg, ExitCode.SYS_ERR_OUT_OF_GAS)
    assert result.receipt.gas_used == 10
    # the value transfer was reverted; the call sequence was not
    assert td.require_actor(alice).call_seq_num == 1
    td.assert_actor_change(alice, BALANCE, 10, msg.gas_premium, 0, result.receipt, 1)


def test_message_size_ignores_numeric_values(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    small = td.message_producer.transfer(alice, alice, nonce=0, gas_limit=1)
    large = td.message_producer.transfer(alice, alice, nonce=2**40, gas_limit=2**60, value=2**100)
    assert message_size(small) == message_size(large)


def test_actor_errors(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    _, bob = td.new_account_actor(SECP, 0)
    producer = td.message_producer

    td.apply_failure(producer.build(bob, alice, 7, b""), ExitCode.SYS_ERR_INVALID_METHOD)
    td.apply_failure(producer.transfer(alice, bob, value=-1), ExitCode.SYS_ERR_ILLEGAL_ARGUMENT)

    forbidden = ExecParams(code_cid=ACCOUNT_ACTOR_CODE, constructor_params=b"")
    td.apply_failure(producer.build(INIT_ACTOR_ADDR, alice, InitMethod.EXEC, serialize(forbidden)), ExitCode.ERR_FORBIDDEN)
    td.apply_failure(producer.build(INIT_ACTOR_ADDR, alice, InitMethod.EXEC, b"\xff"), ExitCode.ERR_SERIALIZATION)

    assert td.require_actor(alice).call_seq_num == 4
    td.assert_balance(bob, 0)


def test_signatures(td: TestDriver) -> None:
    alice, alice_id = td.new_account_actor(SECP, BALANCE)
    msg = td.message_producer.transfer(alice, alice_id, nonce=0)

    td.apply_signed_ok(msg)

    # A signature over a different message does not verify.
    other = td.message_producer.transfer(alice, alice_id, nonce=1)
    stolen = SignedMessage(message=other, signature=td.sign_message(msg).signature)
    result = td.validator.apply_signed_message(1, stolen)
    assert result.receipt.exit_code == ExitCode.SYS_ERR_SENDER_INVALID

    wrong_type = SignedMessage(
        message=other, signature=Signature(type=SigType.BLS, data=td.sign_message(other).signature.data)
    )
    result = td.validator.apply_signed_message(1, wrong_type)
    assert result.receipt.exit_code == ExitCode.SYS_ERR_SENDER_INVALID


def test_key_manager_is_deterministic() -> None:
    first, second = ReferenceKeyManager(b"seed"), ReferenceKeyManager(b"seed")
    assert first.new_secp256k1_account_address() == second.new_secp256k1_account_address()
    assert first.new_bls_account_address() == second.new_bls_account_address()
    assert ReferenceKeyManager(b"other").new_bls_account_address() != ReferenceKeyManager(b"seed").new_bls_account_address()
    with pytest.raises(UnknownKey):
        first.sign(new_id_address(100), b"data")


def test_tipset_skips_duplicates_and_requires_blocks(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    msg = td.message_producer.transfer(alice, BURNT_FUNDS_ACTOR_ADDR)
    block = BlockMessagesInfo(miner=td.exe_ctx.miner, bls_messages=[msg, msg])

    result = td.validator.applier.apply_tipset_messages(1, [block, block])
    assert len(result.receipts) == 1
    assert result.state_root == td.state().root()

    with pytest.raises(ValueError):
        td.validator.applier.apply_tipset_messages(1, [])


def test_store_root_and_snapshot(td: TestDriver) -> None:
    store = td.state()
    root = store.root()
    checkpoint = store.snapshot()

    _, alice = td.new_account_actor(SECP, 1)
    assert store.root() != root

    store.restore(checkpoint)
    assert store.root() == root
    assert td.try_actor(alice) is None

    with pytest.raises(ValueError):
        store.create_actor(ACCOUNT_ACTOR_CODE, INIT_ACTOR_ADDR, 0, None)
