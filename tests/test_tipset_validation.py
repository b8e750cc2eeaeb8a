"""Tipset application checked against the economic model."""

from __future__ import annotations

from typing import Dict, List, Set

import pytest

from chain_validation.actors import METHOD_SEND, MultisigConstructorParams, ProposeParams, ProposeReturn
from chain_validation.address import BURNT_FUNDS_ACTOR_ADDR, REWARD_ACTOR_ADDR, Address, new_id_address
from chain_validation.comparator import ConformanceMismatch
from chain_validation.drivers.state_driver import BLS, SECP
from chain_validation.drivers.test_driver import TestDriver
from chain_validation.drivers.tipset import BlockBuilder, TipSetMessageBuilder
from chain_validation.encoding import serialize
from chain_validation.errors import ExitCode
from chain_validation.reference.vm import ReferenceApplier

BALANCE = 10**13
MULTISIG_BALANCE = 10_000


def _fields(exc: pytest.ExceptionInfo) -> Set[str]:
    return {d.field for d in exc.value.divergences}


def _balance_field(label: str, addr: Address) -> str:
    return f"{label} {addr} balance"


def _applier(td: TestDriver) -> ReferenceApplier:
    return td.validator.applier


def _tipset(td: TestDriver, bb: BlockBuilder) -> TipSetMessageBuilder:
    return TipSetMessageBuilder(td).with_block_builder(bb)


def test_multisig_executing_proposal_inside_tipset(td: TestDriver) -> None:
    alice, alice_id = td.new_account_actor(SECP, BALANCE)
    _, outsider_id = td.new_account_actor(BLS, 0)
    multisig = new_id_address(outsider_id.id + 1)
    params = MultisigConstructorParams(signers=[alice_id], num_approvals_threshold=1, unlock_duration=0)
    ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
    td.must_create_and_verify_multisig_actor(
        0, MULTISIG_BALANCE, multisig, alice, params, ExitCode.OK, serialize(ret)
    )

    # The multisig receives 5 and pays out its whole previous balance.
    proposal = ProposeParams(to=outsider_id, value=MULTISIG_BALANCE, method=METHOD_SEND, params=b"")
    msg = td.message_producer.multisig_propose(alice_id, multisig, proposal, value=5, nonce=1)
    applied = ProposeReturn(txn_id=0, applied=True, exit_code=int(ExitCode.OK), ret=b"")
    _tipset(td, BlockBuilder(td, td.exe_ctx.miner).with_bls_message_and_ret(msg, serialize(applied))).apply_and_validate()

    td.assert_balance(multisig, 5)
    td.assert_balance(outsider_id, MULTISIG_BALANCE)


def test_zero_value_send_still_checks_receiver(td: TestDriver, monkeypatch: pytest.MonkeyPatch) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    _, bob = td.new_account_actor(BLS, BALANCE)
    applier = _applier(td)
    settle = applier._settle

    def leak_from_receiver(tallies: Dict) -> None:
        settle(tallies)
        applier.store.add_balance(bob, -1)
        applier.store.add_balance(BURNT_FUNDS_ACTOR_ADDR, 1)

    monkeypatch.setattr(applier, "_settle", leak_from_receiver)
    bb = BlockBuilder(td, td.exe_ctx.miner).with_bls_message_ok(td.message_producer.transfer(alice, bob))
    with pytest.raises(ConformanceMismatch) as exc:
        _tipset(td, bb).apply_and_validate()
    assert _balance_field("actor", bob) in _fields(exc)


def test_unburned_penalty_is_detected(td: TestDriver, monkeypatch: pytest.MonkeyPatch) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    applier = _applier(td)
    settle = applier._settle

    def keep_penalties(tallies: Dict) -> None:
        for tally in tallies.values():
            tally.penalties = 0
        settle(tallies)

    monkeypatch.setattr(applier, "_settle", keep_penalties)
    bb = BlockBuilder(td, td.exe_ctx.miner).with_bls_message_and_code(
        td.message_producer.transfer(new_id_address(4242), alice), ExitCode.SYS_ERR_SENDER_INVALID
    )
    with pytest.raises(ConformanceMismatch) as exc:
        _tipset(td, bb).apply_and_validate()
    fields = _fields(exc)
    assert _balance_field("burnt funds", BURNT_FUNDS_ACTOR_ADDR) in fields
    assert _balance_field("miner", td.exe_ctx.miner) in fields


def test_missing_block_reward_is_detected(td: TestDriver, monkeypatch: pytest.MonkeyPatch) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    applier = _applier(td)
    settle = applier._settle
    reward = td.get_reward_summary().next_per_block_reward
    miner = td.exe_ctx.miner

    def withhold_reward(tallies: Dict) -> None:
        settle(tallies)
        applier.store.add_balance(miner, -reward)
        applier.store.add_balance(REWARD_ACTOR_ADDR, reward)

    monkeypatch.setattr(applier, "_settle", withhold_reward)
    bb = BlockBuilder(td, miner).with_bls_message_ok(td.message_producer.transfer(alice, BURNT_FUNDS_ACTOR_ADDR))
    with pytest.raises(ConformanceMismatch) as exc:
        _tipset(td, bb).apply_and_validate()
    fields = _fields(exc)
    assert "treasury" in fields
    assert _balance_field("miner", miner) in fields


def test_gas_charged_to_penalized_sender_is_detected(td: TestDriver, monkeypatch: pytest.MonkeyPatch) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    applier = _applier(td)
    apply = applier._apply

    def charge_rejected_sender(epoch, msg, signature):
        result = apply(epoch, msg, signature)
        sender = applier.store.resolve(msg.from_)
        if result.receipt.exit_code == ExitCode.SYS_ERR_SENDER_STATE_INVALID and sender is not None:
            applier.store.add_balance(sender, -1000)
            applier.store.add_balance(BURNT_FUNDS_ACTOR_ADDR, 1000)
        return result

    monkeypatch.setattr(applier, "_apply", charge_rejected_sender)
    bb = BlockBuilder(td, td.exe_ctx.miner).with_bls_message_and_code(
        td.message_producer.transfer(alice, alice, nonce=5), ExitCode.SYS_ERR_SENDER_STATE_INVALID
    )
    with pytest.raises(ConformanceMismatch) as exc:
        _tipset(td, bb).apply_and_validate()
    assert _balance_field("actor", alice) in _fields(exc)


def test_apply_without_validation(td: TestDriver) -> None:
    _, alice = td.new_account_actor(SECP, BALANCE)
    # a wrong expectation is not checked by a plain apply
    bb = BlockBuilder(td, td.exe_ctx.miner).with_bls_message_and_code(
        td.message_producer.transfer(alice, BURNT_FUNDS_ACTOR_ADDR, value=7), ExitCode.SYS_ERR_INSUFFICIENT_FUNDS
    )
    result = _tipset(td, bb).apply()

    codes: List[ExitCode] = [r.exit_code for r in result.receipts]
    assert codes == [ExitCode.OK]
    assert result.state_root == td.state().root()
    assert td.require_actor(alice).call_seq_num == 1
