"""Tipset scenarios: miner rewards, gas burns and penalties for in/valid messages."""

from __future__ import annotations

import logging

from ..actors import GetControlAddressesReturn
from ..address import BURNT_FUNDS_ACTOR_ADDR, CRON_ACTOR_ADDR, INIT_ACTOR_ADDR, SYSTEM_ACTOR_ADDR
from ..comparator import assert_equal
from ..drivers.economics import get_burn, get_miner_penalty, validate_rewards
from ..drivers.state_driver import BLS, SECP
from ..drivers.tipset import BlockBuilder, TipSetMessageBuilder
from ..encoding import serialize
from ..errors import ExitCode
from ..harness_config import HarnessSettings
from ..state import Factories
from .registry import scenario
from .utils import (
    GAS_LIMIT,
    GAS_PREMIUM,
    default_builder,
    new_actor_addr,
    new_bls_addr,
    new_id_addr,
    new_secp256k1_addr,
)

logger = logging.getLogger(__name__)

ACCT_DEFAULT_BALANCE = 10_000_000_000_000
SEND_VALUE = 1


@scenario("tipset")
def ok_simple_send(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/ok_simple_send") as td:
        tip_b = TipSetMessageBuilder(td)
        miner = td.exe_ctx.miner

        alice_pk, alice_id = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)
        bob_pk, bob_id = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)

        # Every combination of ID and public key address for sender and receiver.
        call_seq = 0
        for alice in (alice_pk, alice_id):
            for bob in (bob_pk, bob_id):
                a_bal = td.get_balance(alice_id)
                b_bal = td.get_balance(bob_id)
                burn_bal = td.get_balance(BURNT_FUNDS_ACTOR_ADDR)
                prev_rewards = td.get_reward_summary()
                prev_miner_bal = td.get_balance(miner)

                msg1 = td.message_producer.transfer(alice, bob, value=SEND_VALUE, nonce=call_seq)
                msg2 = td.message_producer.transfer(bob, alice, value=SEND_VALUE, nonce=call_seq)
                result = tip_b.with_block_builder(
                    BlockBuilder(td, miner).with_bls_message_ok(msg1).with_bls_message_ok(msg2)
                ).apply_and_validate()
                tip_b.clear()
                td.exe_ctx.epoch += 1

                td.assert_balance(alice_id, a_bal - td.calc_message_cost(msg1.gas_limit, msg1.gas_premium, 0, result.receipts[0]))
                td.assert_balance(bob_id, b_bal - td.calc_message_cost(msg2.gas_limit, msg2.gas_premium, 0, result.receipts[1]))

                # gas premium is 1, so the tips add up to the gas limits
                gas_sum = msg1.gas_limit + msg2.gas_limit
                new_rewards = td.get_reward_summary()
                assert_equal("treasury", prev_rewards.treasury - prev_rewards.next_per_block_reward, new_rewards.treasury)
                assert_equal("miner balance", prev_miner_bal + prev_rewards.next_per_block_reward + gas_sum, td.get_balance(miner))

                new_burn = (
                    get_burn(msg1.gas_limit, result.receipts[0].gas_used, td.policy)
                    + get_burn(msg2.gas_limit, result.receipts[1].gas_used, td.policy)
                )
                td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, burn_bal + new_burn)
                call_seq += 1



@scenario("tipset")
def penalize_sender_does_not_exist(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/penalize_sender_does_not_exist") as td:
        miner = td.exe_ctx.miner
        bb = BlockBuilder(td, miner)

        _, receiver = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)
        bad_senders = [
            new_id_addr(1234),
            new_secp256k1_addr("1234"),
            new_bls_addr(1234),
            new_actor_addr("1234"),
        ]
        for sender in bad_senders:
            bb.with_bls_message_and_code(
                td.message_producer.transfer(sender, receiver, value=SEND_VALUE),
                ExitCode.SYS_ERR_SENDER_INVALID,
            )

        prev_rewards = td.get_reward_summary()
        prev_miner_balance = td.get_balance(miner)
        TipSetMessageBuilder(td).with_block_builder(bb).apply_and_validate()

        # Nothing received, no actors created.
        td.assert_balance(receiver, ACCT_DEFAULT_BALANCE)
        for sender in bad_senders:
            td.assert_no_actor(sender)

        gas_penalty = get_miner_penalty(GAS_LIMIT, td.policy) * len(bad_senders)
        validate_rewards(prev_rewards, td.get_reward_summary(), prev_miner_balance, td.get_balance(miner), 0, gas_penalty)
        td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, gas_penalty)


@scenario("tipset")
def penalize_sender_non_account(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/penalize_sender_non_account") as td:
        miner = td.exe_ctx.miner
        bb = BlockBuilder(td, miner)

        _, receiver = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)
        # Actors that exist but can never be top-level senders.
        senders = [SYSTEM_ACTOR_ADDR, INIT_ACTOR_ADDR, CRON_ACTOR_ADDR, miner]
        for sender in senders:
            bb.with_bls_message_and_code(
                td.message_producer.transfer(sender, receiver, value=SEND_VALUE),
                ExitCode.SYS_ERR_SENDER_INVALID,
            )

        prev_rewards = td.get_reward_summary()
        prev_miner_balance = td.get_balance(miner)
        TipSetMessageBuilder(td).with_block_builder(bb).apply_and_validate()
        td.assert_balance(receiver, ACCT_DEFAULT_BALANCE)

        gas_penalty = get_miner_penalty(GAS_LIMIT, td.policy) * len(senders)
        validate_rewards(prev_rewards, td.get_reward_summary(), prev_miner_balance, td.get_balance(miner), 0, gas_penalty)
        td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, gas_penalty)


@scenario("tipset")
def penalize_wrong_callseqnum(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/penalize_wrong_callseqnum") as td:
        miner = td.exe_ctx.miner
        bb = BlockBuilder(td, miner)

        _, alice_id = td.new_account_actor(BLS, ACCT_DEFAULT_BALANCE)
        bb.with_bls_message_and_code(
            td.message_producer.transfer(alice_id, BURNT_FUNDS_ACTOR_ADDR, nonce=1),
            ExitCode.SYS_ERR_SENDER_STATE_INVALID,
        )

        prev_rewards = td.get_reward_summary()
        prev_miner_balance = td.get_balance(miner)
        TipSetMessageBuilder(td).with_block_builder(bb).apply_and_validate()

        gas_penalty = get_miner_penalty(GAS_LIMIT, td.policy)
        validate_rewards(prev_rewards, td.get_reward_summary(), prev_miner_balance, td.get_balance(miner), 0, gas_penalty)
        td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, gas_penalty)
        td.assert_balance(alice_id, ACCT_DEFAULT_BALANCE)


@scenario("tipset")
def penalize_insufficient_balance_for_gas(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/penalize_insufficient_balance_for_gas") as td:
        miner = td.exe_ctx.miner
        bb = BlockBuilder(td, miner)

        balance = 1
        _, alice_id = td.new_account_actor(BLS, balance)
        bb.with_bls_message_and_code(
            td.message_producer.transfer(alice_id, BURNT_FUNDS_ACTOR_ADDR, value=0, nonce=0, gas_limit=GAS_LIMIT),
            ExitCode.SYS_ERR_SENDER_STATE_INVALID,
        )

        prev_rewards = td.get_reward_summary()
        prev_miner_balance = td.get_balance(miner)
        TipSetMessageBuilder(td).with_block_builder(bb).apply_and_validate()

        penalty = get_miner_penalty(GAS_LIMIT, td.policy)
        validate_rewards(prev_rewards, td.get_reward_summary(), prev_miner_balance, td.get_balance(miner), 0, penalty)
        td.assert_balance(alice_id, balance)
        td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, penalty)


@scenario("tipset")
def no_penalty_insufficient_balance_for_transfer(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/no_penalty_insufficient_balance_for_transfer") as td:
        miner = td.exe_ctx.miner
        bb = BlockBuilder(td, miner)

        half_balance = 5_000_000_000_000
        _, alice_id = td.new_account_actor(BLS, half_balance + half_balance)

        # Send the whole balance in two parts; the second cannot cover value plus gas.
        msg_ok = td.message_producer.transfer(alice_id, BURNT_FUNDS_ACTOR_ADDR, value=half_balance)
        msg_fail = td.message_producer.transfer(alice_id, BURNT_FUNDS_ACTOR_ADDR, value=half_balance, nonce=1)
        bb.with_bls_message_ok(msg_ok).with_bls_message_and_code(msg_fail, ExitCode.SYS_ERR_INSUFFICIENT_FUNDS)

        prev_rewards = td.get_reward_summary()
        prev_miner_balance = td.get_balance(miner)
        result = TipSetMessageBuilder(td).with_block_builder(bb).apply_and_validate()

        gas_reward = (msg_ok.gas_limit + msg_fail.gas_limit) * GAS_PREMIUM
        validate_rewards(prev_rewards, td.get_reward_summary(), prev_miner_balance, td.get_balance(miner), gas_reward, 0)

        burn = (
            get_burn(msg_ok.gas_limit, result.receipts[0].gas_used, td.policy)
            + get_burn(msg_fail.gas_limit, result.receipts[1].gas_used, td.policy)
        )
        td.assert_balance(BURNT_FUNDS_ACTOR_ADDR, burn + half_balance)


@scenario("tipset")
def insufficient_gas_for_return_value(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/insufficient_gas_for_return_value") as td:
        miner = td.exe_ctx.miner
        tip_b = TipSetMessageBuilder(td)

        alice, _ = td.new_account_actor(BLS, ACCT_DEFAULT_BALANCE)
        info = td.builtin_miner_info()

        # A successful call tells us the exact gas the message needs.
        tracer = tip_b.with_block_builder(
            BlockBuilder(td, miner).with_bls_message_and_ret(
                td.message_producer.miner_control_addresses(alice, miner, nonce=0),
                serialize(GetControlAddressesReturn(owner=info.owner_id, worker=info.worker_id)),
            )
        ).apply_and_validate()
        required_gas_limit = tracer.receipts[0].gas_used

        tip_b.clear()
        rewards_before = td.get_reward_summary()
        miner_balance_before = td.get_balance(miner)
        sender_balance_before = td.get_balance(alice)
        td.exe_ctx.epoch += 1

        # One unit short: the last charge, for the return value, runs out of gas.
        gas_limit = required_gas_limit - 1
        result = tip_b.with_block_builder(
            BlockBuilder(td, miner).with_bls_message_and_code(
                td.message_producer.miner_control_addresses(alice, miner, nonce=1, gas_limit=gas_limit),
                ExitCode.SYS_ERR_OUT_OF_GAS,
            )
        ).apply_and_validate()
        receipt = result.receipts[0]

        # Charged the full gas limit, not the gas spent before the return value.
        assert_equal("gas_used", gas_limit, receipt.gas_used)

        cost = td.calc_message_cost(gas_limit, GAS_PREMIUM, 0, receipt)
        assert_equal("sender balance", sender_balance_before - cost, td.get_balance(alice))

        gas_cost = gas_limit * GAS_PREMIUM
        assert_equal(
            "miner balance",
            miner_balance_before + rewards_before.next_per_block_reward + gas_cost,
            td.get_balance(miner),
        )
        assert_equal(
            "treasury",
            rewards_before.treasury - rewards_before.next_per_block_reward,
            td.get_reward_summary().treasury,
        )


@scenario("tipset")
def duplicate_message_across_blocks(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/duplicate_message_across_blocks") as td:
        miner = td.exe_ctx.miner

        alice_pk, alice_id = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)
        _, bob_id = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)

        msg1 = td.message_producer.transfer(alice_pk, bob_id, value=SEND_VALUE)
        msg2 = td.message_producer.transfer(bob_id, alice_id, value=SEND_VALUE)

        prev_miner_balance = td.get_balance(miner)
        prev_rewards = td.get_reward_summary()
        result = (
            TipSetMessageBuilder(td)
            .with_block_builder(BlockBuilder(td, miner).with_bls_message_ok(msg1))
            .with_block_builder(BlockBuilder(td, miner).with_bls_message_ok(msg1).with_bls_message_ok(msg2))
            .apply_and_validate()
        )

        # The repeated message is applied once and gets a single receipt.
        assert_equal("receipt count", 2, len(result.receipts))
        assert_equal("alice call_seq_num", 1, td.require_actor(alice_id).call_seq_num)
        validate_rewards(
            prev_rewards,
            td.get_reward_summary(),
            prev_miner_balance,
            td.get_balance(miner),
            (msg1.gas_limit + msg2.gas_limit) * GAS_PREMIUM,
            0,
        )


@scenario("tipset")
def reward_summary_is_stable(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("tipset/reward_summary_is_stable") as td:
        _, alice_id = td.new_account_actor(SECP, ACCT_DEFAULT_BALANCE)

        first = td.get_reward_summary()
        assert_equal("reward summary", first, td.get_reward_summary())

        TipSetMessageBuilder(td).with_block_builder(
            BlockBuilder(td, td.exe_ctx.miner).with_bls_message_ok(
                td.message_producer.transfer(alice_id, BURNT_FUNDS_ACTOR_ADDR, value=SEND_VALUE)
            )
        ).apply_and_validate()

        after = td.get_reward_summary()
        assert_equal("reward summary", after, td.get_reward_summary())
        assert_equal("treasury", first.treasury - first.next_per_block_reward, after.treasury)
