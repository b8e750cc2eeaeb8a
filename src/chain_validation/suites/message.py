"""Single message scenarios: account creation, init actor, multisig and signatures."""

from __future__ import annotations

import logging

from ..actors import (
    METHOD_SEND,
    ApproveReturn,
    MultisigConstructorParams,
    MultisigTransaction,
    ProposeParams,
    ProposeReturn,
)
from ..comparator import ConformanceMismatch, assert_equal
from ..drivers.state_driver import BLS, SECP
from ..encoding import serialize
from ..errors import ExitCode
from ..harness_config import HarnessSettings
from ..state import Factories
from ..types import Signature, SignedMessage, SigType
from .registry import scenario
from .utils import default_builder, new_actor_addr, new_bls_addr, new_id_addr, new_secp256k1_addr

logger = logging.getLogger(__name__)

EXISTING_BALANCE = 10_000_000_000_000
TRANSFER_VALUE = 10_000


@scenario("message")
def account_actor_creation(factory: Factories, settings: HarnessSettings) -> None:
    cases = [
        ("success create secp256k1 account actor", new_secp256k1_addr("publickeyfoo"), TRANSFER_VALUE, ExitCode.OK),
        ("success create bls account actor", new_bls_addr(1), TRANSFER_VALUE, ExitCode.OK),
        (
            "fail create secp256k1 account actor insufficient balance",
            new_secp256k1_addr("publickeybar"),
            EXISTING_BALANCE + 1,
            ExitCode.SYS_ERR_INSUFFICIENT_FUNDS,
        ),
        ("fail create id address account actor", new_id_addr(9999), TRANSFER_VALUE, ExitCode.SYS_ERR_INVALID_RECEIVER),
        ("fail create actor address account actor", new_actor_addr("1234"), TRANSFER_VALUE, ExitCode.SYS_ERR_INVALID_RECEIVER),
    ]
    builder = default_builder(factory, settings)
    for desc, to, value, code in cases:
        logger.debug(f"account_actor_creation: {desc}")
        with builder.build(f"message/account_actor_creation/{desc.replace(' ', '_')}") as td:
            _, sender_id = td.new_account_actor(SECP, EXISTING_BALANCE)

            msg = td.message_producer.transfer(sender_id, to, value=value, nonce=0)
            if code.is_success:
                result = td.apply_ok(msg)
            else:
                result = td.apply_failure(msg, code)

            # A failed send transfers nothing; the sender pays for gas either way.
            transferred = value if code.is_success else 0
            td.assert_actor_change(
                sender_id, EXISTING_BALANCE, msg.gas_limit, msg.gas_premium, transferred, result.receipt, 1
            )
            if code.is_success:
                td.assert_balance(to, value)
            else:
                td.assert_no_actor(to)


@scenario("message")
def init_actor_sequential_id_address_create(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/init_actor_sequential_id_address_create") as td:

        sender, _ = td.new_account_actor(SECP, EXISTING_BALANCE)
        receiver, receiver_id = td.new_account_actor(SECP, EXISTING_BALANCE)

        first_paych = new_id_addr(receiver_id.id + 1)
        second_paych = new_id_addr(receiver_id.id + 2)
        first_ret = td.compute_init_actor_exec_return(sender, 0, 0, first_paych)
        second_ret = td.compute_init_actor_exec_return(sender, 1, 0, second_paych)

        td.apply_expect(
            td.message_producer.create_payment_channel_actor(sender, receiver, value=TRANSFER_VALUE, nonce=0),
            serialize(first_ret),
        )
        td.apply_expect(
            td.message_producer.create_payment_channel_actor(sender, receiver, value=TRANSFER_VALUE, nonce=1),
            serialize(second_ret),
        )

        # Both channels are reachable by their robust addresses too.
        assert_equal("first paych id", first_paych, td.resolve_address(first_ret.robust_address))
        assert_equal("second paych id", second_paych, td.resolve_address(second_ret.robust_address))
        td.assert_balance(first_paych, TRANSFER_VALUE)
        td.assert_balance(second_paych, TRANSFER_VALUE)


@scenario("message")
def multisig_create(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/multisig_create") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)

        multisig = new_id_addr(alice_id.id + 1)
        params = MultisigConstructorParams(signers=[alice_id], num_approvals_threshold=1, unlock_duration=10)
        ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
        td.must_create_and_verify_multisig_actor(0, TRANSFER_VALUE, multisig, alice, params, ExitCode.OK, serialize(ret))


@scenario("message")
def multisig_propose_and_cancel(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/multisig_propose_and_cancel") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, bob_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, outsider_id = td.new_account_actor(BLS, 0)

        multisig = new_id_addr(outsider_id.id + 1)
        params = MultisigConstructorParams(signers=[alice_id, bob_id], num_approvals_threshold=2, unlock_duration=0)
        ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
        td.must_create_and_verify_multisig_actor(0, TRANSFER_VALUE, multisig, alice, params, ExitCode.OK, serialize(ret))

        proposal = ProposeParams(to=outsider_id, value=TRANSFER_VALUE, method=METHOD_SEND, params=b"")
        td.apply_expect(
            td.message_producer.multisig_propose(alice_id, multisig, proposal, nonce=1),
            serialize(ProposeReturn(txn_id=0, applied=False, exit_code=int(ExitCode.OK), ret=b"")),
        )
        td.assert_multisig_transaction(multisig, 0, MultisigTransaction(
            to=outsider_id, value=TRANSFER_VALUE, method=METHOD_SEND, params=b"", approved=[alice_id],
        ))

        # Only the proposer may cancel.
        td.apply_failure(td.message_producer.multisig_cancel(bob_id, multisig, 0, nonce=0), ExitCode.ERR_FORBIDDEN)
        td.apply_ok(td.message_producer.multisig_cancel(alice_id, multisig, 0, nonce=2))
        td.assert_multisig_contains_transaction(multisig, 0, False)
        td.assert_balance(multisig, TRANSFER_VALUE)
        td.assert_balance(outsider_id, 0)


@scenario("message")
def multisig_propose_and_approve(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/multisig_propose_and_approve") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, bob_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, outsider_id = td.new_account_actor(BLS, 0)

        multisig = new_id_addr(outsider_id.id + 1)
        params = MultisigConstructorParams(signers=[alice_id, bob_id], num_approvals_threshold=2, unlock_duration=0)
        ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
        td.must_create_and_verify_multisig_actor(0, TRANSFER_VALUE, multisig, alice, params, ExitCode.OK, serialize(ret))

        proposal = ProposeParams(to=outsider_id, value=TRANSFER_VALUE, method=METHOD_SEND, params=b"")
        td.apply_expect(
            td.message_producer.multisig_propose(alice_id, multisig, proposal, nonce=1),
            serialize(ProposeReturn(txn_id=0, applied=False, exit_code=int(ExitCode.OK), ret=b"")),
        )

        # A second approval from the proposer is refused.
        td.apply_failure(td.message_producer.multisig_approve(alice_id, multisig, 0, nonce=2), ExitCode.ERR_FORBIDDEN)

        td.apply_expect(
            td.message_producer.multisig_approve(bob_id, multisig, 0, nonce=0),
            serialize(ApproveReturn(applied=True, exit_code=int(ExitCode.OK), ret=b"")),
        )
        td.assert_multisig_contains_transaction(multisig, 0, False)
        td.assert_balance(multisig, 0)
        td.assert_balance(outsider_id, TRANSFER_VALUE)


@scenario("message")
def multisig_locked_funds(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/multisig_locked_funds") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, outsider_id = td.new_account_actor(BLS, 0)

        multisig = new_id_addr(outsider_id.id + 1)
        unlock_duration = 10
        params = MultisigConstructorParams(signers=[alice_id], num_approvals_threshold=1, unlock_duration=unlock_duration)
        ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
        td.must_create_and_verify_multisig_actor(0, TRANSFER_VALUE, multisig, alice, params, ExitCode.OK, serialize(ret))

        # Everything is locked at creation; spending it must fail.
        proposal = ProposeParams(to=outsider_id, value=TRANSFER_VALUE, method=METHOD_SEND, params=b"")
        td.apply_failure(
            td.message_producer.multisig_propose(alice_id, multisig, proposal, nonce=1),
            ExitCode.ERR_INSUFFICIENT_FUNDS,
        )
        td.assert_balance(multisig, TRANSFER_VALUE)

        # Once the unlock duration has passed the same proposal executes at once.
        td.exe_ctx.epoch += unlock_duration
        td.apply_expect(
            td.message_producer.multisig_propose(alice_id, multisig, proposal, nonce=2),
            serialize(ProposeReturn(txn_id=0, applied=True, exit_code=int(ExitCode.OK), ret=b"")),
        )
        td.assert_balance(multisig, 0)
        td.assert_balance(outsider_id, TRANSFER_VALUE)


@scenario("message")
def multisig_non_signer(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/multisig_non_signer") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, mallory_id = td.new_account_actor(SECP, EXISTING_BALANCE)

        multisig = new_id_addr(mallory_id.id + 1)
        params = MultisigConstructorParams(signers=[alice_id], num_approvals_threshold=1, unlock_duration=0)
        ret = td.compute_init_actor_exec_return(alice, 0, 0, multisig)
        td.must_create_and_verify_multisig_actor(0, TRANSFER_VALUE, multisig, alice, params, ExitCode.OK, serialize(ret))

        proposal = ProposeParams(to=mallory_id, value=TRANSFER_VALUE, method=METHOD_SEND, params=b"")
        td.apply_failure(
            td.message_producer.multisig_propose(mallory_id, multisig, proposal, nonce=0),
            ExitCode.ERR_FORBIDDEN,
        )
        td.assert_balance(multisig, TRANSFER_VALUE)


@scenario("message")
def signed_transfer(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/signed_transfer") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        bob, bob_id = td.new_account_actor(BLS, EXISTING_BALANCE)

        msg = td.message_producer.transfer(alice, bob_id, value=TRANSFER_VALUE, nonce=0)
        result = td.apply_signed_ok(msg)
        td.assert_actor_change(alice_id, EXISTING_BALANCE, msg.gas_limit, msg.gas_premium, TRANSFER_VALUE, result.receipt, 1)
        td.assert_balance(bob_id, EXISTING_BALANCE + TRANSFER_VALUE)

        msg = td.message_producer.transfer(bob, alice_id, value=TRANSFER_VALUE, nonce=0)
        td.apply_signed_ok(msg)


@scenario("message")
def signed_transfer_bad_signature(factory: Factories, settings: HarnessSettings) -> None:
    with default_builder(factory, settings).build("message/signed_transfer_bad_signature") as td:
        alice, alice_id = td.new_account_actor(SECP, EXISTING_BALANCE)
        _, bob_id = td.new_account_actor(SECP, EXISTING_BALANCE)

        msg = td.message_producer.transfer(alice, bob_id, value=TRANSFER_VALUE, nonce=0)
        forged = SignedMessage(message=msg, signature=Signature(type=SigType.SECP256K1, data=bytes(65)))
        result = td.validator.apply_signed_message(td.exe_ctx.epoch, forged)
        td.state_tracker.track_result(result.receipt, td.state().root())

        divergences = td.result_divergences(result.receipt, ExitCode.SYS_ERR_SENDER_INVALID, b"")
        divergences.extend(td.check_tracked(result.receipt, td.state().root()))
        if divergences:
            raise ConformanceMismatch(divergences)

        # A rejected message changes nothing, not even the call sequence.
        td.assert_balance(alice_id, EXISTING_BALANCE)
        td.assert_balance(bob_id, EXISTING_BALANCE)
        assert_equal("alice call_seq_num", 0, td.require_actor(alice_id).call_seq_num)
