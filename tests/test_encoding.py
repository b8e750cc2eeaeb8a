"""Canonical encoding of values and dataclasses."""

from __future__ import annotations

import pytest

from chain_validation.actors import InitState, MultisigState, MultisigTransaction
from chain_validation.address import new_id_address, new_secp256k1_address
from chain_validation.encoding import EncodingError, cid_of, decode_as, deserialize, serialize
from chain_validation.errors import ExitCode
from chain_validation.types import Message, MessageReceipt


def _msg(nonce: int) -> Message:
    return Message(
        to=new_id_address(100),
        from_=new_id_address(101),
        nonce=nonce,
        value=1,
        method=0,
        params=b"",
        gas_limit=1_000,
        gas_fee_cap=200,
        gas_premium=1,
    )


def test_map_encoding_ignores_insertion_order() -> None:
    a = new_secp256k1_address(b"a")
    b = new_secp256k1_address(b"b")
    assert serialize({a: 1, b: 2}) == serialize({b: 2, a: 1})


def test_negative_and_large_ints() -> None:
    for value in (0, -1, 255, 256, -(2**70), 2**130):
        assert deserialize(serialize(value)) == value


def test_decode_as_rebuilds_nested_dataclasses() -> None:
    alice = new_id_address(100)
    st = MultisigState(
        signers=[alice],
        num_approvals_threshold=1,
        next_txn_id=1,
        initial_balance=10,
        start_epoch=1,
        unlock_duration=5,
        pending_txns={0: MultisigTransaction(to=alice, value=3, method=0, params=b"", approved=[alice])},
    )
    assert decode_as(serialize(st), MultisigState) == st


def test_decode_as_address_keyed_map() -> None:
    st = InitState(address_map={new_secp256k1_address(b"k"): 100}, next_id=101, network_name="net")
    assert decode_as(serialize(st), InitState) == st


def test_decode_as_int_enum() -> None:
    receipt = MessageReceipt(exit_code=ExitCode.SYS_ERR_OUT_OF_GAS, return_value=b"", gas_used=7)
    decoded = decode_as(serialize(receipt), MessageReceipt)
    assert decoded.exit_code is ExitCode.SYS_ERR_OUT_OF_GAS


def test_trailing_bytes_rejected() -> None:
    with pytest.raises(EncodingError):
        deserialize(serialize(1) + b"\x00")


def test_shape_mismatch_rejected() -> None:
    with pytest.raises(EncodingError):
        decode_as(serialize(1), InitState)


def test_cid_distinguishes_messages() -> None:
    assert cid_of(_msg(0)) == _msg(0).cid()
    assert _msg(0).cid() != _msg(1).cid()
    assert len(_msg(0).cid()) == 64
