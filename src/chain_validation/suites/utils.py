"""Address helpers and the builder preset shared by the scenario suites."""

from __future__ import annotations

from typing import Optional

from blake3 import blake3

from ..address import (
    Address,
    new_actor_address,
    new_bls_address,
    new_id_address,
    new_secp256k1_address,
)
from ..config import BLS_PUBLIC_KEY_BYTES
from ..drivers.genesis import default_builtin_actors_state
from ..drivers.test_driver import TestDriverBuilder
from ..harness_config import HarnessSettings
from ..state import Factories

GAS_LIMIT = 1_000_000_000
GAS_FEE_CAP = 200
GAS_PREMIUM = 1


def new_id_addr(actor_id: int) -> Address:
    return new_id_address(actor_id)


def new_secp256k1_addr(seed: str) -> Address:
    return new_secp256k1_address(seed.encode("utf-8"))


def new_bls_addr(seed: int) -> Address:
    key = blake3(seed.to_bytes(8, "big")).digest(length=BLS_PUBLIC_KEY_BYTES)
    return new_bls_address(key)


def new_actor_addr(seed: str) -> Address:
    return new_actor_address(seed.encode("utf-8"))


def default_builder(factory: Factories, settings: Optional[HarnessSettings] = None) -> TestDriverBuilder:
    return (
        TestDriverBuilder(factory)
        .with_default_gas_limit(GAS_LIMIT)
        .with_default_gas_fee_cap(GAS_FEE_CAP)
        .with_default_gas_premium(GAS_PREMIUM)
        .with_actor_state(*default_builtin_actors_state())
        .with_settings(settings or HarnessSettings())
    )
