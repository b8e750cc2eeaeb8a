"""Factories plugging the reference implementation into the harness."""

from __future__ import annotations

import dataclasses
from typing import Optional, Tuple

from ..drivers.economics import DEFAULT_POLICY, GasPolicy
from ..state import ValidationConfig
from .keys import DEFAULT_SEED, ReferenceKeyManager
from .store import MemoryActorStore
from .vm import PriceList, ReferenceApplier


class ReferenceFactories:
    def __init__(
        self,
        policy: GasPolicy = DEFAULT_POLICY,
        prices: Optional[PriceList] = None,
        validation: Optional[ValidationConfig] = None,
        seed: bytes = DEFAULT_SEED,
    ):
        self.policy = policy
        self.prices = prices
        self.validation = validation or ValidationConfig()
        self.seed = seed

    def new_state_and_applier(self) -> Tuple[MemoryActorStore, ReferenceApplier]:
        store = MemoryActorStore()
        return store, ReferenceApplier(store, self.policy, self.prices)

    def new_key_manager(self) -> ReferenceKeyManager:
        return ReferenceKeyManager(self.seed)

    def new_validation_config(self) -> ValidationConfig:
        return dataclasses.replace(self.validation)
