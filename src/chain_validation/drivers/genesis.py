"""Default genesis state of the builtin singleton actors."""

from __future__ import annotations

from typing import List

from ..actors import (
    AccountState,
    CronEntry,
    CronState,
    InitState,
    MarketState,
    PowerState,
    RewardState,
    SystemState,
)
from ..address import (
    BURNT_FUNDS_ACTOR_ADDR,
    CRON_ACTOR_ADDR,
    INIT_ACTOR_ADDR,
    REWARD_ACTOR_ADDR,
    STORAGE_MARKET_ACTOR_ADDR,
    STORAGE_POWER_ACTOR_ADDR,
    SYSTEM_ACTOR_ADDR,
)
from ..config import (
    ACCOUNT_ACTOR_CODE,
    CRON_ACTOR_CODE,
    FIRST_EPOCH_REWARD,
    FIRST_NON_SINGLETON_ID,
    INIT_ACTOR_CODE,
    NETWORK_NAME,
    REWARD_ACTOR_CODE,
    STORAGE_MARKET_ACTOR_CODE,
    STORAGE_POWER_ACTOR_CODE,
    SYSTEM_ACTOR_CODE,
    TOTAL_NETWORK_BALANCE,
)
from ..types import ActorState

# Power actor method run by cron at the end of every epoch.
POWER_ON_EPOCH_TICK_END = 4

# Actors every test driver needs; the builder refuses to build without them.
REQUIRED_ACTORS = (INIT_ACTOR_ADDR, REWARD_ACTOR_ADDR, BURNT_FUNDS_ACTOR_ADDR)


def default_init_actor_state() -> ActorState:
    return ActorState(
        addr=INIT_ACTOR_ADDR,
        balance=0,
        code=INIT_ACTOR_CODE,
        state=InitState(address_map={}, next_id=FIRST_NON_SINGLETON_ID, network_name=NETWORK_NAME),
    )


def default_reward_actor_state() -> ActorState:
    return ActorState(
        addr=REWARD_ACTOR_ADDR,
        balance=TOTAL_NETWORK_BALANCE,
        code=REWARD_ACTOR_CODE,
        state=RewardState(this_epoch_reward=FIRST_EPOCH_REWARD),
    )


def default_burnt_funds_actor_state() -> ActorState:
    return ActorState(
        addr=BURNT_FUNDS_ACTOR_ADDR,
        balance=0,
        code=ACCOUNT_ACTOR_CODE,
        state=AccountState(address=BURNT_FUNDS_ACTOR_ADDR),
    )


def default_builtin_actors_state() -> List[ActorState]:
    """Fresh genesis seeds; callers may mutate the returned list."""
    return [
        default_init_actor_state(),
        default_reward_actor_state(),
        default_burnt_funds_actor_state(),
        ActorState(
            addr=STORAGE_POWER_ACTOR_ADDR,
            balance=0,
            code=STORAGE_POWER_ACTOR_CODE,
            state=PowerState(),
        ),
        ActorState(
            addr=STORAGE_MARKET_ACTOR_ADDR,
            balance=0,
            code=STORAGE_MARKET_ACTOR_CODE,
            state=MarketState(),
        ),
        ActorState(
            addr=SYSTEM_ACTOR_ADDR,
            balance=0,
            code=SYSTEM_ACTOR_CODE,
            state=SystemState(),
        ),
        ActorState(
            addr=CRON_ACTOR_ADDR,
            balance=0,
            code=CRON_ACTOR_CODE,
            state=CronState(entries=[
                CronEntry(receiver=STORAGE_POWER_ACTOR_ADDR, method_num=POWER_ON_EPOCH_TICK_END),
            ]),
        ),
    ]
