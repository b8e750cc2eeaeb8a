"""Registry of scenario functions runnable against any implementation."""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from ..harness_config import HarnessSettings
from ..state import Factories

ScenarioFn = Callable[[Factories, HarnessSettings], None]

SUITE_MODULES = (
    "chain_validation.suites.tipset",
    "chain_validation.suites.message",
)


@dataclass(frozen=True)
class Scenario:
    suite: str
    name: str
    fn: ScenarioFn

    @property
    def qualified_name(self) -> str:
        return f"{self.suite}/{self.name}"

    def run(self, factory: Factories, settings: Optional[HarnessSettings] = None) -> None:
        self.fn(factory, settings or HarnessSettings())


_SCENARIOS: Dict[str, Scenario] = {}


def scenario(suite: str, name: Optional[str] = None) -> Callable[[ScenarioFn], ScenarioFn]:
    def register(fn: ScenarioFn) -> ScenarioFn:
        entry = Scenario(suite=suite, name=name or fn.__name__, fn=fn)
        _SCENARIOS[entry.qualified_name] = entry
        return fn

    return register


def all_scenarios() -> List[Scenario]:
    for module in SUITE_MODULES:
        importlib.import_module(module)
    return list(_SCENARIOS.values())


def suite_names() -> List[str]:
    return sorted({s.suite for s in all_scenarios()})


def select(suites: Iterable[str] = ()) -> List[Scenario]:
    """Scenarios of the named suites, or every scenario when none are named."""
    wanted = set(suites)
    scenarios = all_scenarios()
    if not wanted:
        return scenarios
    unknown = wanted - {s.suite for s in scenarios}
    if unknown:
        raise KeyError(f"unknown suite(s): {', '.join(sorted(unknown))}")
    return [s for s in scenarios if s.suite in wanted]
