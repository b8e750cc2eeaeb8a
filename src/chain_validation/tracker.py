"""Ordered log of gas used and state roots, replayed as regression expectations.

A tracker is either in playback mode, serving previously recorded values in
order, or in record mode, collecting the values of the current run so they
can be written out as the new baseline. The mode is fixed at construction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import yaml

from .errors import HarnessError
from .types import MessageReceipt

logger = logging.getLogger(__name__)


class PlainDumper(yaml.SafeDumper):
    pass


def _str_representer(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=None)


PlainDumper.add_representer(str, _str_representer)


def dump_yaml(data: dict) -> str:
    return yaml.dump(data, Dumper=PlainDumper, sort_keys=False, width=4096)


@dataclass(frozen=True)
class TrackedResult:
    gas_used: int
    state_root: str


@dataclass
class Playback:
    expectations: List[TrackedResult]
    gas_cursor: int = 0
    root_cursor: int = 0


@dataclass
class Record:
    path: Path


TrackerMode = Union[Playback, Record]


def fixture_path(fixture_dir: Path, name: str) -> Path:
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_")
    return Path(fixture_dir) / f"{safe}.yaml"


def load_expectations(path: Path) -> List[TrackedResult]:
    if not path.exists():
        return []
    data = yaml.safe_load(path.read_text()) or {}
    return [
        TrackedResult(gas_used=int(entry["gas_used"]), state_root=str(entry["state_root"]))
        for entry in data.get("results", [])
    ]


@dataclass
class StateTracker:
    name: str
    mode: TrackerMode
    results: List[TrackedResult] = field(default_factory=list)

    @classmethod
    def open(cls, name: str, fixture_dir: Path, record: bool = False) -> "StateTracker":
        path = fixture_path(fixture_dir, name)
        if record:
            return cls(name, Record(path))
        expectations = load_expectations(path)
        logger.debug(f"{name}: loaded {len(expectations)} expectation(s) from {path}")
        return cls(name, Playback(expectations))

    @property
    def recording(self) -> bool:
        return isinstance(self.mode, Record)

    def track_result(self, receipt: MessageReceipt, state_root: str) -> None:
        self.results.append(TrackedResult(gas_used=int(receipt.gas_used), state_root=state_root))

    def next_expected_gas(self) -> Optional[int]:
        """Next recorded gas value, or None when nothing was recorded at this position."""
        mode = self.mode
        if not isinstance(mode, Playback) or mode.gas_cursor >= len(mode.expectations):
            return None
        expected = mode.expectations[mode.gas_cursor]
        mode.gas_cursor += 1
        return expected.gas_used

    def next_expected_state_root(self) -> Optional[str]:
        """Next recorded state root, or None when nothing was recorded at this position."""
        mode = self.mode
        if not isinstance(mode, Playback) or mode.root_cursor >= len(mode.expectations):
            return None
        expected = mode.expectations[mode.root_cursor]
        mode.root_cursor += 1
        return expected.state_root

    def record(self) -> Path:
        """Write every tracked result as the new baseline for this test."""
        mode = self.mode
        if not isinstance(mode, Record):
            raise HarnessError(f"tracker for {self.name} is in playback mode; refusing to overwrite expectations")
        mode.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "name": self.name,
            "results": [{"gas_used": r.gas_used, "state_root": r.state_root} for r in self.results],
        }
        mode.path.write_text(dump_yaml(payload))
        logger.info(f"{self.name}: recorded {len(self.results)} expectation(s) to {mode.path}")
        return mode.path
