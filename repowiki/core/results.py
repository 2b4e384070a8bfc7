"""Outcome variants returned by a pipeline pass.

A pass never signals "nothing to do" or "cancelled" through sentinel
values or exceptions; callers match on the variant instead.
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class NoOp:
    """Nothing to do (no new commits since the recorded version)."""
    reason: str = "no new commits"


@dataclass(frozen=True)
class Success:
    head: str
    deleted: int = 0
    added: int = 0
    replaced: int = 0
    changelog_entries: int = 0


@dataclass(frozen=True)
class Cancelled:
    reason: str = "cancelled"


@dataclass(frozen=True)
class Failed:
    reason: str


Outcome = Union[NoOp, Success, Cancelled, Failed]
