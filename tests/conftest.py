from __future__ import annotations

from typing import Callable

import pytest

from core.config import SimulationConfig
from core.engine import PBFTSimulation
from core.phases import MessageKind
from core.state import TimelineMessage


@pytest.fixture
def sim() -> PBFTSimulation:
    return PBFTSimulation(SimulationConfig(seed=0))


@pytest.fixture
def playing_sim() -> PBFTSimulation:
    s = PBFTSimulation(SimulationConfig(seed=0))
    s.toggle_play()
    return s


def make_msg(
    kind: MessageKind,
    frm: int,
    to: int,
    payload: str = "+1",
    conflicting: bool = False,
    at: float = 0,
    id: str = "",
) -> TimelineMessage:
    return TimelineMessage(
        id=id or f"{kind.value}-{frm}-{to}",
        from_id=frm,
        to_id=to,
        kind=kind,
        payload=payload,
        at=at,
        conflicting=conflicting,
    )


def broadcast(kind: MessageKind, frm: int, n: int = 4, **kw) -> list[TimelineMessage]:
    return [make_msg(kind, frm, to, **kw) for to in range(n) if to != frm]


def play_until(
    sim: PBFTSimulation,
    predicate: Callable[[PBFTSimulation], bool],
    step_ms: int = 100,
    limit: int = 5000,
) -> int:
    for i in range(limit):
        if predicate(sim):
            return i
        sim.step(step_ms)
    raise AssertionError("condition not reached")
