"""Scripted PBFT scenes.

Each phase of a round is described by a Scene: an ordered list of timed steps,
each carrying the messages that become due at ``at_ms`` (relative to the start
of the phase) and an optional narration line for the explanation box.

Node indices in the table are written for view 0 (leader = node 0). The
engine never reads them directly; it goes through ``scene_of`` which rotates
every endpoint by the current leader id.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Base parameters for a 4-node system with f=1 (n = 3f + 1)
NODES = 4
F = 1

# Endpoint sentinel for the client
CLIENT = -1

# Spacing between scripted steps (ms)
STEP_MS = 1200

# Placeholder replaced by the round's expected payload (e.g. "+3")
VALUE_PLACEHOLDER = "v"


class Phase(str, Enum):
    REQUEST = "request"
    PRE_PREPARE = "pre-prepare"
    PREPARE = "prepare"
    COMMIT = "commit"
    REPLY = "reply"

    def next(self) -> Optional["Phase"]:
        """Following phase in a round, or None after REPLY."""
        idx = PHASE_ORDER.index(self)
        if idx + 1 < len(PHASE_ORDER):
            return PHASE_ORDER[idx + 1]
        return None


PHASE_ORDER: Tuple[Phase, ...] = (
    Phase.REQUEST,
    Phase.PRE_PREPARE,
    Phase.PREPARE,
    Phase.COMMIT,
    Phase.REPLY,
)


class MessageKind(str, Enum):
    REQUEST = "request"
    PRE_PREPARE = "pre-prepare"
    PREPARE = "prepare"
    COMMIT = "commit"
    REPLY = "reply"


@dataclass(frozen=True)
class Message:
    id: str
    from_id: int
    to_id: int
    kind: MessageKind
    payload: str = VALUE_PLACEHOLDER
    conflicting: bool = False


@dataclass(frozen=True)
class SceneStep:
    at_ms: int
    messages: Tuple[Message, ...] = ()
    narration: Optional[str] = None


@dataclass(frozen=True)
class Scene:
    phase: Phase
    steps: Tuple[SceneStep, ...] = field(default_factory=tuple)

    @property
    def last_at_ms(self) -> int:
        return max((s.at_ms for s in self.steps), default=0)

    @property
    def first_narration(self) -> str:
        if not self.steps:
            return ""
        return self.steps[0].narration or ""


def _broadcast(
    prefix: str, sender: int, kind: MessageKind, n: int = NODES
) -> Tuple[Message, ...]:
    return tuple(
        Message(id=f"{prefix}-{sender}-{to}", from_id=sender, to_id=to, kind=kind)
        for to in range(n)
        if to != sender
    )


REQUEST_SCENE = Scene(
    phase=Phase.REQUEST,
    steps=(
        SceneStep(
            at_ms=0,
            narration="Client sends a REQUEST carrying operation v to the leader.",
            messages=(
                Message(id="rq-1", from_id=CLIENT, to_id=0, kind=MessageKind.REQUEST),
            ),
        ),
        SceneStep(
            at_ms=STEP_MS,
            narration="Leader accepts the request and assigns it a sequence number in the current view.",
        ),
    ),
)

PRE_PREPARE_SCENE = Scene(
    phase=Phase.PRE_PREPARE,
    steps=(
        SceneStep(
            at_ms=0,
            narration="Leader proposes a value v with sequence number and view, broadcasting PRE-PREPARE.",
            messages=(
                Message(id="pp-1", from_id=0, to_id=1, kind=MessageKind.PRE_PREPARE),
                Message(id="pp-2", from_id=0, to_id=2, kind=MessageKind.PRE_PREPARE),
                Message(id="pp-3", from_id=0, to_id=3, kind=MessageKind.PRE_PREPARE),
            ),
        ),
        SceneStep(
            at_ms=STEP_MS,
            narration="Replicas validate PRE-PREPARE (correct view, sequence, digest) and become READY to send PREPARE.",
        ),
    ),
)

PREPARE_SCENE = Scene(
    phase=Phase.PREPARE,
    steps=(
        SceneStep(
            at_ms=0,
            narration="Leader also acts as a replica: it records its own PREPARE vote and multicasts PREPARE for v.",
            messages=_broadcast("pr", 0, MessageKind.PREPARE),
        ),
        SceneStep(
            at_ms=STEP_MS,
            narration="Replica n1 broadcasts PREPARE for v to all nodes.",
            messages=_broadcast("pr", 1, MessageKind.PREPARE),
        ),
        SceneStep(
            at_ms=STEP_MS * 2,
            narration="Replica n2 broadcasts PREPARE for v to all nodes.",
            messages=_broadcast("pr", 2, MessageKind.PREPARE),
        ),
        SceneStep(
            at_ms=STEP_MS * 3,
            narration="Replica n3 broadcasts PREPARE for v to all nodes. Replicas collect 2f + 1 matching PREPARE messages.",
            messages=_broadcast("pr", 3, MessageKind.PREPARE),
        ),
        SceneStep(
            at_ms=STEP_MS * 4,
            narration="Condition met (2f + 1 PREPARE including own vote per node). System is ready to enter COMMIT phase.",
        ),
    ),
)

COMMIT_SCENE = Scene(
    phase=Phase.COMMIT,
    steps=(
        SceneStep(
            at_ms=0,
            narration="Prepared replicas (including leader) broadcast COMMIT to all, counting their own vote locally.",
            messages=_broadcast("cm", 0, MessageKind.COMMIT),
        ),
        SceneStep(
            at_ms=STEP_MS,
            narration="Replica n1 announces COMMIT for v to all.",
            messages=_broadcast("cm", 1, MessageKind.COMMIT),
        ),
        SceneStep(
            at_ms=STEP_MS * 2,
            narration="Replica n2 announces COMMIT for v to all.",
            messages=_broadcast("cm", 2, MessageKind.COMMIT),
        ),
        SceneStep(
            at_ms=STEP_MS * 3,
            narration="Replica n3 announces COMMIT for v to all. Honest nodes gather 2f + 1 COMMIT messages.",
            messages=_broadcast("cm", 3, MessageKind.COMMIT),
        ),
        SceneStep(
            at_ms=STEP_MS * 4,
            narration="Replicas collect 2f + 1 COMMIT messages, locally executing value v (decision).",
        ),
        SceneStep(
            at_ms=STEP_MS * 5,
            narration="Consensus achieved for value v. Protocol round complete.",
        ),
    ),
)

REPLY_SCENE = Scene(
    phase=Phase.REPLY,
    steps=(
        SceneStep(
            at_ms=0,
            narration="Every replica executes v and sends a REPLY with the result to the client.",
            messages=tuple(
                Message(id=f"rp-{i}", from_id=i, to_id=CLIENT, kind=MessageKind.REPLY)
                for i in range(NODES)
            ),
        ),
        SceneStep(
            at_ms=STEP_MS,
            narration="Client accepts the result once it holds f + 1 matching replies.",
        ),
    ),
)

SCENES: Dict[Phase, Scene] = {
    Phase.REQUEST: REQUEST_SCENE,
    Phase.PRE_PREPARE: PRE_PREPARE_SCENE,
    Phase.PREPARE: PREPARE_SCENE,
    Phase.COMMIT: COMMIT_SCENE,
    Phase.REPLY: REPLY_SCENE,
}


def _rotate(endpoint: int, leader_id: int, n: int) -> int:
    if endpoint < 0:
        return endpoint
    return (endpoint + leader_id) % n


def remap(scene: Scene, leader_id: int, n: int = NODES) -> Scene:
    """Rotate every node endpoint of ``scene`` by ``leader_id`` (client passes through)."""
    if leader_id % n == 0:
        return scene
    steps: List[SceneStep] = []
    for step in scene.steps:
        messages = tuple(
            replace(
                m,
                from_id=_rotate(m.from_id, leader_id, n),
                to_id=_rotate(m.to_id, leader_id, n),
            )
            for m in step.messages
        )
        steps.append(replace(step, messages=messages))
    return replace(scene, steps=tuple(steps))


def scene_of(
    phase: Phase,
    leader_id: int = 0,
    n: int = NODES,
    table: Optional[Dict[Phase, Scene]] = None,
) -> Scene:
    scenes = table if table is not None else SCENES
    base = scenes.get(phase)
    if base is None:
        return Scene(phase=phase)
    return remap(base, leader_id, n)
