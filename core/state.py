from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from core.phases import F, NODES, Message, MessageKind, Phase


class Role(str, Enum):
    LEADER = "leader"
    REPLICA = "replica"


class NodeState(str, Enum):
    NORMAL = "normal"
    FAULTY = "faulty"


class Status(str, Enum):
    IDLE = "idle"
    PROPOSED = "proposed"
    PREPARED = "prepared"
    COMMITTED = "committed"


@dataclass
class NodeInfo:
    id: int
    role: Role = Role.REPLICA
    state: NodeState = NodeState.NORMAL

    @property
    def faulty(self) -> bool:
        return self.state is NodeState.FAULTY


@dataclass(frozen=True)
class TimelineMessage:
    """A scripted message materialized on the timeline at logical time ``at``."""

    id: str
    from_id: int
    to_id: int
    kind: MessageKind
    payload: str
    at: float
    conflicting: bool = False

    @classmethod
    def from_scripted(
        cls, m: Message, payload: str, at: float, conflicting: bool = False
    ) -> "TimelineMessage":
        return cls(
            id=m.id,
            from_id=m.from_id,
            to_id=m.to_id,
            kind=m.kind,
            payload=payload,
            at=at,
            conflicting=conflicting,
        )


@dataclass(frozen=True)
class LogEntry:
    t: float
    text: str


@dataclass
class NodeStats:
    prepare: int = 0
    commit: int = 0
    proposed: bool = False
    status: Status = Status.IDLE


def payload_for(increment: int) -> str:
    return f"+{increment}"


@dataclass
class SimulationState:
    n: int = NODES
    f: int = F

    # Clock / phase
    t: float = 0
    phase_start: float = 0
    phase: Phase = Phase.REQUEST
    playing: bool = False
    phase_advance_due_at: Optional[float] = None

    # View / leader
    view: int = 0

    # Round lifecycle
    round: int = 1
    value: int = 0
    next_increment: int = 1
    expected_payload: str = "+1"
    # value already credited for the current round
    round_settled: bool = False

    nodes: List[NodeInfo] = field(default_factory=list)
    node_stats: List[NodeStats] = field(default_factory=list)
    timeline: List[TimelineMessage] = field(default_factory=list)
    logs: List[LogEntry] = field(default_factory=list)
    explanation: str = ""

    def __post_init__(self):
        if not self.nodes:
            self.nodes = [NodeInfo(id=i) for i in range(self.n)]
        self.relabel_roles()

    @property
    def leader_id(self) -> int:
        if self.n <= 0:
            return 0
        return self.view % self.n

    @property
    def needed(self) -> int:
        # 2f + 1 matching votes for prepared / committed
        return 2 * self.f + 1

    @property
    def faulty_ids(self) -> List[int]:
        return [node.id for node in self.nodes if node.faulty]

    def role_of(self, node_id: int) -> Role:
        return Role.LEADER if node_id == self.leader_id else Role.REPLICA

    def relabel_roles(self) -> None:
        for node in self.nodes:
            node.role = self.role_of(node.id)

    def is_node(self, node_id: int) -> bool:
        return 0 <= node_id < self.n

    def log(self, text: str, t: Optional[float] = None) -> None:
        self.logs.append(LogEntry(t=self.t if t is None else t, text=text))
