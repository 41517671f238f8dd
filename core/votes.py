from __future__ import annotations

from typing import Iterable, List, Set

from core.phases import MessageKind, Phase
from core.state import NodeStats, Status, TimelineMessage

_LABELS = {
    MessageKind.REQUEST: "[REQUEST]",
    MessageKind.PRE_PREPARE: "[PRE-PREPARE]",
    MessageKind.PREPARE: "[PREPARE]",
    MessageKind.COMMIT: "[COMMIT]",
    MessageKind.REPLY: "[REPLY]",
}


def label(kind: MessageKind) -> str:
    return _LABELS[kind]


def describe(m: TimelineMessage) -> str:
    tag = " (conflict)" if m.conflicting else ""
    return f"n{m.from_id} -> n{m.to_id} payload={m.payload}{tag}"


def _status_for(stat: NodeStats, phase: Phase, needed: int) -> Status:
    if phase is Phase.REPLY:
        return Status.COMMITTED
    if phase is Phase.COMMIT and stat.commit >= needed:
        return Status.COMMITTED
    if phase in (Phase.COMMIT, Phase.PREPARE) and stat.prepare >= needed:
        return Status.PREPARED
    if stat.proposed:
        return Status.PROPOSED
    return Status.IDLE


def compute_node_stats(
    timeline: Iterable[TimelineMessage],
    expected_payload: str,
    phase: Phase,
    f: int,
    n: int,
    leader_id: int,
) -> List[NodeStats]:
    """Derive per-node PREPARE/COMMIT counts and consensus status.

    Only messages whose payload equals ``expected_payload`` and which are not
    flagged conflicting are credited. A node that broadcasts a matching
    PREPARE (COMMIT) also earns one implicit self-vote, no matter how many
    recipients it addressed. The leader starts out proposed since it
    originates the value.
    """
    needed = 2 * f + 1
    stats = [NodeStats() for _ in range(max(0, n))]
    self_prepare: Set[int] = set()
    self_commit: Set[int] = set()

    if 0 <= leader_id < n:
        stats[leader_id].proposed = True

    for m in timeline:
        to = m.to_id
        if to < 0 or to >= n:
            continue
        if m.conflicting or m.payload != expected_payload:
            continue
        sender_ok = 0 <= m.from_id < n
        if m.kind is MessageKind.PRE_PREPARE:
            stats[to].proposed = True
        elif m.kind is MessageKind.PREPARE:
            stats[to].prepare += 1
            if sender_ok:
                self_prepare.add(m.from_id)
                stats[m.from_id].proposed = True
        elif m.kind is MessageKind.COMMIT:
            stats[to].commit += 1
            if sender_ok:
                self_commit.add(m.from_id)

    for node_id in self_prepare:
        stats[node_id].prepare += 1
    for node_id in self_commit:
        stats[node_id].commit += 1

    for stat in stats:
        stat.status = _status_for(stat, phase, needed)
    return stats
