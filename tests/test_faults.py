from core.phases import MessageKind, Phase
from core.state import NodeState, Role


def _prepare_through_n2(sim):
    sim.set_phase(Phase.PREPARE)
    sim.step(1)
    sim.step(1200)
    sim.step(1200)


def test_toggle_faulty_marks_history(sim):
    _prepare_through_n2(sim)
    before = {m.id: m for m in sim.state.timeline if m.from_id == 2}
    assert len(before) == 3
    assert [s.prepare for s in sim.state.node_stats] == [3, 3, 3, 3]

    assert sim.toggle_faulty(2) is True

    after = {m.id: m for m in sim.state.timeline if m.from_id == 2}
    for mid, m in after.items():
        old = before[mid]
        assert m.conflicting
        assert m.payload == "+1*"
        assert (m.kind, m.from_id, m.to_id, m.at) == (old.kind, old.from_id, old.to_id, old.at)
    assert all(not m.conflicting for m in sim.state.timeline if m.from_id != 2)
    assert [s.prepare for s in sim.state.node_stats] == [2, 2, 2, 2]
    assert sim.state.nodes[2].state is NodeState.FAULTY
    assert sim.state.logs[-1].text == "*** Node n2 became FAULTY"


def test_recovery_keeps_history(sim):
    _prepare_through_n2(sim)
    sim.toggle_faulty(2)
    sim.toggle_faulty(2)
    assert sim.state.nodes[2].state is NodeState.NORMAL
    assert sim.state.logs[-1].text == "*** Node n2 returned to NORMAL"
    from_two = [m for m in sim.state.timeline if m.from_id == 2]
    assert all(m.conflicting and m.payload == "+1*" for m in from_two)

    # marking again does not stack asterisks
    sim.toggle_faulty(2)
    assert all(m.payload == "+1*" for m in sim.state.timeline if m.from_id == 2)


def test_messages_after_recovery_are_honest(sim):
    sim.toggle_faulty(1)
    sim.toggle_faulty(1)
    sim.set_phase(Phase.PREPARE)
    sim.step(1)
    sim.step(1200)
    from_one = [m for m in sim.state.timeline if m.from_id == 1]
    assert from_one and all(not m.conflicting and m.payload == "+1" for m in from_one)


def test_faulty_sender_emits_conflicting_messages(sim):
    sim.toggle_faulty(3)
    sim.set_phase(Phase.COMMIT)
    sim.advance(3600, step_ms=600)
    from_three = [m for m in sim.state.timeline if m.from_id == 3]
    assert len(from_three) == 3
    assert all(m.conflicting for m in from_three)
    assert [s.commit for s in sim.state.node_stats] == [3, 3, 3, 3]


def test_toggle_unknown_node_is_noop(sim):
    assert sim.toggle_faulty(4) is False
    assert sim.toggle_faulty(-1) is False
    assert sim.state.logs == []


def test_rotate_leader_wraps(sim):
    for expected in (1, 2, 3):
        assert sim.rotate_leader() == expected
    assert (sim.state.view, sim.leader_id) == (3, 3)
    assert sim.rotate_leader() == 0
    assert sim.state.view == 4
    roles = [n.role for n in sim.state.nodes]
    assert roles == [Role.LEADER, Role.REPLICA, Role.REPLICA, Role.REPLICA]
    assert sim.state.logs[-1].text == "!!! VIEW CHANGE: View 4, New Leader n0"


def test_rotation_remaps_script_and_stats(sim):
    sim.rotate_leader()
    assert sim.state.node_stats[1].proposed
    assert not sim.state.node_stats[0].proposed

    sim.set_phase(Phase.PRE_PREPARE)
    sim.step(1)
    pre = [(m.from_id, m.to_id) for m in sim.state.timeline if m.kind is MessageKind.PRE_PREPARE]
    assert pre == [(1, 2), (1, 3), (1, 0)]


def test_drop_message(sim):
    sim.set_phase(Phase.PREPARE)
    sim.step(1)
    assert sim.drop_message("pr-0-1") is True
    assert "pr-0-1" not in [m.id for m in sim.state.timeline]
    assert sim.state.logs[-1].text == "--- Message pr-0-1 dropped by user"
    assert sim.state.node_stats[1].prepare == 0
    assert sim.drop_message("nope") is False
