import json

import pytest

from core.config import ConfigError, SimulationConfig, validate_node_count
from core.engine import PBFTSimulation
from core.prefs import PreferenceStore
from core.state import Role


@pytest.mark.parametrize(
    "n, expected",
    [(4, (True, 1)), (7, (True, 2)), (10, (True, 3)), (5, (False, 1)), (0, (False, 0))],
)
def test_validate_node_count(n, expected):
    assert validate_node_count(n) == expected


@pytest.mark.parametrize("n, f", [(5, 1), (4, 2), (4, 0), (-1, 0)])
def test_inconsistent_config_rejected(n, f):
    with pytest.raises(ConfigError):
        PBFTSimulation(SimulationConfig(n=n, f=f))


def test_for_nodes_derives_f():
    cfg = SimulationConfig.for_nodes(7)
    assert (cfg.n, cfg.f) == (7, 2)
    sim = PBFTSimulation(cfg)
    assert sim.needed == 5
    assert len(sim.state.nodes) == 7
    with pytest.raises(ConfigError):
        SimulationConfig.for_nodes(6)


def test_engine_copies_config():
    cfg = SimulationConfig()
    sim = PBFTSimulation(cfg)
    sim.set_jitter(40)
    assert cfg.jitter_ms == 0
    assert sim.config.jitter_ms == 40


def test_store_missing_or_corrupt(tmp_path):
    assert PreferenceStore(str(tmp_path / "none.json")).load() == {}

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    assert PreferenceStore(str(bad)).load() == {}

    listy = tmp_path / "list.json"
    listy.write_text("[1, 2]")
    assert PreferenceStore(str(listy)).load() == {}


def test_setters_persist_and_reload(tmp_path):
    path = str(tmp_path / "prefs" / "p.json")
    sim = PBFTSimulation(prefs=PreferenceStore(path))
    sim.set_jitter(50)
    sim.set_manual_mode(True)
    sim.set_phase_delay(1000)
    sim.rotate_leader()

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["jitter"] == 50
    assert data["manualMode"] is True
    assert data["view"] == 1 and data["leaderId"] == 1

    again = PBFTSimulation(prefs=PreferenceStore(path))
    assert again.config.jitter_ms == 50
    assert again.config.manual_mode is True
    assert again.config.phase_delay_ms == 1000
    assert again.leader_id == 1
    assert again.state.nodes[1].role is Role.LEADER


def test_mistyped_prefs_ignored(tmp_path):
    path = tmp_path / "p.json"
    path.write_text(json.dumps({"speed": "fast", "manualMode": 1, "jitter": 25, "view": -3}))
    sim = PBFTSimulation(prefs=PreferenceStore(str(path)))
    assert sim.config.speed == 0.5
    assert sim.config.manual_mode is False
    assert sim.config.jitter_ms == 25
    assert sim.state.view == 0


@pytest.mark.parametrize(
    "content",
    [
        '{"jitter": -5}',
        '{"phaseDelayMs": -1}',
        '{"jitter": 1e999}',
        '{"phaseDelayMs": NaN}',
        '{"speed": -Infinity}',
        '{"speed": 0}',
    ],
)
def test_out_of_range_prefs_ignored(tmp_path, content):
    path = tmp_path / "p.json"
    path.write_text(content)
    sim = PBFTSimulation(prefs=PreferenceStore(str(path)))
    defaults = SimulationConfig()
    assert sim.config.jitter_ms == defaults.jitter_ms
    assert sim.config.phase_delay_ms == defaults.phase_delay_ms
    assert sim.config.speed == defaults.speed
    sim.step(100)
    assert sim.t == 100


def test_reset_preferences(tmp_path):
    path = str(tmp_path / "p.json")
    sim = PBFTSimulation(prefs=PreferenceStore(path))
    sim.set_speed(4)
    sim.rotate_leader()
    sim.reset_preferences()
    assert sim.config.speed == 1.0
    assert sim.leader_id == 0
    assert sim.state.nodes[0].role is Role.LEADER
    with open(path, encoding="utf-8") as f:
        assert json.load(f)["recentWindowMs"] == 1600


def test_unwritable_store_does_not_raise(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = PreferenceStore(str(blocker / "p.json"))
    assert store.save() is False
    sim = PBFTSimulation(prefs=store)
    sim.set_jitter(10)
    assert sim.config.jitter_ms == 10


def test_listeners_and_snapshot(sim):
    calls = []
    unsubscribe = sim.subscribe(lambda s: calls.append(s.t))
    sim.step(10)
    sim.skip_phase()
    assert calls == [10, 10]

    def boom(_):
        raise RuntimeError("listener bug")

    sim.subscribe(boom)
    sim.step(5)
    assert calls == [10, 10, 15]

    unsubscribe()
    sim.step(5)
    assert calls == [10, 10, 15]

    snap = sim.snapshot()
    snap.timeline.clear()
    snap.nodes[0].role = Role.REPLICA
    assert sim.state.timeline
    assert sim.state.nodes[0].role is Role.LEADER
