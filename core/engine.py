"""Deterministic PBFT teaching simulation.

``PBFTSimulation`` owns one aggregate ``SimulationState`` and advances it on a
logical clock. Nothing here sleeps or talks to a network: an external driver
(the Streamlit app, the CLI, a test) calls ``step``/``tick`` repeatedly and
reads the state back.

Per call to ``step`` the engine:

1. replays every scripted step of the current phase that became due in the
   elapsed window, appending the materialized messages to the timeline;
2. recomputes vote stats when anything was appended;
3. moves the clock forward;
4. when playing with auto-advance on and the phase script is exhausted,
   schedules (and later performs) the move to the next phase, or completes
   the round after REPLY;
5. prunes the timeline and log.
"""

from __future__ import annotations

import copy
import functools
import logging
import random
from dataclasses import replace
from threading import RLock
from typing import Callable, Dict, List, Optional, Tuple

from core.config import SimulationConfig
from core.phases import VALUE_PLACEHOLDER, Message, MessageKind, Phase, Scene, scene_of
from core.prefs import DEFAULT_PREFS, PreferenceStore
from core.retention import RetentionPolicy
from core.state import (
    NodeState,
    NodeStats,
    SimulationState,
    TimelineMessage,
    payload_for,
)
from core.votes import compute_node_stats, label

logger = logging.getLogger(__name__)

Listener = Callable[["PBFTSimulation"], None]


def _transaction(fn):
    """Run ``fn`` under the engine lock and notify listeners once it settles."""

    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            self._depth += 1
            try:
                result = fn(self, *args, **kwargs)
            finally:
                self._depth -= 1
            if self._depth == 0:
                self._notify()
        return result

    return wrapper


def _endpoint(node_id: int) -> str:
    return "client" if node_id < 0 else f"n{node_id}"


def is_due(at_ms: float, window_start: float, window_end: float) -> bool:
    # The phase's first instant is inclusive; afterwards the window is (start, end].
    # A closed [start, end] window would fire a step sitting on a boundary twice.
    if at_ms > window_end:
        return False
    if window_start <= 0:
        return at_ms >= window_start
    return at_ms > window_start


class PBFTSimulation:
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        scenes: Optional[Dict[Phase, Scene]] = None,
        prefs: Optional[PreferenceStore] = None,
        rng: Optional[random.Random] = None,
        name: str = "sim",
    ):
        self.name = name
        self.prefs = prefs
        loaded = prefs.load() if prefs is not None else {}

        cfg = replace(config) if config is not None else SimulationConfig()
        self.config = cfg.apply_prefs(loaded).validate()
        self.scenes = scenes
        self.rng = rng if rng is not None else random.Random(cfg.seed)

        self.timeline_retention = RetentionPolicy(
            cfg.timeline_cap, cfg.timeline_max_age_ms
        )
        self.log_retention = RetentionPolicy(cfg.log_cap, cfg.log_max_age_ms)

        self.state = SimulationState(n=cfg.n, f=cfg.f)
        view = loaded.get("view")
        if isinstance(view, int) and not isinstance(view, bool) and view >= 0:
            self.state.view = view
            self.state.relabel_roles()
        self.state.explanation = self.scene(Phase.REQUEST).first_narration

        self._lock = RLock()
        self._depth = 0
        self._listeners: List[Listener] = []

        logger.debug(
            "[PBFT %s] created n=%d f=%d view=%d leader=%d",
            self.name,
            cfg.n,
            cfg.f,
            self.state.view,
            self.state.leader_id,
        )

    # ============================
    # Read API
    # ============================
    @property
    def t(self) -> float:
        return self.state.t

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def playing(self) -> bool:
        return self.state.playing

    @property
    def leader_id(self) -> int:
        return self.state.leader_id

    @property
    def needed(self) -> int:
        return self.state.needed

    def scene(self, phase: Optional[Phase] = None) -> Scene:
        s = self.state
        return scene_of(phase or s.phase, s.leader_id, s.n, self.scenes)

    def stats_for(self, node_id: int) -> NodeStats:
        stats = self.state.node_stats
        if 0 <= node_id < len(stats):
            return stats[node_id]
        return NodeStats()

    def snapshot(self) -> SimulationState:
        with self._lock:
            return copy.deepcopy(self.state)

    def consensus_progress(self) -> Tuple[int, int]:
        """Matching votes held by the weakest healthy node, and the 2f+1 target."""
        s = self.state
        if s.phase not in (Phase.PREPARE, Phase.COMMIT):
            return 0, s.needed
        healthy = [
            self.stats_for(node.id) for node in s.nodes if not node.faulty
        ]
        if not healthy:
            return 0, s.needed
        if s.phase is Phase.PREPARE:
            return min(st.prepare for st in healthy), s.needed
        return min(st.commit for st in healthy), s.needed

    def visible_messages(
        self, recent_window_ms: float, show_history: bool = False
    ) -> List[TimelineMessage]:
        s = self.state
        if show_history:
            return list(s.timeline)
        return [m for m in s.timeline if s.t - m.at <= recent_window_ms]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[PBFT %s] listener failed", self.name)

    # ============================
    # Internal helpers
    # ============================
    def _recompute_stats(self) -> None:
        s = self.state
        s.node_stats = compute_node_stats(
            s.timeline, s.expected_payload, s.phase, s.f, s.n, s.leader_id
        )

    def _enter_phase(self, phase: Phase, log_text: Optional[str] = None) -> None:
        s = self.state
        s.phase = phase
        s.phase_start = s.t
        s.phase_advance_due_at = None
        s.explanation = self.scene(phase).first_narration
        if log_text:
            s.log(log_text)
        logger.info("[PBFT %s] PHASE -> %s t=%d", self.name, phase.value, s.t)

    def _materialize(self, m: Message, at_base: float) -> TimelineMessage:
        s = self.state
        base = s.expected_payload if m.payload == VALUE_PLACEHOLDER else m.payload
        jitter = self.config.jitter_ms
        at = at_base + (self.rng.uniform(0, jitter) if jitter > 0 else 0)
        if s.is_node(m.from_id) and s.nodes[m.from_id].faulty:
            # Different payload to illustrate Byzantine divergence.
            return TimelineMessage.from_scripted(m, f"{base}*", at, conflicting=True)
        return TimelineMessage.from_scripted(m, base, at, conflicting=m.conflicting)

    def _replay(self, scene: Scene, window_start: float, window_end: float, nxt: float) -> int:
        s = self.state
        due: List[TimelineMessage] = []
        for step in scene.steps:
            if not is_due(step.at_ms, window_start, window_end):
                continue
            due.extend(self._materialize(m, nxt) for m in step.messages)
            if step.narration:
                s.explanation = step.narration
                s.log(step.narration, t=nxt)

        if not due:
            return 0

        # One log line per message kind.
        groups: Dict[MessageKind, List[TimelineMessage]] = {}
        for m in due:
            groups.setdefault(m.kind, []).append(m)
        for kind, msgs in groups.items():
            pairs = ", ".join(
                f"{_endpoint(m.from_id)}->{_endpoint(m.to_id)}{'(!)' if m.conflicting else ''}"
                for m in msgs
            )
            s.log(f"{label(kind)} {pairs}", t=nxt)

        s.timeline.extend(due)
        self._recompute_stats()
        logger.debug(
            "[PBFT %s] REPLAY phase=%s window=[%d,%d] messages=%d",
            self.name,
            s.phase.value,
            window_start,
            window_end,
            len(due),
        )
        return len(due)

    def _prune(self, now: float) -> None:
        s = self.state
        timeline = self.timeline_retention.prune(s.timeline, now, lambda m: m.at)
        if len(timeline) != len(s.timeline):
            s.timeline = timeline
        logs = self.log_retention.prune(s.logs, now, lambda entry: entry.t)
        if len(logs) != len(s.logs):
            s.logs = logs

    def _settle_round(self, at: float, skipped: bool = False) -> None:
        s = self.state
        s.value += s.next_increment
        s.round_settled = True
        suffix = " (skipped)" if skipped else ""
        s.log(f"✓ Round {s.round} committed{suffix}. Result value = {s.value}", t=at)
        logger.info(
            "[PBFT %s] COMMITTED round=%d value=%d", self.name, s.round, s.value
        )

    def _schedule(self, nxt: float, what: str) -> None:
        s = self.state
        delay = self.config.phase_delay_ms
        s.phase_advance_due_at = nxt + delay
        s.log(f"... Waiting {delay / 1000:.1f}s before {what}", t=nxt)

    def _auto_advance(self, nxt: float) -> None:
        s = self.state
        np = s.phase.next()

        if np is not None:
            if s.phase_advance_due_at is None:
                self._schedule(nxt, f"next phase ({np.value})")
            elif nxt >= s.phase_advance_due_at:
                # Timeline kept so the previous phase can fade out.
                self._enter_phase(np, f"--> Phase: {np.value}")
                self._recompute_stats()
            return

        # End of round (reply complete)
        if s.phase_advance_due_at is None:
            if not s.round_settled:
                self._settle_round(nxt)
                self._schedule(nxt, "next round")
            elif not self.config.manual_mode:
                self._schedule(nxt, "next round")
            # else: parked until trigger_request()
        elif nxt >= s.phase_advance_due_at:
            if self.config.manual_mode:
                s.phase_advance_due_at = None
                s.log("... Waiting for Client Request (Manual Mode)", t=nxt)
            else:
                self._start_next_round()

    def _start_next_round(self) -> None:
        s = self.state
        s.next_increment += 1
        s.round += 1
        s.expected_payload = payload_for(s.next_increment)
        s.round_settled = False
        # Old messages stay on the timeline; the new payload keeps them out of the counts.
        self._enter_phase(Phase.REQUEST)
        s.node_stats = []
        s.log(f"==> Round {s.round} start. Proposed delta {s.expected_payload}")
        logger.info(
            "[PBFT %s] ROUND -> %d delta=%s", self.name, s.round, s.expected_payload
        )

    def _save_prefs(self) -> None:
        if self.prefs is None:
            return
        cfg = self.config
        self.prefs.update(
            speed=cfg.speed,
            autoAdvance=cfg.auto_advance,
            phaseDelayMs=cfg.phase_delay_ms,
            manualMode=cfg.manual_mode,
            jitter=cfg.jitter_ms,
            view=self.state.view,
            leaderId=self.state.leader_id,
        )

    # ============================
    # Clock / phase driver
    # ============================
    @_transaction
    def step(self, delta_ms: Optional[float] = None) -> int:
        """Advance the logical clock; returns how many messages were emitted."""
        s = self.state
        delta = self.config.step_ms if delta_ms is None else delta_ms
        delta = max(0, int(delta))

        nxt = s.t + delta
        scene = self.scene()
        window_start = s.t - s.phase_start
        window_end = nxt - s.phase_start

        emitted = 0
        if delta > 0:
            emitted = self._replay(scene, window_start, window_end, nxt)

        s.t = nxt

        if s.playing and self.config.auto_advance and window_end > scene.last_at_ms:
            self._auto_advance(nxt)

        # Last, so entries logged by the scheduler are bounded too.
        self._prune(nxt)
        return emitted

    def tick(self, frame_ms: float) -> bool:
        """Frame driver hook: advance by ``frame_ms`` scaled by speed while playing."""
        if not self.state.playing:
            return False
        self.step(round(frame_ms * self.config.speed))
        return True

    def advance(self, total_ms: float, step_ms: Optional[float] = None) -> None:
        chunk = max(1, int(step_ms if step_ms is not None else self.config.step_ms))
        remaining = max(0, int(total_ms))
        while remaining > 0:
            d = min(chunk, remaining)
            self.step(d)
            remaining -= d

    @_transaction
    def set_phase(self, phase: Phase) -> None:
        s = self.state
        self._enter_phase(phase)
        s.playing = False
        s.node_stats = []

    @_transaction
    def reset_phase(self) -> None:
        s = self.state
        s.phase_start = s.t
        s.timeline = []
        s.logs = []
        s.node_stats = []
        s.playing = False
        s.phase_advance_due_at = None
        s.explanation = self.scene().first_narration
        logger.info("[PBFT %s] RESET phase=%s", self.name, s.phase.value)

    @_transaction
    def reset_all(self) -> None:
        # Faulty flags and the current view survive a full reset.
        s = self.state
        s.t = 0
        s.phase_start = 0
        s.phase = Phase.REQUEST
        s.playing = False
        s.timeline = []
        s.logs = []
        s.node_stats = []
        s.phase_advance_due_at = None
        s.round = 1
        s.value = 0
        s.next_increment = 1
        s.expected_payload = payload_for(1)
        s.round_settled = False
        s.explanation = self.scene(Phase.REQUEST).first_narration
        logger.info("[PBFT %s] RESET all", self.name)

    @_transaction
    def skip_phase(self) -> None:
        s = self.state
        np = s.phase.next()
        if np is not None:
            self._enter_phase(np, f"--> Phase: {np.value} (skipped)")
            s.node_stats = []
            return
        if not s.round_settled:
            self._settle_round(s.t, skipped=True)
        self._start_next_round()

    @_transaction
    def toggle_play(self) -> bool:
        s = self.state
        s.playing = not s.playing
        return s.playing

    # ============================
    # Round lifecycle
    # ============================
    @_transaction
    def start_next_round(self) -> None:
        self._start_next_round()

    @_transaction
    def trigger_request(self) -> None:
        """Client sends the next request (the only way forward in manual mode)."""
        self._start_next_round()

    # ============================
    # Faults / view change
    # ============================
    def _annotate_conflicting(self, node_id: int) -> int:
        """Mark past outgoing messages of ``node_id`` as Byzantine.

        This is the only place timeline history is rewritten: entries are
        replaced by copies with a starred payload; id, kind, endpoints and
        emission time stay as they were.
        """
        s = self.state
        marked = 0
        for i, m in enumerate(s.timeline):
            if m.from_id != node_id or m.conflicting:
                continue
            base = s.expected_payload if m.payload == VALUE_PLACEHOLDER else m.payload
            s.timeline[i] = replace(m, payload=f"{base}*", conflicting=True)
            marked += 1
        return marked

    @_transaction
    def toggle_faulty(self, node_id: int) -> bool:
        s = self.state
        if not s.is_node(node_id):
            return False
        node = s.nodes[node_id]
        node.state = NodeState.NORMAL if node.faulty else NodeState.FAULTY

        # Past Byzantine behavior stays in the history when the node recovers.
        if node.faulty:
            self._annotate_conflicting(node_id)
            s.log(f"*** Node n{node_id} became FAULTY")
        else:
            s.log(f"*** Node n{node_id} returned to NORMAL")
        self._recompute_stats()
        logger.info(
            "[PBFT %s] NODE %d -> %s", self.name, node_id, node.state.value.upper()
        )
        return True

    @_transaction
    def rotate_leader(self) -> int:
        s = self.state
        s.view += 1
        s.relabel_roles()
        s.log(f"!!! VIEW CHANGE: View {s.view}, New Leader n{s.leader_id}")
        self._recompute_stats()
        logger.info(
            "[PBFT %s] VIEW -> %d leader=%d", self.name, s.view, s.leader_id
        )
        self._save_prefs()
        return s.leader_id

    @_transaction
    def drop_message(self, message_id: str) -> bool:
        s = self.state
        kept = [m for m in s.timeline if m.id != message_id]
        if len(kept) == len(s.timeline):
            return False
        s.timeline = kept
        s.log(f"--- Message {message_id} dropped by user")
        self._recompute_stats()
        return True

    # ============================
    # Driver settings
    # ============================
    @_transaction
    def set_speed(self, speed: float) -> None:
        self.config.speed = float(speed)
        self._save_prefs()

    @_transaction
    def set_auto_advance(self, on: bool) -> None:
        self.config.auto_advance = bool(on)
        if not on:
            self.state.phase_advance_due_at = None
        self._save_prefs()

    @_transaction
    def set_phase_delay(self, ms: int) -> None:
        self.config.phase_delay_ms = max(0, int(ms))
        self._save_prefs()

    @_transaction
    def set_manual_mode(self, on: bool) -> None:
        self.config.manual_mode = bool(on)
        self._save_prefs()

    @_transaction
    def set_jitter(self, ms: int) -> None:
        self.config.jitter_ms = max(0, int(ms))
        self._save_prefs()

    @_transaction
    def reset_preferences(self) -> None:
        if self.prefs is not None:
            defaults = self.prefs.reset()
        else:
            defaults = dict(DEFAULT_PREFS)
        self.config.apply_prefs(defaults)
        s = self.state
        if s.view != 0:
            s.view = 0
            s.relabel_roles()
            self._recompute_stats()
