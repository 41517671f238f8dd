import streamlit as st

from core.phases import PHASE_ORDER

SPEEDS = [0.5, 1.0, 2.0, 4.0]
PHASE_DELAYS = [1000, 2000, 3000, 5000]
MANUAL_STEP_MS = 600


def render_sidebar(sim, prefs=None):
    st.sidebar.header("⚙️ Simulation Controls (PBFT)")

    msg_box = st.sidebar.empty()
    state = sim.state
    cfg = sim.config

    st.sidebar.caption(
        f"n={state.n} = 3*{state.f}+1 · quorum 2f+1 = {state.needed} · view {state.view} · leader n{state.leader_id}"
    )

    # ============================
    # EXECUTION
    # ============================
    col1, col2 = st.sidebar.columns(2)
    with col1:
        if st.button(
            "⏸️ Pause" if state.playing else "▶️ Play", use_container_width=True
        ):
            sim.toggle_play()
    with col2:
        if st.button("⏭️ Step", use_container_width=True):
            sim.step(MANUAL_STEP_MS)

    col1, col2, col3 = st.sidebar.columns(3)
    with col1:
        if st.button("↩️ Phase", use_container_width=True, help="Reset phase"):
            sim.reset_phase()
            msg_box.info("Phase reset")
    with col2:
        if st.button("🔄 All", use_container_width=True, help="Reset all"):
            sim.reset_all()
            msg_box.info("Simulation reset (faults and view kept)")
    with col3:
        if st.button("⏩ Skip", use_container_width=True, help="Skip phase"):
            sim.skip_phase()

    phase = st.sidebar.selectbox(
        "Jump to phase",
        options=list(PHASE_ORDER),
        index=list(PHASE_ORDER).index(state.phase),
        format_func=lambda p: p.value.upper(),
    )
    if phase != state.phase:
        sim.set_phase(phase)

    speed = st.sidebar.selectbox(
        "Speed",
        options=SPEEDS,
        index=SPEEDS.index(cfg.speed) if cfg.speed in SPEEDS else 1,
        format_func=lambda s: f"{s:g}x",
    )
    if speed != cfg.speed:
        sim.set_speed(speed)

    auto = st.sidebar.checkbox("Auto-advance", value=cfg.auto_advance)
    if auto != cfg.auto_advance:
        sim.set_auto_advance(auto)

    if cfg.auto_advance:
        delay = st.sidebar.selectbox(
            "Phase pause",
            options=PHASE_DELAYS,
            index=PHASE_DELAYS.index(cfg.phase_delay_ms)
            if cfg.phase_delay_ms in PHASE_DELAYS
            else 1,
            format_func=lambda ms: f"{ms / 1000:.1f}s",
        )
        if delay != cfg.phase_delay_ms:
            sim.set_phase_delay(delay)

    # ============================
    # CLIENT / NETWORK
    # ============================
    st.sidebar.markdown("### 📩 Client Request")

    manual = st.sidebar.checkbox(
        "Manual mode",
        value=cfg.manual_mode,
        help="When enabled, the next round waits for an explicit client request.",
    )
    if manual != cfg.manual_mode:
        sim.set_manual_mode(manual)

    if st.sidebar.button(
        "Send Request", use_container_width=True, disabled=not cfg.manual_mode
    ):
        sim.trigger_request()
        msg_box.success(f"Round {sim.state.round} started ({sim.state.expected_payload})")

    jitter = st.sidebar.slider(
        "Network jitter (ms)", min_value=0, max_value=1000, step=50, value=int(cfg.jitter_ms)
    )
    if jitter != cfg.jitter_ms:
        sim.set_jitter(jitter)

    st.sidebar.markdown("### 👑 View Change")
    if st.sidebar.button("Rotate Leader", use_container_width=True):
        leader = sim.rotate_leader()
        msg_box.warning(f"View {sim.state.view}: leader is now n{leader}")

    # ============================
    # DISPLAY
    # ============================
    st.sidebar.markdown("### 🖥️ Display")
    show_history = st.sidebar.checkbox(
        "Show full history", value=bool(prefs.get("showHistory", False)) if prefs else False
    )
    recent_ms = st.sidebar.slider(
        "Recent window (ms)",
        min_value=400,
        max_value=5000,
        step=200,
        value=int(prefs.get("recentWindowMs", 1600)) if prefs else 1600,
        disabled=show_history,
    )
    if prefs is not None and (
        show_history != prefs.get("showHistory") or recent_ms != prefs.get("recentWindowMs")
    ):
        prefs.update(showHistory=show_history, recentWindowMs=recent_ms)

    if st.sidebar.button("Reset view preferences", use_container_width=True):
        sim.reset_preferences()
        msg_box.info("Preferences reset")

    return {"show_history": show_history, "recent_window_ms": recent_ms}
