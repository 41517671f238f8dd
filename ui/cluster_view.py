import html

import streamlit as st

from core.phases import MessageKind, Phase
from core.state import Status
from ui.utils.geometry import (
    client_position,
    compute_radius,
    path_between,
    radial_positions,
)

CANVAS = 520
NODE_SIZE = 64

KIND_COLORS = {
    MessageKind.REQUEST: "#64748b",
    MessageKind.PRE_PREPARE: "#2563eb",
    MessageKind.PREPARE: "#0891b2",
    MessageKind.COMMIT: "#16a34a",
    MessageKind.REPLY: "#9333ea",
}

STATUS_COLORS = {
    Status.IDLE: "#e2e8f0",
    Status.PROPOSED: "#bfdbfe",
    Status.PREPARED: "#a5f3fc",
    Status.COMMITTED: "#bbf7d0",
}


def render_topology_svg(sim, messages) -> str:
    state = sim.state
    radius = compute_radius(state.n, NODE_SIZE)
    size = max(CANVAS, int(2 * radius + 2 * NODE_SIZE + 120))
    points = radial_positions(state.n, size, radius)
    client = client_position(size, radius)

    def pos(node_id):
        if node_id < 0:
            return client
        if node_id >= len(points):
            return None
        return points[node_id]

    parts = [f'<svg width="{size}" height="{size}" xmlns="http://www.w3.org/2000/svg">']
    for m in messages:
        a, b = pos(m.from_id), pos(m.to_id)
        if a is None or b is None:
            continue
        color = "#dc2626" if m.conflicting else KIND_COLORS[m.kind]
        dash = ' stroke-dasharray="6 4"' if m.conflicting else ""
        parts.append(
            f'<path d="{path_between(a, b)}" fill="none" stroke="{color}" stroke-width="2"{dash}>'
            f"<title>{html.escape(m.kind.value)} {html.escape(m.payload)}</title></path>"
        )

    cx, cy = client
    parts.append(
        f'<rect x="{cx - 28:.1f}" y="{cy - 18:.1f}" width="56" height="36" rx="8" fill="#f1f5f9" stroke="#475569"/>'
        f'<text x="{cx:.1f}" y="{cy + 5:.1f}" text-anchor="middle" font-size="13">Client</text>'
    )
    for node in state.nodes:
        x, y = points[node.id]
        st_ = sim.stats_for(node.id)
        stroke = "#dc2626" if node.faulty else ("#f59e0b" if node.id == state.leader_id else "#334155")
        parts.append(
            f'<circle cx="{x:.1f}" cy="{y:.1f}" r="{NODE_SIZE / 2}" fill="{STATUS_COLORS[st_.status]}" '
            f'stroke="{stroke}" stroke-width="3"/>'
            f'<text x="{x:.1f}" y="{y + 5:.1f}" text-anchor="middle" font-size="15">n{node.id}</text>'
        )
    parts.append("</svg>")
    return "".join(parts)


def render_cluster_view(sim, display, max_cols: int = 4) -> None:
    state = sim.state
    max_cols = max(1, int(max_cols))

    st.markdown(
        f"**{state.phase.value.upper()} PHASE** · round {state.round} · "
        f"value {state.value} · proposing `{state.expected_payload}` · t={int(state.t)} ms"
    )
    st.info(state.explanation or "—")

    current, needed = sim.consensus_progress()
    if state.phase in (Phase.PREPARE, Phase.COMMIT):
        st.progress(
            min(1.0, current / needed),
            text=f"Collected {current} / {needed} matching votes (need 2f+1)",
        )

    messages = sim.visible_messages(
        display.get("recent_window_ms", 1600), display.get("show_history", False)
    )
    st.markdown(render_topology_svg(sim, messages), unsafe_allow_html=True)

    nodes = list(state.nodes)
    for i in range(0, len(nodes), max_cols):
        cols = st.columns(max_cols)
        for col, node in zip(cols, nodes[i : i + max_cols]):
            with col:
                # Fault control above the node card
                if st.button(
                    "✅ Heal" if node.faulty else "💥 Byzantine",
                    use_container_width=True,
                    key=f"toggle_faulty_{node.id}",
                ):
                    sim.toggle_faulty(node.id)

                stats = sim.stats_for(node.id)
                header = f"Node n{node.id} ({node.role.value.title()})"
                body = (
                    f"Status: {stats.status.value.upper()}\n\n"
                    f"PREPARE: {stats.prepare}/{state.needed}\n\n"
                    f"COMMIT: {stats.commit}/{state.needed}\n\n"
                    f"Byzantine: {'ON' if node.faulty else 'OFF'}"
                )
                if node.faulty:
                    st.error(f"{header}\n\n{body}")
                elif node.id == state.leader_id:
                    st.warning(f"{header}\n\n{body}")
                elif stats.status is Status.COMMITTED:
                    st.success(f"{header}\n\n{body}")
                else:
                    st.info(f"{header}\n\n{body}")


def render_log(sim, limit: int = 40) -> None:
    st.subheader("Log")
    entries = sim.state.logs[-limit:]
    if not entries:
        st.caption("No events yet.")
        return
    lines = [f"{int(e.t):>7} ms  {e.text}" for e in reversed(entries)]
    st.code("\n".join(lines), language=None)
