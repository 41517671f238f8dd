import time

import streamlit as st

from core.engine import PBFTSimulation
from core.logger import configure_logging
from core.prefs import PreferenceStore
from ui.cluster_view import render_cluster_view, render_log
from ui.sidebar import render_sidebar

# Rerun cadence; each rerun advances the logical clock by one frame.
FRAME_S = 0.25

st.set_page_config(page_title="PBFT Simulator", layout="wide")
st.title("🛠️ PBFT Consensus Simulator")

# ============================
# INIT SIMULATION
# ============================
if "sim" not in st.session_state:
    configure_logging()
    prefs = PreferenceStore()
    st.session_state.prefs = prefs
    st.session_state.sim = PBFTSimulation(prefs=prefs)

sim = st.session_state.sim
prefs = st.session_state.prefs

# ============================
# SIDEBAR
# ============================
display = render_sidebar(sim, prefs)

# ============================
# MAIN VIEW
# ============================
st.subheader("Cluster View")
render_cluster_view(sim, display)
render_log(sim)

if sim.playing:
    time.sleep(FRAME_S)
    sim.tick(FRAME_S * 1000)
    st.rerun()
