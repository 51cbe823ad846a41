from __future__ import annotations
import sys
from pathlib import Path as _Path

_ROOT = _Path(__file__).resolve().parents[1]
_SRC = _ROOT / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import traceback
import streamlit as st

from nl_csvchat.config.settings import load_settings
from nl_csvchat.logging.logger import init_logging
from nl_csvchat.agents.orchestrator import ChatOrchestrator, TurnResult
from nl_csvchat.exceptions.errors import ParseError

st.set_page_config(page_title="Chat with your CSV", layout="wide")

@st.cache_resource
def bootstrap():
    settings = load_settings()
    init_logging(settings.log_level, settings.log_file)
    return settings

try:
    settings = bootstrap()
except Exception:
    st.error("Startup failed. See error below.")
    st.code(traceback.format_exc())
    raise

# One orchestrator (store + conversation) per browser session.
if "orchestrator" not in st.session_state:
    st.session_state["orchestrator"] = ChatOrchestrator(settings)
if "turns" not in st.session_state:
    st.session_state["turns"] = []
if "loaded_file" not in st.session_state:
    st.session_state["loaded_file"] = None

orch: ChatOrchestrator = st.session_state["orchestrator"]

def _render_turn(turn: TurnResult) -> None:
    if turn.query:
        with st.expander("Generated SQL Query", expanded=False):
            st.code(turn.query, language="sql")
            if len(turn.attempts) > 1:
                st.caption(f"Repaired after {len(turn.attempts) - 1} failed attempt(s).")
    if not turn.ok:
        st.error(f"Error: {turn.error or turn.message}")
        return
    if turn.figure is not None:
        st.plotly_chart(turn.figure, use_container_width=True)
        if turn.chart and turn.chart.description:
            st.caption(turn.chart.description)
    elif turn.chart_error:
        st.warning(f"Chart unavailable ({turn.chart_error_kind}): {turn.chart_error}")
    if turn.result is not None:
        if turn.result.is_empty:
            st.info(turn.message)
        else:
            st.dataframe(turn.result.to_frame(), use_container_width=True)

st.title("Chat with your CSV")

upload = st.file_uploader("Upload CSV", type=["csv"])
if upload is not None and st.session_state["loaded_file"] != upload.name:
    try:
        schema = orch.load_dataset(upload.getvalue(), source_name=upload.name)
        st.session_state["loaded_file"] = upload.name
        st.session_state["turns"] = []
        st.success(f"Loaded {upload.name} as table '{schema.table_name}' ({schema.row_count} rows)")
    except ParseError as e:
        st.error(f"Could not load {upload.name}: {e}")

if orch.store.has_dataset:
    with st.expander("Preview", expanded=False):
        st.write("**Columns:**", ", ".join(orch.store.schema.columns))
        st.dataframe(orch.store.preview(settings.max_rows_preview), use_container_width=True)

for question, turn in st.session_state["turns"]:
    with st.chat_message("user"):
        st.write(question)
    with st.chat_message("assistant"):
        _render_turn(turn)

question = st.chat_input("Ask a question about your data")
if question:
    with st.chat_message("user"):
        st.write(question)
    with st.chat_message("assistant"):
        with st.spinner("Generating SQL query and chart..."):
            turn = orch.ask(question)
        _render_turn(turn)
    st.session_state["turns"].append((question, turn))
