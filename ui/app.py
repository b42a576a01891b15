import streamlit as st
import time
import api
import utils

# -------------------------------------------------------------------------
# 1. Config & State Init
# -------------------------------------------------------------------------
st.set_page_config(
    page_title="Agent Crew",
    page_icon="🧠",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .stButton>button { width: 100%; border-radius: 6px; font-weight: 600; }
    .block-container { padding-top: 2rem; padding-bottom: 2rem; }
</style>
""", unsafe_allow_html=True)

if "task_id" not in st.session_state:
    st.session_state.task_id = None

# -------------------------------------------------------------------------
# 2. Sidebar
# -------------------------------------------------------------------------
with st.sidebar:
    st.header("⚡ System Status")
    backend_up = api.check_backend()

    st.markdown("**Backend API**")
    if backend_up: st.success("🟢 Online")
    else: st.error("🔴 Offline")

    st.caption(f"Signed in as `{api.USER_ID}`")

    st.divider()
    st.subheader("🗂️ Recent Tasks")
    for item in api.list_tasks()[:10]:
        label = f"{utils.status_icon(item['status'])} {item['goal_text'][:40]}"
        if st.button(label, key=f"task_{item['id']}"):
            st.session_state.task_id = item["id"]
            st.rerun()

# -------------------------------------------------------------------------
# 3. Main Header
# -------------------------------------------------------------------------
col_head_1, col_head_2 = st.columns([3, 1])
with col_head_1:
    st.title("Agent Crew")
    st.markdown("##### 🚀 Plan, delegate and synthesize with a crew of agents")
with col_head_2:
    st.markdown("")
    if st.button("➕ New Task", type="secondary"):
        st.session_state.task_id = None
        st.rerun()

st.divider()

# -------------------------------------------------------------------------
# 4. Input Panel
# -------------------------------------------------------------------------
if not st.session_state.task_id:
    st.markdown("### 🎯 Submit New Goal")
    with st.form("task_form", clear_on_submit=False):
        prompt = st.text_area("Goal", height=120, placeholder="e.g., Research...")
        submitted = st.form_submit_button("Start", type="primary", disabled=not backend_up)

        if submitted and prompt.strip():
            with st.spinner("Handing the goal to the crew..."):
                task = api.submit_task(prompt)
                if task:
                    st.session_state.task_id = task["id"]
                    st.rerun()
                else:
                    st.error("Failed to contact backend.")

# -------------------------------------------------------------------------
# 5. Task View (polled)
# -------------------------------------------------------------------------
if st.session_state.task_id:
    task = api.get_task(st.session_state.task_id)
    if task is None:
        st.error("Task could not be loaded.")
        st.stop()

    status = task["status"]
    st.markdown(f"### 🎯 {task['goal_text']}")
    st.markdown(f"Status: :{utils.status_color(status)}[**{status.upper()}**]")
    st.progress(utils.progress(task))

    running = status not in api.TERMINAL_STATUSES
    if running and st.button("⏹️ Stop Task"):
        if not api.stop_task(task["id"]):
            st.warning("Task had already finished.")
        st.rerun()

    col_steps, col_out = st.columns([1, 1.5], gap="large")

    with col_steps:
        st.subheader("📋 Subtasks")
        if not task["subtasks"]:
            st.info("⏳ Planning...")
        for sub in task["subtasks"]:
            title = sub["tool_input"].get("title") or sub["tool_input"].get("query", "")
            header = f"{utils.status_icon(sub['status'])} {sub['step_number']}. [{sub['role']}] {title}"
            with st.expander(header, expanded=sub["status"] == "processing"):
                st.caption(f"Updated {utils.format_timestamp(sub['updated_at'])}")
                if sub.get("agent_thought"):
                    st.markdown(f"_{sub['agent_thought']}_")
                if sub.get("tool_output"):
                    st.markdown(sub["tool_output"])

    with col_out:
        st.subheader("📄 Result")
        kind, text = utils.result_message(task)
        if kind == "success":
            st.markdown(text)
        elif kind == "warning":
            st.warning(text)
        elif kind == "error":
            st.error(text)
        else:
            st.info("⏳ Crew is working...")

    if running:
        time.sleep(api.POLL_INTERVAL)
        st.rerun()

# -------------------------------------------------------------------------
# Footer
# -------------------------------------------------------------------------
st.markdown("---")
st.markdown("""<div style="text-align: center; color: #666; font-size: 0.8rem;">
    Agent Crew · Powered by FastAPI & Redis
</div>""", unsafe_allow_html=True)
