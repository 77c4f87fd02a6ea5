from __future__ import annotations

import pandas as pd
import streamlit as st

from access_guard import auth_debug_snapshot, render_auth_sidebar, require_admin
from diagnostics import (
    clear_forced_admin_access,
    force_admin_access_for_testing,
    inspect_admin_status,
    is_admin_access_forced,
    repair_admin_role,
)
from settings import load_auth_settings

st.set_page_config(page_title="Admin Suite - Diagnostics", page_icon="🛠", layout="wide")

auth = require_admin("pages/99_Admin.py")
render_auth_sidebar(auth)
settings = load_auth_settings()

st.markdown("# Admin diagnostics")

st.markdown("### Session state")
st.json(auth_debug_snapshot(auth), expanded=False)

st.markdown("### Admin status")
if st.button("Inspect admin status", key="diag_inspect"):
    st.session_state["_diag_report"] = inspect_admin_status(auth)

report = st.session_state.get("_diag_report")
if isinstance(report, dict):
    if report.get("inconsistent"):
        st.warning("Inconsistency detected: profile role and admin check do not match.")
    elif report.get("success"):
        st.success(f"Verdict: {report.get('verdict')}")
    else:
        st.error(report.get("error") or report.get("message") or "Inspection failed.")
    check = report.get("admin_check")
    if check:
        st.dataframe(pd.DataFrame([check]), use_container_width=True, hide_index=True)
    if report.get("profile"):
        st.dataframe(pd.DataFrame([report["profile"]]), use_container_width=True, hide_index=True)

if not settings.dev_tools_enabled:
    st.caption("Developer tools are disabled in this environment.")
    st.stop()

st.markdown("### Developer tools")
st.warning(
    "These actions change authorization state for the signed-in account. "
    "Use them only on development projects."
)
cols = st.columns(2)
with cols[0]:
    if st.button("Set my role to admin", key="diag_repair"):
        result = repair_admin_role(auth)
        if result.get("success"):
            st.success(result.get("message"))
        else:
            st.error(result.get("error"))
with cols[1]:
    if is_admin_access_forced(st.session_state, settings):
        if st.button("Stop forcing admin access", key="diag_unforce"):
            clear_forced_admin_access(st.session_state)
            st.rerun()
    elif st.button("Force admin access in this tab", key="diag_force"):
        result = force_admin_access_for_testing(st.session_state, settings)
        if result.get("success"):
            st.rerun()
        st.error(result.get("error"))
