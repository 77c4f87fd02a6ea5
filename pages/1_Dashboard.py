from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd
import streamlit as st

from access_guard import render_auth_sidebar, require_admin

st.set_page_config(page_title="Admin Suite - Dashboard", page_icon="🛒", layout="wide")

auth = require_admin("pages/1_Dashboard.py")
render_auth_sidebar(auth)

session = auth.session
st.markdown("# Dashboard")
if session is not None:
    expires = (
        datetime.fromtimestamp(session.expires_at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        if session.expires_at
        else "unknown"
    )
    cols = st.columns(3)
    cols[0].metric("Signed in as", session.email or session.user_id)
    cols[1].metric("Session expires", expires)
    cols[2].metric("Session length", auth.config.session_duration_human)

if auth.profile is not None:
    st.markdown("### Profile")
    st.dataframe(pd.DataFrame([auth.profile.to_dict()]), use_container_width=True, hide_index=True)
