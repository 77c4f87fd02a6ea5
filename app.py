from __future__ import annotations

import streamlit as st

from access_guard import (
    HOME_PAGE,
    NEXT_PAGE_KEY,
    get_auth_context,
    render_auth_sidebar,
    render_login_form,
)

st.set_page_config(
    page_title="Admin Suite",
    page_icon="🛒",
    layout="centered",
)

auth = get_auth_context()

if auth.session is not None and auth.is_admin is True:
    st.switch_page(st.session_state.pop(NEXT_PAGE_KEY, None) or HOME_PAGE)

st.markdown("# Admin Suite")
st.caption(f"Sign in with your admin account. Sessions are valid for {auth.config.session_duration_human}.")

if auth.session is not None:
    render_auth_sidebar(auth)
    st.info(f"Signed in as {auth.session.email or auth.session.user_id}.")
    if st.button("Continue to dashboard", key="login_continue"):
        st.switch_page(HOME_PAGE)

render_login_form(auth)
