from __future__ import annotations

import streamlit as st

from posledger.config import get_company_profile, get_settings
from posledger.db import get_conn, ensure_schema
from posledger.services.demo_data import upsert_reference_data

st.set_page_config(page_title="POS Ledger", page_icon="🥩", layout="wide")

settings = get_settings()
conn = get_conn(settings.db_path)
ensure_schema(conn)
upsert_reference_data(conn)
profile = get_company_profile(conn)

st.title(f"🥩 {profile.company_name} — Back Office")
st.caption("Batch-based perishable stock (FIFO), a daily movement ledger, weight-loss tracking and shift cash reconciliation.")

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then open a shift in **Shifts**, sell from **POS**, and record losses in **Weight Loss**.",
    icon="ℹ️",
)
