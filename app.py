from __future__ import annotations

import logging

import streamlit as st

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

st.set_page_config(page_title="POS Ledger", page_icon="🥩", layout="wide")

pages = [
    st.Page("home.py", title="Home", icon="🏠"),
    st.Page("pages/1_📥_Batches.py", title="Batches", icon="📥"),
    st.Page("pages/2_📦_Stock_Movement.py", title="Stock Movement", icon="📦"),
    st.Page("pages/3_🛒_POS.py", title="POS", icon="🛒"),
    st.Page("pages/4_⚖️_Weight_Loss.py", title="Weight Loss", icon="⚖️"),
    st.Page("pages/5_💵_Shifts.py", title="Shifts", icon="💵"),
    st.Page("pages/6_🧪_Data_Management.py", title="Data Management", icon="🧪"),
    st.Page("pages/7_📊_Reports.py", title="Reports", icon="📊"),
]

st.navigation(pages).run()
