from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import streamlit as st

from posledger.db import q, transaction, x

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "POS_LEDGER_DATA_DIR"
SESSION_KEY = "pos_ledger_data_dir"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    currency: str = "KES"
    # Shifts opened before this hour default to "Morning", otherwise "Evening".
    evening_shift_hour: int = 14


@dataclass(frozen=True)
class CompanyProfile:
    company_name: str = "Alpha Retail"
    address: str = ""
    city: str = ""
    country: str = "Kenya"
    phone: str = ""
    email: str = ""
    kra_pin: str = ""
    currency_code: str = "KES"
    currency_symbol: str = "KSh"
    receipt_footer: str = "Thank you for visiting us!"
    vat_rate: float = 16.0
    extra: dict = field(default_factory=dict, compare=False)


def _default_data_dir() -> Path:
    return Path.home() / ".posledger"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    cfg = data_dir / CONFIG_FILE_NAME
    payload = {"data_dir": str(data_dir)}
    cfg.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # Update session for immediate effect
    st.session_state[SESSION_KEY] = str(data_dir)
    reload_settings()
    # The profile cache is not keyed by database.
    invalidate_company_profile()


@st.cache_resource
def get_settings() -> Settings:
    # Priority order:
    # 1) Session state (set via Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    if SESSION_KEY in st.session_state:
        data_dir = Path(st.session_state[SESSION_KEY]).expanduser().resolve()
    elif os.getenv(ENV_DATA_DIR):
        data_dir = Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    else:
        default_dir = _default_data_dir()
        persisted = _load_persisted_settings(default_dir)
        data_dir = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    data_dir.mkdir(parents=True, exist_ok=True)
    db_path = data_dir / "app.db"
    return Settings(data_dir=data_dir, db_path=db_path)


def reload_settings() -> None:
    get_settings.clear()


# -------------------------
# Company profile
# -------------------------

@st.cache_data
def get_company_profile(_conn) -> CompanyProfile:
    """
    Read the organisation_settings key/value rows once and cache them.
    Call invalidate_company_profile() after any write.
    """
    known = {f.name: f for f in fields(CompanyProfile) if f.name != "extra"}
    values: dict = {}
    extra: dict = {}
    for r in q(_conn, "SELECT setting_key, setting_value FROM organisation_settings"):
        key, raw = str(r["setting_key"]), r["setting_value"]
        if key not in known:
            extra[key] = raw
        elif known[key].type in ("float", float):
            try:
                values[key] = float(raw)
            except (TypeError, ValueError):
                values[key] = 0.0
        else:
            values[key] = raw or ""
    return CompanyProfile(**values, extra=extra)


def invalidate_company_profile() -> None:
    get_company_profile.clear()


def save_company_profile(conn, updates: dict) -> None:
    with transaction(conn):
        for key, value in updates.items():
            x(
                conn,
                """
                INSERT INTO organisation_settings (setting_key, setting_value) VALUES (?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET setting_value=excluded.setting_value
                """,
                (str(key), None if value is None else str(value)),
            )
    invalidate_company_profile()
