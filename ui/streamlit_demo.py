from typing import Any, Dict, Optional

import pandas as pd
import requests
import streamlit as st
from dotenv import load_dotenv

load_dotenv()

st.set_page_config(page_title="Medication Assistant Demo", layout="centered")

# ---------------------------
# Config
# ---------------------------
DEFAULT_API_BASE = "http://127.0.0.1:8000"
API_BASE = st.sidebar.text_input("API Base URL", value=DEFAULT_API_BASE)
OWNER_ID = st.sidebar.text_input("Owner ID", value="demo_user")

# ---------------------------
# Helpers (API)
# ---------------------------
def api_post(path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    url = f"{API_BASE}{path}"
    r = requests.post(url, json=payload, timeout=120)  # retries/backoff happen server side
    if r.status_code >= 400:
        raise RuntimeError(f"{r.status_code} {r.text}")
    return r.json()

def api_get(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
    url = f"{API_BASE}{path}"
    r = requests.get(url, params=params or {}, timeout=20)
    if r.status_code >= 400:
        raise RuntimeError(f"{r.status_code} {r.text}")
    return r.json()

def api_delete(path: str) -> None:
    requests.delete(f"{API_BASE}{path}", timeout=20)

# ---------------------------
# Session state
# ---------------------------
if "conversation_id" not in st.session_state:
    st.session_state.conversation_id = ""
if "transcript" not in st.session_state:
    st.session_state.transcript = []
if "last_record" not in st.session_state:
    st.session_state.last_record = None

def start_conversation():
    data = api_post("/intake/start", {"owner_id": OWNER_ID})
    st.session_state.conversation_id = data["conversation_id"]
    st.session_state.transcript = data.get("transcript", [])

# ---------------------------
# UI
# ---------------------------
st.title("💊 Medication Assistant")

c1, c2 = st.columns(2)
if c1.button("New conversation", use_container_width=True):
    if st.session_state.conversation_id:
        api_delete(f"/intake/{st.session_state.conversation_id}")
    st.session_state.last_record = None
    start_conversation()
if c2.button("Start over", use_container_width=True, disabled=not st.session_state.conversation_id):
    data = api_post("/intake/reset", {"conversation_id": st.session_state.conversation_id})
    st.session_state.transcript = data.get("transcript", [])

if not st.session_state.conversation_id and st.session_state.last_record is None:
    try:
        start_conversation()
    except Exception as e:
        st.error(f"Could not reach the API: {e}")

for turn in st.session_state.transcript:
    with st.chat_message(turn["role"]):
        st.write(turn["content"])

prompt = st.chat_input("Type your answer...", disabled=not st.session_state.conversation_id)
if prompt and prompt.strip():
    with st.spinner("Thinking..."):
        try:
            data = api_post(
                "/intake/message",
                {"conversation_id": st.session_state.conversation_id, "message": prompt},
            )
        except Exception as e:
            st.error(str(e))
            data = None

    if data:
        st.session_state.transcript = data.get("transcript", [])
        result = data.get("result") or {}
        if result.get("status") == "error":
            st.warning(result.get("message"))
        if data.get("record"):
            st.session_state.last_record = data["record"]
            st.session_state.conversation_id = ""
        st.rerun()

if st.session_state.last_record:
    st.success(f"Added {st.session_state.last_record['medication_name']} to your list.")

st.divider()
st.subheader("My medications")
try:
    rows = api_get("/medications", {"owner_id": OWNER_ID})
    if rows:
        df = pd.DataFrame(rows)
        df["preferred_time"] = df["preferred_time"].apply(lambda v: ", ".join(v))
        st.dataframe(
            df[["medication_name", "dosage", "dosage_unit", "frequency",
                "times_per_frequency", "preferred_time", "remaining_quantity", "notes"]],
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No medications yet.")
except Exception as e:
    st.caption(f"Medications unavailable: {e}")
