# src/budget_scanner/interfaces/app.py
# Streamlit UI for Budget Scanner
# - Scan: upload/photograph a receipt and apply it to category totals
# - Categories: running totals, spending items, manual corrections
# - Budgets: create/update/delete + progress and alerts
# - Tips: AI spending tips

from __future__ import annotations

import os

import pandas as pd
import requests
import streamlit as st


# -----------------------------
# Page config
# -----------------------------
st.set_page_config(page_title="Budget Scanner", layout="wide")
st.title("🧾 Budget Scanner")

# -----------------------------
# Backend config
# -----------------------------
API_BASE = os.getenv("BUDGET_API_BASE", "http://127.0.0.1:8000")  # FastAPI base URL

user_id = st.sidebar.text_input("User id", value=st.session_state.get("user_id", "demo-user"))
st.session_state["user_id"] = user_id


def _headers() -> dict:
    return {"X-User-Id": user_id}


def _check(resp: requests.Response):
    if not resp.ok:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise RuntimeError(detail)
    return resp.json()


def api_get(path: str, params: dict | None = None, timeout: int = 30):
    resp = requests.get(f"{API_BASE}{path}", params=params or {}, headers=_headers(), timeout=timeout)
    return _check(resp)


def api_send(method: str, path: str, payload: dict | None = None, timeout: int = 60):
    resp = requests.request(method, f"{API_BASE}{path}", json=payload, headers=_headers(), timeout=timeout)
    return _check(resp)


def api_post_file(path: str, file_bytes: bytes, filename: str, mime: str, timeout: int = 180):
    files = {"file": (filename, file_bytes, mime)}
    resp = requests.post(f"{API_BASE}{path}", files=files, headers=_headers(), timeout=timeout)
    if resp.status_code in (422, 502):
        # structuring failed; OCR text comes back for manual review when we got that far
        body = resp.json()
        if body.get("ocr_text"):
            st.session_state["last_ocr_text"] = body["ocr_text"]
            raise RuntimeError(body.get("detail", "Could not structure the receipt."))
    return _check(resp)


# -----------------------------
# Data loaders
# -----------------------------
def load_categories() -> pd.DataFrame:
    df = pd.DataFrame(api_get("/categories"))
    if df.empty:
        return df
    df["total_spent"] = pd.to_numeric(df["total_spent"], errors="coerce").fillna(0.0)
    return df


def load_progress() -> pd.DataFrame:
    return pd.DataFrame(api_get("/budgets/progress"))


if st.sidebar.button("🔄 Refresh"):
    st.rerun()

try:
    df_cat = load_categories()
except (requests.RequestException, RuntimeError) as e:
    st.error(f"Could not reach the API at {API_BASE}: {e}")
    st.stop()

if df_cat.empty:
    st.info("No categories yet.")
    if st.button("Create default categories"):
        api_send("POST", "/categories/defaults")
        st.rerun()

tab_scan, tab_cat, tab_budget, tab_tips = st.tabs(["Scan receipt", "Categories", "Budgets", "Tips"])


# -----------------------------
# Scan
# -----------------------------
with tab_scan:
    upload = st.file_uploader("Receipt image", type=["jpg", "jpeg", "png"])
    photo = st.camera_input("...or take a photo")
    chosen = upload or photo

    if chosen is not None:
        st.image(chosen, width=320)

        # the button stays disabled while a run is outstanding
        busy = st.session_state.get("scanning", False)
        if st.button("Process receipt", disabled=busy):
            st.session_state["scanning"] = True
            st.session_state.pop("last_ocr_text", None)
            try:
                with st.spinner("Reading receipt..."):
                    result = api_post_file(
                        "/receipts/process",
                        chosen.getvalue(),
                        getattr(chosen, "name", "receipt.jpg"),
                        getattr(chosen, "type", "image/jpeg"),
                    )
                st.session_state["last_result"] = result
            except (requests.RequestException, RuntimeError) as e:
                st.error(str(e))
            finally:
                st.session_state["scanning"] = False

    result = st.session_state.get("last_result")
    if result:
        st.subheader(result.get("store_name") or "Receipt")
        st.write(f"Receipt total: {result.get('total')} | Added to categories: ${result['total_applied']:.2f}")
        if result["applied"]:
            st.dataframe(pd.DataFrame(result["applied"]), use_container_width=True)
        if result["skipped"]:
            st.warning(f"{len(result['skipped'])} item(s) were skipped.")
            st.dataframe(pd.DataFrame(result["skipped"]), use_container_width=True)
        with st.expander("OCR text"):
            st.text(result["ocr_text"])

    if st.session_state.get("last_ocr_text"):
        with st.expander("OCR text (not applied)", expanded=True):
            st.text(st.session_state["last_ocr_text"])


# -----------------------------
# Categories
# -----------------------------
with tab_cat:
    if not df_cat.empty:
        st.dataframe(df_cat[["name", "total_spent"]], use_container_width=True, hide_index=True)

        with st.form("manual_entry"):
            st.markdown("**Add a manual entry**")
            c1, c2, c3 = st.columns(3)
            m_cat = c1.selectbox("Category", df_cat["name"].tolist())
            m_name = c2.text_input("Item name", placeholder="e.g. Coffee")
            m_amount = c3.number_input("Amount", min_value=0.0, step=0.01)
            if st.form_submit_button("Add spending"):
                if not m_name or m_amount <= 0:
                    st.error("Please fill out all fields.")
                else:
                    api_send("POST", "/spending-items", {"category": m_cat, "amount": m_amount, "name": m_name})
                    st.success("Added.")
                    st.rerun()

        picked = st.selectbox("Show items for", df_cat["name"].tolist(), key="items_for")
        cat_id = int(df_cat.loc[df_cat["name"] == picked, "id"].iloc[0])
        items = pd.DataFrame(api_get(f"/categories/{cat_id}/items"))
        if items.empty:
            st.caption("No items yet.")
        else:
            st.dataframe(items[["created_at", "item_name", "amount"]], use_container_width=True, hide_index=True)

        new_total = st.number_input("Set total", min_value=0.0, step=0.01, key="set_total")
        if st.button("Update total"):
            api_send("PUT", f"/categories/{cat_id}/total", {"amount": new_total})
            st.rerun()

        if st.button("Reset all totals"):
            api_send("POST", "/categories/reset")
            st.rerun()


# -----------------------------
# Budgets
# -----------------------------
with tab_budget:
    try:
        alerts = api_get("/budgets/alerts")
    except RuntimeError:
        alerts = []
    for a in alerts:
        st.warning(f"{a['category_name']}: {a['progress_percentage']:.0f}% of budget used ({a['alert_level']})")

    df_prog = load_progress()
    if df_prog.empty:
        st.caption("No budgets yet.")
    else:
        for _, row in df_prog.iterrows():
            st.write(
                f"**{row['category_name']}** ${row['spent_amount']:.2f} / ${row['budget_amount']:.2f} "
                f"(${row['remaining_amount']:.2f} left)"
            )
            st.progress(min(float(row["progress_percentage"]), 100.0) / 100)

    if not df_cat.empty:
        with st.form("budget_form"):
            b_cat = st.selectbox("Category", df_cat["name"].tolist())
            b_amount = st.number_input("Monthly budget", min_value=0.0, step=10.0)
            if st.form_submit_button("Save budget"):
                cat_id = int(df_cat.loc[df_cat["name"] == b_cat, "id"].iloc[0])
                existing = None
                if not df_prog.empty:
                    match = df_prog[df_prog["category_name"] == b_cat]
                    existing = int(match["budget_id"].iloc[0]) if not match.empty else None
                if existing:
                    api_send("PUT", f"/budgets/{existing}", {"budget_amount": b_amount})
                else:
                    api_send("POST", "/budgets", {"category_id": cat_id, "budget_amount": b_amount})
                st.rerun()

    if not df_prog.empty:
        to_delete = st.selectbox("Delete budget for", df_prog["category_name"].tolist())
        if st.button("Delete budget"):
            bid = int(df_prog.loc[df_prog["category_name"] == to_delete, "budget_id"].iloc[0])
            api_send("DELETE", f"/budgets/{bid}")
            st.rerun()


# -----------------------------
# Tips
# -----------------------------
with tab_tips:
    st.caption("Get AI-powered insights based on your spending habits.")
    if st.button("Get AI Tips"):
        try:
            with st.spinner("Analyzing..."):
                st.session_state["tips"] = api_send("POST", "/tips")["tips"]
        except (requests.RequestException, RuntimeError) as e:
            st.error(str(e))
    for tip in st.session_state.get("tips", []):
        st.markdown(f"- {tip}")
