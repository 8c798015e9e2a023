"""Streamlit operator dashboard for the transport logistics API."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

# ==========================================
# Configuration & Constants
# ==========================================
API_BASE_URL = os.getenv("LOGISTICS_API_URL", "http://127.0.0.1:8000")
SERVICE_TOKEN = os.getenv("SERVICE_TOKEN")

st.set_page_config(
    page_title="Transport Logistics Dashboard",
    page_icon="🚚",
    layout="wide",
)


# ==========================================
# API Helper Functions
# ==========================================
def _headers(user_id: int) -> Dict[str, str]:
    headers = {"X-User-Id": str(user_id)}
    if SERVICE_TOKEN:
        headers["Authorization"] = f"Bearer {SERVICE_TOKEN}"
    return headers


def api_get(path: str, user_id: int, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
    try:
        response = requests.get(
            f"{API_BASE_URL}{path}",
            headers=_headers(user_id),
            params=params,
            timeout=5,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Request to {path} failed: {e}")
        return None


def api_send(method: str, path: str, user_id: int, payload: Dict[str, Any]) -> Optional[Any]:
    try:
        response = requests.request(
            method,
            f"{API_BASE_URL}{path}",
            headers=_headers(user_id),
            json=payload,
            timeout=10,
        )
        response.raise_for_status()
        return response.json() if response.content else {}
    except requests.exceptions.HTTPError as e:
        detail = e.response.json().get("detail") if e.response is not None else str(e)
        st.error(f"{method} {path} rejected: {detail}")
        return None
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


# ==========================================
# UI Page Functions
# ==========================================
def render_bookings_page(user_id: int) -> None:
    st.header("📦 Bookings")

    stats = api_get("/forms/stats", user_id)
    if stats:
        col_a, col_b, col_c, col_d = st.columns(4)
        col_a.metric("Total", stats["total"])
        col_b.metric("Pending", stats["pending"])
        col_c.metric("Completed", stats["completed"])
        col_d.metric("This Month", stats["this_month"])

    search = st.text_input("Search ref id, shipper or vehicle number")
    forms = api_get("/forms", user_id, params={"search": search} if search else None)
    if forms:
        rows = [
            {
                "form_id": form["form_id"],
                "ref_id": form["ref_id"],
                "booking_no": form["booking_details"]["booking_no"],
                "shipper": form["booking_details"]["shipper_name"],
                "vehicles": form["booking_details"]["vehicle_quantity"],
                "status": form["status"],
                "created_at": form["created_at"],
            }
            for form in forms
        ]
        st.dataframe(pd.DataFrame(rows), use_container_width=True)
    else:
        st.info("No bookings found.")

    st.write("### Reallocate Vehicles")
    vendors = api_get("/vendors", user_id) or []
    col1, col2 = st.columns(2)
    with col1:
        form_id = st.number_input("Form ID", min_value=1, value=1)
    with col2:
        vendor_labels = {f"{vendor['name']} ({vendor['user_id']})": vendor["user_id"] for vendor in vendors}
        selected = st.multiselect("Vendors", list(vendor_labels))

    allocations: List[Dict[str, Any]] = []
    for label in selected:
        count = st.number_input(f"Vehicles for {label}", min_value=0, value=1, key=f"alloc-{label}")
        allocations.append({"vendor_id": vendor_labels[label], "requested_count": int(count)})

    if st.button("Apply Allocations", type="primary"):
        result = api_send("PUT", f"/forms/{int(form_id)}/allocations", user_id, {"allocations": allocations})
        if result is not None:
            st.success(
                f"Created {len(result['created'])}, deleted {len(result['deleted'])}, "
                f"skipped {len(result['skipped'])} vehicle slots."
            )


def render_vendor_page(user_id: int) -> None:
    st.header("🚛 Vendor Assignments")

    summaries = api_get("/vendor/forms", user_id)
    if summaries:
        st.dataframe(pd.DataFrame(summaries), use_container_width=True)

    assignments = api_get("/vendor/assignments", user_id, params={"status": "draft"}) or []
    if not assignments:
        st.info("No draft assignments waiting for details.")
        return

    options = {f"#{item['assignment_id']} · {item['ref_id']}": item for item in assignments}
    choice = st.selectbox("Draft assignment", list(options))
    with st.form("submit-vehicle"):
        vehicle_number = st.text_input("Vehicle number")
        driver_name = st.text_input("Driver name")
        driver_mobile = st.text_input("Driver mobile")
        container_number = st.text_input("Container number (optional)")
        submitted = st.form_submit_button("Submit details")

    if submitted:
        payload = {
            "vehicle_number": vehicle_number,
            "driver_name": driver_name,
            "driver_mobile": driver_mobile,
            "container_number": container_number or None,
        }
        assignment_id = options[choice]["assignment_id"]
        if api_send("POST", f"/vendor/assignments/{assignment_id}/submit", user_id, payload) is not None:
            st.success("Vehicle details submitted.")


def render_audit_page(user_id: int) -> None:
    st.header("🧾 Recent Activity")
    activity = api_get("/audit/recent", user_id)
    if activity:
        df = pd.DataFrame(activity)
        df["user"] = df["user"].apply(lambda value: value["name"] if value else "")
        st.dataframe(df[["timestamp", "entity_type", "entity_id", "action", "user"]], use_container_width=True)
    else:
        st.info("No activity in the recent window.")


# ==========================================
# Main App Router
# ==========================================
def main() -> None:
    st.sidebar.title("Transport Logistics")
    st.sidebar.markdown("---")

    user_id = int(st.sidebar.number_input("Acting user id", min_value=1, value=1))
    page = st.sidebar.radio("Navigation", ["Bookings", "Vendor", "Audit"])

    st.sidebar.markdown("---")
    st.sidebar.caption(f"API: {API_BASE_URL}")

    if page == "Bookings":
        render_bookings_page(user_id)
    elif page == "Vendor":
        render_vendor_page(user_id)
    elif page == "Audit":
        render_audit_page(user_id)


if __name__ == "__main__":
    main()
