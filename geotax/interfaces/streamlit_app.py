"""
interfaces/streamlit_app.py
──────────────────────────────────────────────────────────────────────────────
Streamlit UI for the jurisdiction tax service.

Run:
  streamlit run geotax/interfaces/streamlit_app.py

Features:
  • Single order: coordinates + subtotal → quote or store → metrics / JSON
  • CSV import: upload → background import → aggregate counts
  • Orders browser: filters, sorting, paging → table + CSV download
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime, time, timezone
from pathlib import Path

import pandas as pd
import streamlit as st
from pydantic import ValidationError

# ── Path setup ─────────────────────────────────────────────────────────────
# Allow running from the repo root with: streamlit run geotax/interfaces/streamlit_app.py
_REPO_ROOT = Path(__file__).parent.parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from geotax.domain.exceptions import GeoTaxError
from geotax.domain.models import ImportResult, Order, OrderFilters, OrderRequest
from geotax.services.container import get_service

logger = logging.getLogger(__name__)

# ── Page configuration ─────────────────────────────────────────────────────
st.set_page_config(
    page_title="GeoTax",
    page_icon="🧾",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown(
    """
    <style>
    [data-testid="stSidebar"] {
        background: linear-gradient(180deg, #0a1628 0%, #1a3a5c 100%);
    }
    [data-testid="stSidebar"] * { color: #e8f0fe !important; }
    .stApp { background-color: #f4f6f9; }
    [data-testid="metric-container"] {
        background: white;
        border-radius: 8px;
        padding: 12px;
        box-shadow: 0 1px 3px rgba(0,0,0,0.06);
    }
    </style>
    """,
    unsafe_allow_html=True,
)


# ── Backend singleton ──────────────────────────────────────────────────────

@st.cache_resource(show_spinner="Loading jurisdiction boundaries…")
def _load_service():
    """Loads and caches the OrderService for the lifetime of the app."""
    return get_service()


# ── Sidebar ────────────────────────────────────────────────────────────────

def _render_sidebar() -> str:
    with st.sidebar:
        st.markdown("## ⚙️ Mode")
        st.markdown("---")
        page = st.radio(
            "Page",
            ["Single order", "CSV import", "Orders"],
            key="page",
        )
        st.markdown("---")
        st.markdown(
            "<small style='color:#8facc8'>GeoTax v1.0<br>"
            "shapely STRtree · PostgreSQL</small>",
            unsafe_allow_html=True,
        )
    return page


# ── Rendering helpers ──────────────────────────────────────────────────────

def _orders_to_df(orders: list[Order]) -> pd.DataFrame:
    rows = []
    for o in orders:
        rows.append(
            {
                "ID": o.id,
                "Created": o.created_at,
                "Status": o.status.value,
                "Longitude": o.longitude,
                "Latitude": o.latitude,
                "Subtotal": o.total_amount,
                "Tax": o.tax_amount,
                "Rate": o.composite_tax_rate,
                "Reporting code": o.reporting_code,
                "Jurisdictions": ", ".join(o.jurisdictions),
            }
        )
    return pd.DataFrame(rows)


def _render_import_result(name: str, result: ImportResult) -> None:
    st.markdown(f"#### {name}")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Processed", result.processed)
    c2.metric("Failed rows", result.failed)
    c3.metric("Persisted", result.orders_persisted)
    c4.metric("Elapsed", f"{result.elapsed_seconds:.2f}s")
    if result.timed_out:
        st.warning("Processing timeout reached — the remaining rows were not read.")
    if result.read_error:
        st.error("The file could not be read to the end.")
    if result.batches_failed:
        st.error(f"{result.batches_failed} batch(es) failed to save.")
    with st.expander("Details"):
        st.json(result.to_dict())


# ── Single order ───────────────────────────────────────────────────────────

def _run_single() -> None:
    st.markdown("### 📍 Price an order")
    c1, c2, c3 = st.columns(3)
    lon = c1.number_input("Longitude", min_value=-180.0, max_value=180.0, value=-73.75, format="%.6f")
    lat = c2.number_input("Latitude", min_value=-90.0, max_value=90.0, value=42.65, format="%.6f")
    subtotal = c3.number_input("Subtotal", min_value=0.0, value=100.0, step=1.0)
    d1, d2 = st.columns(2)
    day = d1.date_input("Date", value=datetime.now(timezone.utc).date())
    at = d2.time_input("Time (UTC)", value=time(12, 0))

    b1, b2 = st.columns([1, 6])
    quote = b1.button("Quote", type="primary")
    store = b2.button("Create order")
    if not (quote or store):
        st.info("Enter coordinates and a subtotal, then press **Quote** or **Create order**.")
        return

    service = _load_service()
    try:
        request = OrderRequest(
            longitude=lon,
            latitude=lat,
            subtotal=subtotal,
            timestamp=datetime.combine(day, at, tzinfo=timezone.utc),
        )
        order = service.create_order(request) if store else service.price_order(request)
    except (ValidationError, GeoTaxError) as exc:
        logger.exception("Single order failed")
        st.error(str(exc))
        return

    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Status", order.status.value.replace("_", " ").title())
    m2.metric("Tax", f"{order.tax_amount:.2f}")
    m3.metric("Rate", f"{order.composite_tax_rate:.3%}")
    m4.metric("Order ID", order.id or "—")
    if order.jurisdictions:
        st.caption(" · ".join(order.jurisdictions))
    st.json(order.to_dict())


# ── CSV import ─────────────────────────────────────────────────────────────

def _run_import() -> None:
    st.markdown("### 📂 Import orders")
    st.caption("CSV columns: id, longitude, latitude, timestamp, subtotal.")

    uploaded = st.file_uploader("Choose a .csv file", type=["csv"])
    if uploaded is None or not st.button("Run import", type="primary"):
        return

    service = _load_service()
    try:
        future = service.start_import(
            uploaded,
            uploaded.name,
            content_type=uploaded.type or "",
            size=uploaded.size,
        )
    except GeoTaxError as exc:
        st.error(str(exc))
        return

    with st.spinner(f"Importing {uploaded.name} …"):
        try:
            result = future.result()
        except Exception as exc:
            logger.exception("Import failed: %s", uploaded.name)
            st.error(f"Import failed: {exc}")
            return

    _render_import_result(uploaded.name, result)


# ── Orders browser ─────────────────────────────────────────────────────────

def _run_orders() -> None:
    st.markdown("### 📋 Stored orders")
    c1, c2, c3, c4 = st.columns(4)
    status = c1.selectbox("Status", ["any", "completed", "out_of_scope"])
    code = c2.text_input("Reporting code")
    sort_by = c3.selectbox("Sort by", ["created_at", "id", "total_amount", "status"])
    sort_order = c4.selectbox("Order", ["desc", "asc"])
    p1, p2 = st.columns(2)
    limit = p1.number_input("Page size", min_value=1, max_value=1000, value=50)
    offset = p2.number_input("Offset", min_value=0, value=0, step=int(limit))

    try:
        filters = OrderFilters(
            status=None if status == "any" else status,
            reporting_code=code.strip() or None,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=int(limit),
            offset=int(offset),
        )
        page = _load_service().list_orders(filters)
    except (ValidationError, GeoTaxError) as exc:
        st.error(str(exc))
        return

    st.metric("Matching orders", page.total)
    if not page.orders:
        st.info("No orders match these filters.")
        return

    df = _orders_to_df(page.orders)
    st.dataframe(df, use_container_width=True)
    st.download_button(
        "⬇ Download CSV",
        df.to_csv(index=False).encode(),
        file_name="orders.csv",
        mime="text/csv",
    )


# ── Main ───────────────────────────────────────────────────────────────────

def main() -> None:
    st.title("🧾 GeoTax")
    st.caption("Point-in-polygon sales-tax resolution with batched CSV order imports.")

    page = _render_sidebar()
    if page == "Single order":
        _run_single()
    elif page == "CSV import":
        _run_import()
    else:
        _run_orders()


if __name__ == "__main__":
    main()
