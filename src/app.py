"""
Cart Enrichment Review: Streamlit UI

Pick a recorded session (or upload one as JSON), run the enrichment engine
over its cart and product views, and review which cart items were linked to
a viewed product, by which signal and at which confidence tier.

Run with:
    streamlit run src/app.py
"""

import io
import json
import os

import pandas as pd
import streamlit as st

from enrichment import (
    StoreMismatchError,
    enrich_cart,
    items_to_dataframe,
    summary_to_dataframe,
)
from models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    CONFIDENCE_NONE,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_TITLE_SIMILARITY_THRESHOLD,
    TIERS,
)
from sessions import list_sessions, load_session, parse_session

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Cart Enrichment Review",
    page_icon="🛒",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("🛒 Cart Enrichment Review")
st.markdown("**Link cart items to the product pages viewed in the same session**")

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.header("⚙️ Settings")

min_confidence = st.sidebar.selectbox(
    "Minimum confidence",
    options=list(TIERS),
    index=list(TIERS).index(DEFAULT_MIN_CONFIDENCE),
    help="Matches below this tier are reported as not viewed (their signals are still listed)",
)

title_threshold = st.sidebar.slider(
    "Title similarity threshold",
    min_value=0.5,
    max_value=1.0,
    value=DEFAULT_TITLE_SIMILARITY_THRESHOLD,
    step=0.05,
    help="Minimum fuzzy title score for the title signal",
)

validate = st.sidebar.checkbox("Validate output schema", value=True)

st.sidebar.divider()
st.sidebar.markdown("**Confidence Tiers:**")
st.sidebar.markdown("🟢 **HIGH**: stock code, variant stock code, image code")
st.sidebar.markdown("🟡 **MEDIUM**: URL, extracted id, title + color")
st.sidebar.markdown("🔴 **LOW**: fuzzy title (price only supports)")

CONFIDENCE_COLORS = {
    CONFIDENCE_HIGH: 'background-color: #d4edda; color: #155724',
    CONFIDENCE_MEDIUM: 'background-color: #fff3cd; color: #856404',
    CONFIDENCE_LOW: 'background-color: #cce5ff; color: #004085',
    CONFIDENCE_NONE: 'background-color: #f8d7da; color: #721c24',
}


def color_confidence(val):
    return CONFIDENCE_COLORS.get(val, '')


def expected_vs_actual(session, df_items: pd.DataFrame) -> pd.DataFrame:
    """One row per expected match with the confidence the engine actually reached."""
    rows = []
    for expected in session.expected_matches:
        hit = df_items[df_items['title'] == expected.cart_item_name]
        actual = hit.iloc[0]['match_confidence'] if len(hit) else 'missing'
        rows.append({
            'cart_item': expected.cart_item_name,
            'expected_sku': expected.product_sku,
            'expected_confidence': expected.confidence,
            'actual_confidence': actual,
            'method': hit.iloc[0]['match_method'] if len(hit) else '',
            'reason': expected.reason,
        })
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Session selection
# ---------------------------------------------------------------------------
st.subheader("📤 Choose a Session")

session_paths = list_sessions()
col_left, col_right = st.columns(2)
with col_left:
    picked = st.selectbox(
        "Recorded session",
        options=[''] + session_paths,
        format_func=lambda p: os.path.basename(p) if p else '(none)',
    )
with col_right:
    upload = st.file_uploader("...or upload a session (.json)", type=["json"], key="session_upload")

session = None
try:
    if upload is not None:
        session = parse_session(json.load(upload))
    elif picked:
        session = load_session(picked)
except (ValueError, KeyError) as e:
    st.error(f"Failed to read session: {e}")
    st.stop()

if session is None:
    st.info("Pick a recorded session or upload one to start.")
    st.stop()

st.markdown(
    f"**{session.name}** ({session.store_name or session.store_id}) · "
    f"{len(session.cart)} cart item(s) · {len(session.products)} product view(s)"
)
if session.description:
    st.caption(session.description)

# ---------------------------------------------------------------------------
# Run enrichment
# ---------------------------------------------------------------------------
st.divider()
if st.button("🚀 Enrich Cart", type="primary", use_container_width=True):
    progress = st.progress(0, text="Starting...")

    def progress_cb(current, total):
        progress.progress(current / total, text=f"Matching cart items... {current:,}/{total:,}")

    try:
        enriched = enrich_cart(
            session.cart,
            session.products,
            min_confidence=min_confidence,
            title_similarity_threshold=title_threshold,
            validate=validate,
            progress_callback=progress_cb,
        )
    except StoreMismatchError as e:
        st.error(str(e))
        st.stop()
    progress.progress(1.0, text="✅ Enrichment complete!")

    st.session_state['enrichment_results'] = {
        'session': session,
        'enriched': enriched,
    }

if 'enrichment_results' not in st.session_state:
    st.stop()

session = st.session_state['enrichment_results']['session']
enriched = st.session_state['enrichment_results']['enriched']
summary = enriched.summary
df_items = items_to_dataframe(enriched)
df_summary = summary_to_dataframe(enriched)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Cart Items", summary.total_items)
c2.metric("🟢 Viewed", summary.matched_items, f"{summary.match_rate:.1f}%")
c3.metric("🔴 Not Viewed", summary.unmatched_items)
c4.metric("Min Confidence", min_confidence.upper())

tab1, tab2, tab3 = st.tabs(["📊 Dashboard", "🧾 Items", "🎯 Expected vs Actual"])

with tab1:
    col_left, col_right = st.columns(2)
    with col_left:
        st.markdown("**By confidence**")
        st.bar_chart(pd.Series(summary.by_confidence, name='items'))
    with col_right:
        st.markdown("**By primary method**")
        st.bar_chart(pd.Series(summary.by_method, name='items'))
    st.dataframe(df_summary, use_container_width=True, hide_index=True)

with tab2:
    st.dataframe(
        df_items.style.map(color_confidence, subset=['match_confidence']),
        use_container_width=True, hide_index=True,
    )
    demoted = df_items[(~df_items['was_viewed']) & (df_items['matched_signals'] != '')]
    if len(demoted) > 0:
        with st.expander(f"View {len(demoted)} Not-Viewed Items With Signals"):
            st.dataframe(demoted, use_container_width=True, hide_index=True)
    with st.expander("Raw JSON"):
        st.json(enriched.to_dict())

with tab3:
    if session.expected_matches:
        df_expected = expected_vs_actual(session, df_items)
        st.dataframe(
            df_expected.style.map(color_confidence, subset=['actual_confidence']),
            use_container_width=True, hide_index=True,
        )
    else:
        st.info("This session has no expected matches recorded.")

# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------
output = io.BytesIO()
with pd.ExcelWriter(output, engine='openpyxl') as writer:
    df_items.to_excel(writer, sheet_name='Items', index=False)
    df_summary.to_excel(writer, sheet_name='Summary', index=False)
    if session.expected_matches:
        expected_vs_actual(session, df_items).to_excel(writer, sheet_name='Expected', index=False)
output.seek(0)

st.download_button(
    label="📥 Download Excel Report",
    data=output,
    file_name=f"{session.name or 'session'}_enrichment.xlsx",
    mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    use_container_width=True,
)
