"""
Full Diagnostic Match Report Generator

Runs the enrichment engine over ALL recorded sessions in data/sessions/ and
writes per-item diagnostics: the primary match, every collected signal, the
expected match recorded for the session and a gap status for each row.

Usage:
    python generate_diagnostic_report.py [min_confidence]

Inputs:
    - data/sessions/*.json  (recorded sessions with expectedMatches)

Outputs:
    - match_diagnostic_report_ALL.csv           (combined, sorted by problems-first)
    - match_diagnostic_report__<session>.csv     (per-session)
    - match_diagnostic_report_ALL.xlsx           (one tab per session)

Gap status:
    OK          expected match found at (or above) the expected tier
    WEAK        expected item matched, but below the expected tier
    MISSED      expected item not viewed at the chosen minimum confidence
    UNEXPECTED  item viewed although no match was expected for it
    NOT_VIEWED  no match expected and none found
"""

import sys, os
import logging
import time
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.join(_SCRIPT_DIR, '..')
sys.path.insert(0, os.path.join(_PROJECT_ROOT, 'src'))
OUTPUT_DIR = os.path.join(_PROJECT_ROOT, 'outputs')
os.makedirs(OUTPUT_DIR, exist_ok=True)

import pandas as pd
from rapidfuzz import fuzz, process

from enrichment import enrich_cart
from identifiers import DEFAULT_EXTRACTOR
from matcher import build_cart_features, build_product_features, match_cart_item
from models import CONFIDENCE_LOW, CONFIDENCE_ORDER
from sessions import list_sessions, load_session

GAP_OK = 'OK'
GAP_WEAK = 'WEAK'
GAP_MISSED = 'MISSED'
GAP_UNEXPECTED = 'UNEXPECTED'
GAP_NOT_VIEWED = 'NOT_VIEWED'


def get_top3_candidates(query, product_titles):
    """Get top 3 fuzzy title candidates for debugging unviewed items."""
    results = process.extract(
        query, product_titles,
        scorer=fuzz.token_sort_ratio,
        limit=3,
    )

    candidates = []
    for match_name, score, _ in results:
        candidates.append((match_name, round(score, 2)))

    # Pad to 3
    while len(candidates) < 3:
        candidates.append(('', 0.0))

    return candidates


def gap_status(item, expected):
    if expected is None:
        return GAP_UNEXPECTED if item.was_viewed else GAP_NOT_VIEWED
    if not item.was_viewed:
        return GAP_MISSED
    if CONFIDENCE_ORDER[item.match_confidence] < CONFIDENCE_ORDER[expected.confidence]:
        return GAP_WEAK
    return GAP_OK


def process_session(session, min_confidence):
    """Enrich one session and return its diagnostic rows."""
    enriched = enrich_cart(session.cart, session.products, min_confidence=min_confidence)
    expected_by_title = {m.cart_item_name: m for m in session.expected_matches}
    product_features = [build_product_features(p, DEFAULT_EXTRACTOR) for p in session.products]
    product_titles = list(dict.fromkeys(p.title for p in session.products))

    rows = []
    for cart_item, item in zip(session.cart, enriched.items):
        match = match_cart_item(build_cart_features(cart_item, DEFAULT_EXTRACTOR), product_features)
        expected = expected_by_title.get(cart_item.title)
        identifiers = item.identifiers.stock_codes | item.identifiers.extracted_ids
        candidates = get_top3_candidates(cart_item.title, product_titles)

        rows.append({
            'session': session.name,
            'cart_title': cart_item.title,
            'cart_price': cart_item.price,
            'was_viewed': item.was_viewed,
            'match_confidence': item.match_confidence,
            'match_method': item.match_method or '',
            'matched_signals': ', '.join(
                f"{s.method}{'' if s.exact else '~'}" for s in item.matched_signals
            ),
            'best_product_title': match.product.title if match.product else '',
            'best_confidence': match.confidence,
            'matched_variant': item.matched_variant.stock_code if item.matched_variant else '',
            'expected_sku': expected.product_sku if expected else '',
            'expected_confidence': expected.confidence if expected else '',
            'expected_sku_found': bool(expected) and expected.product_sku.lower() in identifiers,
            'gap_status': gap_status(item, expected),
            'top1_candidate': candidates[0][0],
            'top1_candidate_score': candidates[0][1],
            'top2_candidate': candidates[1][0],
            'top2_candidate_score': candidates[1][1],
            'top3_candidate': candidates[2][0],
            'top3_candidate_score': candidates[2][1],
        })

    print(f"    [{session.name}] {enriched.summary.matched_items}/{enriched.summary.total_items} "
          f"viewed ({enriched.summary.match_rate:.0f}%)")
    return rows


def print_summary(all_rows, per_session_rows):
    """Print summary statistics."""
    print("\n" + "=" * 70)
    print("DIAGNOSTIC REPORT SUMMARY")
    print("=" * 70)

    def summarize(rows, label):
        df = pd.DataFrame(rows)
        total = len(df)
        if total == 0:
            print(f"\n  {label}: 0 rows (empty)")
            return

        viewed = df['was_viewed'].sum()
        print(f"\n  {label} ({total} cart items):")
        print(f"    Viewed:          {viewed:>5} ({viewed/total*100:.1f}%)")
        for status in (GAP_OK, GAP_WEAK, GAP_MISSED, GAP_UNEXPECTED, GAP_NOT_VIEWED):
            count = (df['gap_status'] == status).sum()
            print(f"    {status + ':':<17}{count:>5} ({count/total*100:.1f}%)")
        methods = df[df['match_method'] != '']['match_method'].value_counts()
        for method, count in methods.items():
            print(f"    via {method}: {count}")

    summarize(all_rows, "OVERALL")
    for session_name, rows in per_session_rows.items():
        summarize(rows, session_name)


def main():
    start_time = time.time()
    min_confidence = sys.argv[1] if len(sys.argv) > 1 else CONFIDENCE_LOW

    session_paths = list_sessions()
    if not session_paths:
        print("ERROR: No sessions found to process!")
        return

    all_rows = []
    per_session_rows = {}

    print(f"Enriching {len(session_paths)} session(s) at min_confidence={min_confidence}...")
    for path in session_paths:
        session = load_session(path)
        rows = process_session(session, min_confidence)
        per_session_rows[session.name] = rows
        all_rows.extend(rows)

    # Sort combined file: problems first
    status_order = {
        GAP_MISSED: 0,
        GAP_WEAK: 1,
        GAP_UNEXPECTED: 2,
        GAP_NOT_VIEWED: 3,
        GAP_OK: 4,
    }
    all_df = pd.DataFrame(all_rows)
    all_df['_status_order'] = all_df['gap_status'].map(status_order).fillna(5)
    all_df = all_df.sort_values(
        by=['_status_order', 'session'],
    ).drop(columns=['_status_order']).reset_index(drop=True)

    combined_csv = os.path.join(OUTPUT_DIR, "match_diagnostic_report_ALL.csv")
    all_df.to_csv(combined_csv, index=False, encoding='utf-8-sig')
    print(f"\nWrote {combined_csv} ({len(all_df)} rows)")

    for session_name, rows in per_session_rows.items():
        csv_path = os.path.join(OUTPUT_DIR, f"match_diagnostic_report__{session_name}.csv")
        pd.DataFrame(rows).to_csv(csv_path, index=False, encoding='utf-8-sig')
        print(f"Wrote {csv_path} ({len(rows)} rows)")

    xlsx_path = os.path.join(OUTPUT_DIR, "match_diagnostic_report_ALL.xlsx")
    with pd.ExcelWriter(xlsx_path, engine='openpyxl') as writer:
        all_df.to_excel(writer, sheet_name='ALL_Combined', index=False)
        for session_name, rows in per_session_rows.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=session_name[:31], index=False)  # Excel tab name limit
    print(f"Wrote {xlsx_path}")

    print_summary(all_rows, per_session_rows)

    elapsed = time.time() - start_time
    print(f"\nDone in {elapsed:.1f}s")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    main()
