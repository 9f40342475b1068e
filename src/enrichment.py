"""
Cart enrichment: merge matched product data into cart items and summarize.

Field Precedence (fixed, never overridden per item):
    title, url, imageUrl                 cart, falling back to product
                                         (imageUrl: cart → matched variant → product)
    price, quantity, lineTotal           cart only
    currency                             cart → product → matched variant
    brand, description, category, rating product only
    identifiers                          union of both sides

Provenance:
    sources records "cart" or "product" for each populated field, and
    "merged" for identifiers when a product contributed to the union.

Output Guarantees:
    - One EnrichedCartItem per input cart item, in input order
    - summary.matched_items + summary.unmatched_items == summary.total_items
    - sum(summary.by_confidence.values()) == summary.total_items
    - No item is reported with match_method == "price"
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from identifiers import DEFAULT_EXTRACTOR
from matcher import (
    MatchResult,
    build_cart_features,
    build_product_features,
    match_cart_item,
    meets_threshold,
)
from models import (
    CONFIDENCE_LEVELS,
    CONFIDENCE_NONE,
    MATCH_METHODS,
    SOURCE_CART,
    SOURCE_MERGED,
    SOURCE_PRODUCT,
    CartItem,
    EnrichedCart,
    EnrichedCartItem,
    EnrichmentSummary,
    EnrichOptions,
    FieldSources,
    MatchedVariant,
    ProductView,
)

logger = logging.getLogger(__name__)


class StoreMismatchError(ValueError):
    """Cart and product views come from different stores."""


class EnrichmentValidationError(RuntimeError):
    """The constructed output failed schema re-validation (an internal defect)."""


# ---------------------------------------------------------------------------
# Field merge
# ---------------------------------------------------------------------------

def _prefer_cart(cart_value, product_value) -> Tuple[Optional[object], Optional[str]]:
    if cart_value:
        return cart_value, SOURCE_CART
    if product_value:
        return product_value, SOURCE_PRODUCT
    return None, None


def _product_only(product: Optional[ProductView], attr: str) -> Tuple[Optional[object], Optional[str]]:
    value = getattr(product, attr) if product is not None else None
    return (value, SOURCE_PRODUCT) if value is not None and value != '' else (None, None)


def merge_fields(
    cart: CartItem,
    match: MatchResult,
    min_confidence: str,
    enriched_at: str,
    cart_identifiers=None,
    product_identifiers=None,
) -> EnrichedCartItem:
    """
    Build the enriched item for one cart line.

    A match below min_confidence is demoted to the unmatched branch: no product
    field is merged, but its signals are still reported for diagnostics.
    """
    viewed = match.product is not None and meets_threshold(match.confidence, min_confidence)
    if match.product is not None and not viewed:
        logger.debug(
            "Demoted %r: %s match below minimum confidence %s",
            cart.title, match.confidence, min_confidence,
        )
    product = match.product if viewed else None
    variant = match.variant if viewed else None

    title, title_src = _prefer_cart(cart.title, product.title if product else None)
    url, url_src = _prefer_cart(cart.url, product.url if product else None)
    product_image = None
    if variant is not None and variant.image_url:
        product_image = variant.image_url
    elif product is not None:
        product_image = product.image_url
    image_url, image_src = _prefer_cart(cart.image_url, product_image)

    product_currency = None
    if product is not None:
        product_currency = product.currency or (variant.currency if variant else None)
    currency, currency_src = _prefer_cart(cart.currency, product_currency)

    brand, brand_src = _product_only(product, 'brand')
    description, description_src = _product_only(product, 'description')
    category, category_src = _product_only(product, 'category')
    rating, rating_src = _product_only(product, 'rating')

    identifiers = cart_identifiers if cart_identifiers is not None else cart.identifiers
    identifiers_src = SOURCE_CART
    if product is not None:
        identifiers = identifiers.union(
            product_identifiers if product_identifiers is not None else product.identifiers
        )
        identifiers_src = SOURCE_MERGED

    sources = FieldSources(
        title=title_src,
        url=url_src,
        image_url=image_src,
        price=SOURCE_CART if cart.price is not None else None,
        currency=currency_src,
        quantity=SOURCE_CART if cart.quantity is not None else None,
        line_total=SOURCE_CART if cart.line_total is not None else None,
        brand=brand_src,
        description=description_src,
        category=category_src,
        rating=rating_src,
        identifiers=identifiers_src,
    )

    return EnrichedCartItem(
        title=title,
        url=url,
        image_url=image_url,
        store_id=cart.store_id or (product.store_id if product else None),
        price=cart.price,
        currency=currency,
        brand=brand,
        description=description,
        category=category,
        rating=rating,
        quantity=cart.quantity,
        line_total=cart.line_total,
        identifiers=identifiers,
        was_viewed=viewed,
        match_confidence=match.confidence if viewed else CONFIDENCE_NONE,
        match_method=match.method if viewed else None,
        matched_signals=match.signals,
        sources=sources,
        enriched_at=enriched_at,
        matched_variant=MatchedVariant.from_variant(variant) if variant is not None else None,
    )


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def calculate_summary(items: Sequence[EnrichedCartItem]) -> EnrichmentSummary:
    """Counts over the primary method of each item, not over every collected signal."""
    total = len(items)
    matched = sum(1 for item in items if item.was_viewed)

    by_confidence = {level: 0 for level in CONFIDENCE_LEVELS}
    by_method = {method: 0 for method in MATCH_METHODS}
    for item in items:
        by_confidence[item.match_confidence] += 1
        if item.match_method:
            by_method[item.match_method] += 1

    return EnrichmentSummary(
        total_items=total,
        matched_items=matched,
        unmatched_items=total - matched,
        match_rate=matched / total * 100 if total else 0.0,
        by_confidence=by_confidence,
        by_method=by_method,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _resolve_options(options: Union[EnrichOptions, Mapping, None], overrides: Dict) -> EnrichOptions:
    if isinstance(options, EnrichOptions):
        resolved = options
    else:
        resolved = EnrichOptions.from_mapping(dict(options or {}))
    return resolved.updated(overrides)


def check_store_ids(cart: Sequence[CartItem], products: Sequence[ProductView]) -> Optional[str]:
    """Return the session store id; raise StoreMismatchError when the sides disagree."""
    cart_store = cart[0].store_id if cart else None
    product_store = products[0].store_id if products else None
    if cart_store and product_store and cart_store != product_store:
        raise StoreMismatchError(
            f'Store ID mismatch: cart storeId "{cart_store}" does not match product storeId "{product_store}"'
        )
    return cart_store or product_store


def enrich_cart(
    cart: Sequence[CartItem],
    products: Sequence[ProductView],
    options: Union[EnrichOptions, Mapping, None] = None,
    *,
    extractor: Optional[Callable] = DEFAULT_EXTRACTOR,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    **overrides,
) -> EnrichedCart:
    """
    Enrich every cart item with the product view it was linked to.

    Args:
        cart: normalized cart items (read-only)
        products: normalized product views from the same session (read-only)
        options: EnrichOptions, or a mapping with min_confidence /
            title_similarity_threshold / validate (camelCase accepted)
        extractor: URL → ids function used to materialize extracted ids for
            cart, product and variant URLs; None uses only normalizer ids
        progress_callback: optional callable(current, total) for UI progress
        **overrides: option overrides, e.g. min_confidence="medium"

    Returns:
        EnrichedCart with one item per cart item, in order, and its summary.

    Raises:
        StoreMismatchError: cart and products carry different store ids
        EnrichmentValidationError: validate=True and the output failed re-validation
        ValueError: invalid option values
    """
    opts = _resolve_options(options, overrides)
    cart = list(cart or [])
    products = list(products or [])
    store_id = check_store_ids(cart, products)

    enriched_at = datetime.now(timezone.utc).isoformat()
    product_features = [build_product_features(p, extractor) for p in products]

    items: List[EnrichedCartItem] = []
    total = len(cart)
    for i, item in enumerate(cart):
        features = build_cart_features(item, extractor, opts.title_similarity_threshold)
        match = match_cart_item(features, product_features)
        product_ids = None
        if match.product is not None:
            product_ids = next(
                (pf.identifiers for pf in product_features if pf.product is match.product), None
            )
        items.append(merge_fields(
            item, match, opts.min_confidence, enriched_at,
            cart_identifiers=features.identifiers,
            product_identifiers=product_ids,
        ))
        if progress_callback is not None:
            progress_callback(i + 1, total)

    summary = calculate_summary(items)
    logger.info(
        "Enriched %d cart item(s) against %d product view(s): %d matched (%.1f%%)",
        summary.total_items, len(products), summary.matched_items, summary.match_rate,
    )

    result = EnrichedCart(items=tuple(items), summary=summary, enriched_at=enriched_at, store_id=store_id)

    if opts.validate:
        from schemas import validate_enriched_cart

        validate_enriched_cart(result)

    return result


# ---------------------------------------------------------------------------
# Tabular export
# ---------------------------------------------------------------------------

def items_to_dataframe(enriched: EnrichedCart) -> pd.DataFrame:
    """One row per enriched item, flattened for review and Excel export."""
    rows = []
    for item in enriched.items:
        rows.append({
            'title': item.title,
            'url': item.url,
            'price': item.price,
            'currency': item.currency,
            'quantity': item.quantity,
            'line_total': item.line_total,
            'brand': item.brand,
            'category': item.category,
            'rating': item.rating,
            'was_viewed': item.was_viewed,
            'match_confidence': item.match_confidence,
            'match_method': item.match_method or '',
            'matched_signals': ', '.join(s.method for s in item.matched_signals),
            'matched_variant': item.matched_variant.stock_code if item.matched_variant else '',
            'stock_codes': ', '.join(sorted(item.identifiers.stock_codes)),
            'extracted_ids': ', '.join(sorted(item.identifiers.extracted_ids)),
        })
    columns = [
        'title', 'url', 'price', 'currency', 'quantity', 'line_total', 'brand', 'category',
        'rating', 'was_viewed', 'match_confidence', 'match_method', 'matched_signals',
        'matched_variant', 'stock_codes', 'extracted_ids',
    ]
    return pd.DataFrame(rows, columns=columns)


def summary_to_dataframe(enriched: EnrichedCart) -> pd.DataFrame:
    """Metric / Value table: totals, match rate, then per-tier and per-method counts."""
    summary = enriched.summary
    rows = [
        {'Metric': 'Total Items', 'Value': summary.total_items},
        {'Metric': 'Matched Items', 'Value': summary.matched_items},
        {'Metric': 'Unmatched Items', 'Value': summary.unmatched_items},
        {'Metric': 'Match Rate', 'Value': f"{summary.match_rate:.1f}%"},
    ]
    rows.extend({'Metric': f'Confidence: {k}', 'Value': v} for k, v in summary.by_confidence.items())
    rows.extend({'Metric': f'Method: {k}', 'Value': v} for k, v in summary.by_method.items())
    return pd.DataFrame(rows, columns=['Metric', 'Value'])
