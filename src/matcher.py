"""
Signal matcher chain for linking cart items to product views.

Matching Approach:
    - Every cart item is evaluated against every product view of the session
    - For each (cart item, product) pair the strategies in STRATEGIES run in
      priority order; each one is an independent predicate returning a
      StrategyMatch or None
    - Every method that fires for any product is collected once as a signal
    - The primary match is the first hit (products in input order, strategies
      in priority order) with the highest tier seen so far

Strategies and Tiers (fixed by METHOD_CONFIDENCE):
    1. stock_code          HIGH    cart stock codes ∩ product stock codes
    2. variant_stock_code  HIGH    cart stock codes ∩ variant stock codes
    3. image_code          HIGH    codes from the cart image filename ∩ product stock codes
    4. url                 MEDIUM  normalized cart URL == product or variant URL
    5. extracted_id        MEDIUM  cart URL-extracted ids ∩ product / variant extracted ids,
                                   or ∩ product / variant stock codes
    6. title_color         MEDIUM  cart title base == product title AND suffix in product colors
    7. title               LOW     fuzzy title similarity >= threshold
    8. price               LOW     cart price within ±10% of the product's observed prices
                                   (supporting only, never primary)

Early Exit:
    Once a HIGH primary is locked in no later hit can replace it, so already
    collected methods are skipped. Methods not yet collected are still
    evaluated on the remaining products: signal collection never short-circuits.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Tuple

from identifiers import extract_codes_from_image_url, extract_ids_from_urls, normalize_url
from models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_NONE,
    CONFIDENCE_ORDER,
    DEFAULT_TITLE_SIMILARITY_THRESHOLD,
    MATCH_METHODS,
    METHOD_CONFIDENCE,
    METHOD_EXTRACTED_ID,
    METHOD_IMAGE_CODE,
    METHOD_PRICE,
    METHOD_STOCK_CODE,
    METHOD_TITLE,
    METHOD_TITLE_COLOR,
    METHOD_URL,
    METHOD_VARIANT_STOCK_CODE,
    SUPPORTING_METHODS,
    CartItem,
    MatchedSignal,
    ProductIdentifiers,
    ProductVariant,
    ProductView,
)
from text_matching import ParsedTitle, calculate_title_similarity, normalize_for_comparison, parse_cart_title

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
PRICE_TOLERANCE = 0.10  # tax, discounts and rounding between page and cart


# ---------------------------------------------------------------------------
# Precomputed features
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CartFeatures:
    """Everything the strategies need from a cart item, computed once per item."""
    item: CartItem
    identifiers: ProductIdentifiers
    image_codes: FrozenSet[str]
    url: str
    title: ParsedTitle
    title_threshold: float


@dataclass(frozen=True)
class ProductFeatures:
    """A product view with URL-extracted ids materialized for it and each variant."""
    product: ProductView
    identifiers: ProductIdentifiers
    variant_extracted_ids: Tuple[FrozenSet[str], ...]


def build_cart_features(
    item: CartItem,
    extractor: Optional[Callable] = None,
    title_threshold: float = DEFAULT_TITLE_SIMILARITY_THRESHOLD,
) -> CartFeatures:
    identifiers = item.identifiers
    if extractor is not None and item.url:
        identifiers = identifiers.with_extracted_ids(
            extract_ids_from_urls(extractor, [item.url], item.store_id)
        )
    return CartFeatures(
        item=item,
        identifiers=identifiers,
        image_codes=frozenset(extract_codes_from_image_url(item.image_url)),
        url=normalize_url(item.url),
        title=parse_cart_title(item.title),
        title_threshold=title_threshold,
    )


def build_product_features(product: ProductView, extractor: Optional[Callable] = None) -> ProductFeatures:
    identifiers = product.identifiers
    variant_ids: Tuple[FrozenSet[str], ...] = tuple(frozenset() for _ in product.variants)
    if extractor is not None:
        if product.url:
            identifiers = identifiers.with_extracted_ids(
                extract_ids_from_urls(extractor, [product.url], product.store_id)
            )
        variant_ids = tuple(
            extract_ids_from_urls(extractor, [v.url], product.store_id) for v in product.variants
        )
    return ProductFeatures(product=product, identifiers=identifiers, variant_extracted_ids=variant_ids)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class StrategyMatch(NamedTuple):
    signal: MatchedSignal
    variant: Optional[ProductVariant] = None


class Strategy(NamedTuple):
    method: str
    predicate: Callable[[CartFeatures, ProductFeatures], Optional[StrategyMatch]]


def _hit(method: str, exact: bool = True, variant: Optional[ProductVariant] = None) -> StrategyMatch:
    return StrategyMatch(MatchedSignal(method, METHOD_CONFIDENCE[method], exact), variant)


def match_stock_code(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    if cart.identifiers.stock_codes & product.identifiers.stock_codes:
        return _hit(METHOD_STOCK_CODE)
    return None


def match_variant_stock_code(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    codes = cart.identifiers.stock_codes
    if not codes:
        return None
    for variant in product.product.variants:
        if variant.stock_code in codes:
            return _hit(METHOD_VARIANT_STOCK_CODE, variant=variant)
    return None


def match_image_code(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    if cart.image_codes & product.identifiers.stock_codes:
        return _hit(METHOD_IMAGE_CODE)
    return None


def match_url(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    if not cart.url:
        return None
    if normalize_url(product.product.url) == cart.url:
        return _hit(METHOD_URL)
    for variant in product.product.variants:
        if normalize_url(variant.url) == cart.url:
            return _hit(METHOD_URL, variant=variant)
    return None


def match_extracted_id(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    """
    Cart URL ids against the product's URL ids, then against its stock codes.

    A product page often lists the SKUs of every variant while its URL names
    only the variant that was viewed, so a cart id such as ?pid=...004 can
    match a page viewed as ?pid=...003 through the stock code list.
    """
    cart_ids = cart.identifiers.extracted_ids
    if not cart_ids:
        return None
    if cart_ids & product.identifiers.extracted_ids:
        return _hit(METHOD_EXTRACTED_ID)
    if cart_ids & product.identifiers.stock_codes:
        return _hit(METHOD_EXTRACTED_ID)
    for variant, variant_ids in zip(product.product.variants, product.variant_extracted_ids):
        if variant.stock_code in cart_ids or cart_ids & variant_ids:
            return _hit(METHOD_EXTRACTED_ID, variant=variant)
    return None


def match_title_color(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    base, color = cart.title
    if not base or not color:
        return None
    if normalize_for_comparison(product.product.title) != normalize_for_comparison(base):
        return None

    wanted = normalize_for_comparison(color)
    if product.product.color and normalize_for_comparison(product.product.color) == wanted:
        return _hit(METHOD_TITLE_COLOR)
    for variant in product.product.variants:
        if variant.color and normalize_for_comparison(variant.color) == wanted:
            return _hit(METHOD_TITLE_COLOR, variant=variant)
    return None


def match_title(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    if not cart.item.title:
        return None
    similarity = calculate_title_similarity(cart.item.title, product.product.title)
    if similarity >= cart.title_threshold:
        return _hit(METHOD_TITLE, exact=False)
    return None


def observed_prices(product: ProductView) -> List[int]:
    """Positive prices seen for a product: page price first, then variant prices."""
    prices = [product.price] if product.price else []
    prices.extend(v.price for v in product.variants if v.price)
    return [p for p in prices if p > 0]


def match_price(cart: CartFeatures, product: ProductFeatures) -> Optional[StrategyMatch]:
    price = cart.item.price
    if not price or price <= 0:
        return None
    cart_currency = cart.item.currency
    product_currency = product.product.currency
    if cart_currency and product_currency and cart_currency.upper() != product_currency.upper():
        return None

    prices = observed_prices(product.product)
    if not prices:
        return None
    low = min(prices) * (1 - PRICE_TOLERANCE)
    high = max(prices) * (1 + PRICE_TOLERANCE)
    if low <= price <= high:
        return _hit(METHOD_PRICE, exact=price in prices)
    return None


# Priority order. Adding a strategy means adding a row here and a tier in
# models.METHOD_CONFIDENCE.
STRATEGIES: Sequence[Strategy] = (
    Strategy(METHOD_STOCK_CODE, match_stock_code),
    Strategy(METHOD_VARIANT_STOCK_CODE, match_variant_stock_code),
    Strategy(METHOD_IMAGE_CODE, match_image_code),
    Strategy(METHOD_URL, match_url),
    Strategy(METHOD_EXTRACTED_ID, match_extracted_id),
    Strategy(METHOD_TITLE_COLOR, match_title_color),
    Strategy(METHOD_TITLE, match_title),
    Strategy(METHOD_PRICE, match_price),
)


# ---------------------------------------------------------------------------
# Confidence resolution
# ---------------------------------------------------------------------------

def meets_threshold(confidence: str, min_confidence: str) -> bool:
    return CONFIDENCE_ORDER[confidence] >= CONFIDENCE_ORDER[min_confidence]


class MatchResult(NamedTuple):
    product: Optional[ProductView]
    variant: Optional[ProductVariant]
    confidence: str
    method: Optional[str]
    signals: Tuple[MatchedSignal, ...]


NO_MATCH = MatchResult(product=None, variant=None, confidence=CONFIDENCE_NONE, method=None, signals=())

_METHOD_POSITION: Dict[str, int] = {m: i for i, m in enumerate(MATCH_METHODS)}
_HIGH_RANK = CONFIDENCE_ORDER[CONFIDENCE_HIGH]


def match_cart_item(
    cart: CartFeatures,
    products: Sequence[ProductFeatures],
    strategies: Sequence[Strategy] = STRATEGIES,
) -> MatchResult:
    """
    Fold the strategy chain over every product for one cart item.

    Returns the primary match (product, variant, tier, method) and every
    collected signal, ordered by strategy priority.
    """
    collected: Dict[str, MatchedSignal] = {}
    primary: Optional[Tuple[StrategyMatch, ProductFeatures]] = None
    best_rank = 0

    for product in products:
        if best_rank == _HIGH_RANK and len(collected) == len(strategies):
            break
        for strategy in strategies:
            rank = CONFIDENCE_ORDER[METHOD_CONFIDENCE[strategy.method]]
            can_promote = (
                strategy.method not in SUPPORTING_METHODS
                and best_rank < _HIGH_RANK
                and rank > best_rank
            )
            if strategy.method in collected and not can_promote:
                continue

            match = strategy.predicate(cart, product)
            if match is None:
                continue

            collected.setdefault(strategy.method, match.signal)
            if can_promote:
                primary = (match, product)
                best_rank = rank

    if primary is None:
        if collected:
            logger.debug("Only supporting signals for %r: %s", cart.item.title, sorted(collected))
        return NO_MATCH._replace(signals=_ordered(collected))

    match, product = primary
    logger.debug(
        "Matched %r → %r via %s (%s), %d signal(s)",
        cart.item.title, product.product.title, match.signal.method,
        match.signal.confidence, len(collected),
    )
    return MatchResult(
        product=product.product,
        variant=match.variant,
        confidence=match.signal.confidence,
        method=match.signal.method,
        signals=_ordered(collected),
    )


def _ordered(collected: Dict[str, MatchedSignal]) -> Tuple[MatchedSignal, ...]:
    return tuple(sorted(collected.values(), key=lambda s: _METHOD_POSITION.get(s.method, len(_METHOD_POSITION))))
