"""
Data model for cart enrichment.

All inputs are built once by the upstream normalizers and never mutated; every
structure the engine returns is created fresh per call. Identifier sets are
stored lower-cased so that cart and product sides compare directly.

Serialization:
    Every output type has a to_dict() producing the camelCase wire shape
    (wasViewed, matchConfidence, matchedSignals, ...). Sets are emitted as
    sorted lists so identical inputs serialize identically.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Confidence tiers and match methods
# ---------------------------------------------------------------------------
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
CONFIDENCE_NONE = "none"

TIERS = (CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, CONFIDENCE_LOW)
CONFIDENCE_LEVELS = TIERS + (CONFIDENCE_NONE,)

# Numeric ordering used for every tier comparison
CONFIDENCE_ORDER: Dict[str, int] = {
    CONFIDENCE_HIGH: 3,
    CONFIDENCE_MEDIUM: 2,
    CONFIDENCE_LOW: 1,
    CONFIDENCE_NONE: 0,
}

METHOD_STOCK_CODE = "stock_code"
METHOD_VARIANT_STOCK_CODE = "variant_stock_code"
METHOD_IMAGE_CODE = "image_code"
METHOD_URL = "url"
METHOD_EXTRACTED_ID = "extracted_id"
METHOD_TITLE_COLOR = "title_color"
METHOD_TITLE = "title"
METHOD_PRICE = "price"

# Priority order of the matcher chain
MATCH_METHODS = (
    METHOD_STOCK_CODE,
    METHOD_VARIANT_STOCK_CODE,
    METHOD_IMAGE_CODE,
    METHOD_URL,
    METHOD_EXTRACTED_ID,
    METHOD_TITLE_COLOR,
    METHOD_TITLE,
    METHOD_PRICE,
)

# Static method -> tier table. A signal's confidence is always looked up here.
METHOD_CONFIDENCE: Dict[str, str] = {
    METHOD_STOCK_CODE: CONFIDENCE_HIGH,
    METHOD_VARIANT_STOCK_CODE: CONFIDENCE_HIGH,
    METHOD_IMAGE_CODE: CONFIDENCE_HIGH,
    METHOD_URL: CONFIDENCE_MEDIUM,
    METHOD_EXTRACTED_ID: CONFIDENCE_MEDIUM,
    METHOD_TITLE_COLOR: CONFIDENCE_MEDIUM,
    METHOD_TITLE: CONFIDENCE_LOW,
    METHOD_PRICE: CONFIDENCE_LOW,
}

# Supporting-only methods are collected as signals but never reported as primary
SUPPORTING_METHODS = frozenset({METHOD_PRICE})

SOURCE_CART = "cart"
SOURCE_PRODUCT = "product"
SOURCE_MERGED = "merged"

DEFAULT_MIN_CONFIDENCE = CONFIDENCE_HIGH
DEFAULT_TITLE_SIMILARITY_THRESHOLD = 0.8


def _normalize_codes(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v.strip().lower() for v in values if v and v.strip())


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductIdentifiers:
    """Stock codes, URL-extracted ids and catalog ids, each a lower-cased set."""
    stock_codes: FrozenSet[str] = frozenset()
    extracted_ids: FrozenSet[str] = frozenset()
    catalog_ids: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'stock_codes', _normalize_codes(self.stock_codes))
        object.__setattr__(self, 'extracted_ids', _normalize_codes(self.extracted_ids))
        object.__setattr__(self, 'catalog_ids', _normalize_codes(self.catalog_ids))

    def union(self, other: Optional['ProductIdentifiers']) -> 'ProductIdentifiers':
        if other is None:
            return self
        return ProductIdentifiers(
            stock_codes=self.stock_codes | other.stock_codes,
            extracted_ids=self.extracted_ids | other.extracted_ids,
            catalog_ids=self.catalog_ids | other.catalog_ids,
        )

    def with_extracted_ids(self, ids: Iterable[str]) -> 'ProductIdentifiers':
        extra = _normalize_codes(ids)
        if extra <= self.extracted_ids:
            return self
        return ProductIdentifiers(
            stock_codes=self.stock_codes,
            extracted_ids=self.extracted_ids | extra,
            catalog_ids=self.catalog_ids,
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'stockCodes': sorted(self.stock_codes),
            'extractedIds': sorted(self.extracted_ids),
            'catalogIds': sorted(self.catalog_ids),
        }


@dataclass(frozen=True)
class CartItem:
    """One line of a normalized cart event. Prices are integer minor units."""
    title: str
    price: int
    quantity: int = 1
    line_total: Optional[int] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    store_id: Optional[str] = None
    currency: Optional[str] = None
    identifiers: ProductIdentifiers = field(default_factory=ProductIdentifiers)


@dataclass(frozen=True)
class ProductVariant:
    """A variant-level identifier seen on a product page (size/color SKU)."""
    stock_code: str
    url: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[int] = None
    currency: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'stock_code', self.stock_code.strip().lower())


@dataclass(frozen=True)
class ProductView:
    """One normalized product-detail-page visit."""
    title: str
    price: Optional[int] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    store_id: Optional[str] = None
    currency: Optional[str] = None
    color: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    identifiers: ProductIdentifiers = field(default_factory=ProductIdentifiers)
    variants: Tuple[ProductVariant, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'variants', tuple(self.variants))


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnrichOptions:
    min_confidence: str = DEFAULT_MIN_CONFIDENCE
    title_similarity_threshold: float = DEFAULT_TITLE_SIMILARITY_THRESHOLD
    validate: bool = False

    def __post_init__(self):
        if self.min_confidence not in TIERS:
            raise ValueError(
                f"min_confidence must be one of {', '.join(TIERS)}, got {self.min_confidence!r}"
            )
        threshold = self.title_similarity_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            raise ValueError(
                f"title_similarity_threshold must be a number in [0, 1], got {threshold!r}"
            )

    @classmethod
    def from_mapping(cls, values: Optional[Dict]) -> 'EnrichOptions':
        """Build options from snake_case or camelCase keys; unknown keys are rejected."""
        return cls().updated(values)

    def updated(self, values: Optional[Dict]) -> 'EnrichOptions':
        if not values:
            return self
        kwargs = {}
        for key, value in values.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in _OPTION_NAMES:
                raise ValueError(f"Unknown enrichment option: {key!r}")
            kwargs[name] = value
        return replace(self, **kwargs)


_OPTION_ALIASES = {
    'minConfidence': 'min_confidence',
    'titleSimilarityThreshold': 'title_similarity_threshold',
}
_OPTION_NAMES = ('min_confidence', 'title_similarity_threshold', 'validate')


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchedSignal:
    method: str
    confidence: str
    exact: bool

    def to_dict(self) -> Dict:
        return {'method': self.method, 'confidence': self.confidence, 'exact': self.exact}


@dataclass(frozen=True)
class MatchedVariant:
    stock_code: str
    url: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[int] = None
    currency: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_variant(cls, variant: ProductVariant) -> 'MatchedVariant':
        return cls(
            stock_code=variant.stock_code,
            url=variant.url,
            image_url=variant.image_url,
            price=variant.price,
            currency=variant.currency,
            color=variant.color,
        )

    def to_dict(self) -> Dict:
        return _drop_none({
            'stockCode': self.stock_code,
            'url': self.url,
            'imageUrl': self.image_url,
            'price': self.price,
            'currency': self.currency,
            'color': self.color,
        })


@dataclass(frozen=True)
class FieldSources:
    """Per-field provenance; None means the field is absent from the output."""
    title: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[str] = None
    currency: Optional[str] = None
    quantity: Optional[str] = None
    line_total: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[str] = None
    identifiers: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return _drop_none({
            'title': self.title,
            'url': self.url,
            'imageUrl': self.image_url,
            'price': self.price,
            'currency': self.currency,
            'quantity': self.quantity,
            'lineTotal': self.line_total,
            'brand': self.brand,
            'description': self.description,
            'category': self.category,
            'rating': self.rating,
            'identifiers': self.identifiers,
        })


@dataclass(frozen=True)
class EnrichedCartItem:
    """
    A cart line merged with its matched product view.

    was_viewed is the discriminant: when False, match_confidence is 'none',
    match_method is None and no product field is populated. matched_signals is
    kept either way so demoted matches stay diagnosable.
    """
    title: Optional[str]
    url: Optional[str]
    image_url: Optional[str]
    store_id: Optional[str]
    price: Optional[int]
    currency: Optional[str]
    brand: Optional[str]
    description: Optional[str]
    category: Optional[str]
    rating: Optional[float]
    quantity: Optional[int]
    line_total: Optional[int]
    identifiers: ProductIdentifiers
    was_viewed: bool
    match_confidence: str
    match_method: Optional[str]
    matched_signals: Tuple[MatchedSignal, ...]
    sources: FieldSources
    enriched_at: str
    matched_variant: Optional[MatchedVariant] = None
    in_cart: bool = True

    def to_dict(self) -> Dict:
        data = _drop_none({
            'title': self.title,
            'url': self.url,
            'imageUrl': self.image_url,
            'storeId': self.store_id,
            'price': self.price,
            'currency': self.currency,
            'brand': self.brand,
            'description': self.description,
            'category': self.category,
            'rating': self.rating,
            'quantity': self.quantity,
            'lineTotal': self.line_total,
        })
        data.update({
            'identifiers': self.identifiers.to_dict(),
            'inCart': self.in_cart,
            'wasViewed': self.was_viewed,
            'matchConfidence': self.match_confidence,
            'matchMethod': self.match_method,
            'matchedSignals': [s.to_dict() for s in self.matched_signals],
            'sources': self.sources.to_dict(),
            'enrichedAt': self.enriched_at,
        })
        if self.matched_variant is not None:
            data['matchedVariant'] = self.matched_variant.to_dict()
        return data


@dataclass(frozen=True)
class EnrichmentSummary:
    total_items: int
    matched_items: int
    unmatched_items: int
    match_rate: float
    by_confidence: Dict[str, int]
    by_method: Dict[str, int]

    def to_dict(self) -> Dict:
        return {
            'totalItems': self.total_items,
            'matchedItems': self.matched_items,
            'unmatchedItems': self.unmatched_items,
            'matchRate': self.match_rate,
            'byConfidence': dict(self.by_confidence),
            'byMethod': dict(self.by_method),
        }


@dataclass(frozen=True)
class EnrichedCart:
    items: Tuple[EnrichedCartItem, ...]
    summary: EnrichmentSummary
    enriched_at: str
    store_id: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            'items': [item.to_dict() for item in self.items],
            'summary': self.summary.to_dict(),
            'enrichedAt': self.enriched_at,
        }
        if self.store_id is not None:
            data['storeId'] = self.store_id
        return data


def _drop_none(values: Dict) -> Dict:
    return {k: v for k, v in values.items() if v is not None}
