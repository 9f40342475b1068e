"""
Recorded browsing sessions: raw product-view and cart events as captured by
the apps and extensions, plus the matches a reviewer expects.

Each file under data/sessions/ is one JSON object:

    name, description, storeId, storeName
    expectedMatches   [{cartItemName, productSku, confidence, reason}]
    productViews      raw product-view events (amount strings, *_list fields)
    cartEvents        raw cart snapshots; the last one is the final cart

normalize_product_view / normalize_cart_product do what the upstream
normalizers do so the engine can be exercised on real data.
"""

import json
import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, NamedTuple, Optional

from identifiers import DEFAULT_EXTRACTOR
from models import CartItem, ProductIdentifiers, ProductView

logger = logging.getLogger(__name__)

SESSIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'data', 'sessions')


class ExpectedMatch(NamedTuple):
    cart_item_name: str
    product_sku: str
    confidence: str
    reason: str = ''


class Session(NamedTuple):
    name: str
    store_id: str
    store_name: str
    description: str
    cart: List[CartItem]
    products: List[ProductView]
    expected_matches: List[ExpectedMatch]


def _first(values: Optional[List]) -> Optional[str]:
    return values[0] if values else None


def parse_amount(amount) -> Optional[int]:
    """'17.98' → 1798. Empty or unparseable amounts become None."""
    if amount is None or amount == '':
        return None
    try:
        return int((Decimal(str(amount)) * 100).to_integral_value())
    except InvalidOperation:
        logger.debug("Ignoring unparseable amount %r", amount)
        return None


def parse_rating(ratings: Optional[List[str]]) -> Optional[float]:
    value = _first(ratings)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.debug("Ignoring unparseable rating %r", value)
        return None


def normalize_product_view(raw: Dict, extractor: Optional[Callable] = DEFAULT_EXTRACTOR) -> ProductView:
    """Turn one raw product-view event into a ProductView."""
    store_id = raw.get('store_id')
    url = raw.get('url')
    extracted = extractor(url, store_id) if extractor is not None and url else ()
    return ProductView(
        title=raw.get('name', ''),
        price=parse_amount(raw.get('amount')),
        url=url,
        image_url=_first(raw.get('image_url_list')),
        store_id=store_id,
        currency=raw.get('currency'),
        color=_first(raw.get('color_list')),
        description=raw.get('description'),
        rating=parse_rating(raw.get('rating')),
        identifiers=ProductIdentifiers(
            stock_codes=raw.get('sku_list') or (),
            extracted_ids=extracted,
            catalog_ids=raw.get('productid_list') or (),
        ),
    )


def normalize_cart_product(raw: Dict, store_id: Optional[str] = None,
                           currency: Optional[str] = None) -> CartItem:
    """Turn one product_list entry of a raw cart event into a CartItem (prices already in cents)."""
    return CartItem(
        title=raw.get('name', ''),
        price=raw.get('item_price'),
        quantity=raw.get('quantity', 1),
        line_total=raw.get('line_total'),
        url=raw.get('url'),
        image_url=raw.get('image_url'),
        store_id=store_id,
        currency=currency,
    )


def list_sessions(directory: str = SESSIONS_DIR) -> List[str]:
    """Paths of every recorded session, sorted by file name."""
    if not os.path.isdir(directory):
        return []
    return [
        os.path.join(directory, name)
        for name in sorted(os.listdir(directory))
        if name.endswith('.json')
    ]


def parse_session(data: Dict, extractor: Optional[Callable] = DEFAULT_EXTRACTOR) -> Session:
    store_id = data.get('storeId')
    cart_events = data.get('cartEvents') or []
    cart: List[CartItem] = []
    if cart_events:
        final = cart_events[-1]
        cart = [
            normalize_cart_product(p, final.get('store_id', store_id), final.get('currency'))
            for p in final.get('product_list') or []
        ]

    products = [normalize_product_view(raw, extractor) for raw in data.get('productViews') or []]
    expected = [
        ExpectedMatch(
            cart_item_name=m['cartItemName'],
            product_sku=m['productSku'],
            confidence=m['confidence'],
            reason=m.get('reason', ''),
        )
        for m in data.get('expectedMatches') or []
    ]
    return Session(
        name=data.get('name', ''),
        store_id=store_id,
        store_name=data.get('storeName', ''),
        description=data.get('description', ''),
        cart=cart,
        products=products,
        expected_matches=expected,
    )


def load_session(path: str, extractor: Optional[Callable] = DEFAULT_EXTRACTOR) -> Session:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    session = parse_session(data, extractor)
    logger.info(
        "Loaded session %s: %d cart item(s), %d product view(s)",
        session.name, len(session.cart), len(session.products),
    )
    return session
