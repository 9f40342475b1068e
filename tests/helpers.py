"""Factories for cart items, product views and matcher features used across the tests."""

from matcher import build_cart_features, build_product_features
from models import CartItem, ProductIdentifiers, ProductView

STORE_ID = '15861'


def make_ids(stock_codes=(), extracted_ids=(), catalog_ids=()) -> ProductIdentifiers:
    return ProductIdentifiers(stock_codes=stock_codes, extracted_ids=extracted_ids, catalog_ids=catalog_ids)


def make_cart_item(title='Sport Cap - White', price=900, **kwargs) -> CartItem:
    kwargs.setdefault('store_id', STORE_ID)
    kwargs.setdefault('currency', 'USD')
    return CartItem(title=title, price=price, **kwargs)


def make_product(title='Sport Cap', price=900, **kwargs) -> ProductView:
    kwargs.setdefault('store_id', STORE_ID)
    kwargs.setdefault('currency', 'USD')
    return ProductView(title=title, price=price, **kwargs)


def cart_features(item: CartItem, extractor=None, threshold=0.8):
    return build_cart_features(item, extractor, threshold)


def product_features(product: ProductView, extractor=None):
    return build_product_features(product, extractor)


def without_timestamps(data):
    """Drop every enrichedAt key so two runs can be compared."""
    if isinstance(data, dict):
        return {k: without_timestamps(v) for k, v in data.items() if k != 'enrichedAt'}
    if isinstance(data, list):
        return [without_timestamps(v) for v in data]
    return data
