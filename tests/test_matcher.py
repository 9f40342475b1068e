"""
Tests for the signal matcher chain:
- Every strategy in isolation (hit, miss, variant resolution, exactness)
- Primary selection: highest tier, first encountered, price never primary
- Signal collection across products and early-exit behaviour
"""
import pytest

from helpers import cart_features, make_cart_item, make_ids, make_product, product_features
from identifiers import DEFAULT_EXTRACTOR
from matcher import (
    STRATEGIES,
    Strategy,
    StrategyMatch,
    match_cart_item,
    match_extracted_id,
    match_image_code,
    match_price,
    match_stock_code,
    match_title,
    match_title_color,
    match_url,
    match_variant_stock_code,
    meets_threshold,
    observed_prices,
)
from models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    CONFIDENCE_NONE,
    MATCH_METHODS,
    METHOD_CONFIDENCE,
    METHOD_STOCK_CODE,
    METHOD_TITLE,
    METHOD_URL,
    MatchedSignal,
    ProductVariant,
)

CAP_IMAGE = "https://cdn.shopify.com/s/files/1/0156/6146/files/SportCapGSWhiteI3A6W-WB5795051_64x64.jpg"


def _pair(item, product, extractor=None, threshold=0.8):
    return cart_features(item, extractor, threshold), product_features(product, extractor)


# ---------------------------------------------------------------------------
# Strategies in isolation
# ---------------------------------------------------------------------------

def test_strategy_table_follows_priority_order():
    assert tuple(s.method for s in STRATEGIES) == MATCH_METHODS


def test_stock_code_is_case_insensitive():
    cart, product = _pair(
        make_cart_item(identifiers=make_ids(stock_codes=["ABC1"])),
        make_product(identifiers=make_ids(stock_codes=["abc1"])),
    )
    hit = match_stock_code(cart, product)
    assert hit.signal == MatchedSignal("stock_code", CONFIDENCE_HIGH, True)
    assert hit.variant is None


def test_stock_code_miss():
    cart, product = _pair(
        make_cart_item(identifiers=make_ids(stock_codes=["abc1"])),
        make_product(identifiers=make_ids(stock_codes=["abc2"])),
    )
    assert match_stock_code(cart, product) is None


def test_variant_stock_code_reports_variant():
    product = make_product(variants=(ProductVariant("SKU-1"), ProductVariant("SKU-2", color="Navy")))
    cart, pf = _pair(make_cart_item(identifiers=make_ids(stock_codes=["sku-2"])), product)
    hit = match_variant_stock_code(cart, pf)
    assert hit.signal.method == "variant_stock_code"
    assert hit.signal.confidence == CONFIDENCE_HIGH
    assert hit.variant.stock_code == "sku-2"


def test_variant_stock_code_without_cart_codes():
    cart, pf = _pair(make_cart_item(), make_product(variants=(ProductVariant("SKU-1"),)))
    assert match_variant_stock_code(cart, pf) is None


def test_image_code():
    cart, product = _pair(
        make_cart_item(image_url=CAP_IMAGE),
        make_product(identifiers=make_ids(stock_codes=["I3A6W"])),
    )
    assert match_image_code(cart, product).signal == MatchedSignal("image_code", CONFIDENCE_HIGH, True)


def test_image_code_miss_without_image():
    cart, product = _pair(make_cart_item(), make_product(identifiers=make_ids(stock_codes=["I3A6W"])))
    assert match_image_code(cart, product) is None


def test_url_match_is_normalized():
    cart, product = _pair(
        make_cart_item(url="https://shop.com/Item/1/"),
        make_product(url="HTTPS://shop.com/item/1"),
    )
    hit = match_url(cart, product)
    assert hit.signal == MatchedSignal("url", CONFIDENCE_MEDIUM, True)
    assert hit.variant is None


def test_url_match_on_variant_url():
    variant = ProductVariant("v2", url="https://shop.com/item/1?color=navy")
    cart, product = _pair(
        make_cart_item(url="https://shop.com/item/1?color=navy"),
        make_product(url="https://shop.com/item/1", variants=(variant,)),
    )
    assert match_url(cart, product).variant == variant


def test_url_miss_without_cart_url():
    cart, product = _pair(make_cart_item(), make_product(url="https://shop.com/item/1"))
    assert match_url(cart, product) is None


def test_extracted_id_from_normalized_ids():
    cart, product = _pair(
        make_cart_item(identifiers=make_ids(extracted_ids=["16675013342"])),
        make_product(identifiers=make_ids(extracted_ids=["16675013342"])),
    )
    assert match_extracted_id(cart, product).signal == MatchedSignal("extracted_id", CONFIDENCE_MEDIUM, True)


def test_extracted_id_from_urls():
    cart, product = _pair(
        make_cart_item(url="https://www.samsclub.com/ip/seort/16675013342", store_id="10086"),
        make_product(url="https://www.samsclub.com/ip/champion-boys-logo-jogger/16675013342", store_id="10086"),
        extractor=DEFAULT_EXTRACTOR,
    )
    assert match_extracted_id(cart, product) is not None


def test_extracted_id_from_variant_url():
    variant = ProductVariant("v2", url="https://www.samsclub.com/ip/champion-boys-logo-jogger/16675013343")
    cart, product = _pair(
        make_cart_item(url="https://www.samsclub.com/ip/seort/16675013343", store_id="10086"),
        make_product(
            url="https://www.samsclub.com/ip/champion-boys-logo-jogger/16675013342",
            store_id="10086",
            variants=(variant,),
        ),
        extractor=DEFAULT_EXTRACTOR,
    )
    assert match_extracted_id(cart, product).variant == variant


KOHLS_CART_URL = "https://www.kohls.com/product/prd-5555555/x.jsp?skuId=7873200220004"


def test_extracted_id_against_product_stock_codes():
    cart, product = _pair(
        make_cart_item(url=KOHLS_CART_URL, store_id="7206"),
        make_product(store_id="7206", identifiers=make_ids(stock_codes=["7873200220004"])),
        extractor=DEFAULT_EXTRACTOR,
    )
    match = match_extracted_id(cart, product)
    assert match.signal == MatchedSignal("extracted_id", CONFIDENCE_MEDIUM, True)
    assert match.variant is None


def test_extracted_id_against_variant_stock_code():
    variant = ProductVariant("7873200220004")
    cart, product = _pair(
        make_cart_item(url=KOHLS_CART_URL, store_id="7206"),
        make_product(store_id="7206", variants=(ProductVariant("7873200220001"), variant)),
        extractor=DEFAULT_EXTRACTOR,
    )
    assert match_extracted_id(cart, product).variant == variant


def test_cart_id_listed_as_sibling_sku_is_a_medium_match():
    product = make_product(
        "Shawl-Collar Pullover Sweater for Boys", price=3499, store_id="5216",
        url="https://oldnavy.gap.com/browse/product.do?pid=7873200220003",
        identifiers=make_ids(stock_codes=["7873200220001", "7873200220004"]),
    )
    item = make_cart_item(
        "Shawl-Collar Pullover Sweater for Boys", price=3499, store_id="5216",
        url="https://oldnavy.gap.com/browse/product.do?pid=7873200220004",
    )
    cart, products = _features(item, [product], extractor=DEFAULT_EXTRACTOR)

    result = match_cart_item(cart, products)
    assert result.product is product
    assert result.method == "extracted_id"
    assert result.confidence == CONFIDENCE_MEDIUM


def test_extracted_id_miss_when_cart_has_no_ids():
    cart, product = _pair(make_cart_item(), make_product(identifiers=make_ids(extracted_ids=["123456"])))
    assert match_extracted_id(cart, product) is None


def test_title_color_on_product_color():
    cart, product = _pair(make_cart_item("Sport Cap - White"), make_product("sport cap", color="white"))
    assert match_title_color(cart, product).signal == MatchedSignal("title_color", CONFIDENCE_MEDIUM, True)


def test_title_color_on_variant_color():
    variant = ProductVariant("v-white", color="White")
    cart, product = _pair(
        make_cart_item("Sport Cap - White"),
        make_product("Sport Cap", color="Black", variants=(ProductVariant("v-black", color="Black"), variant)),
    )
    assert match_title_color(cart, product).variant == variant


def test_title_color_colon_dash_format():
    cart, product = _pair(
        make_cart_item("Champion Boys Logo Jogger Grey M:- Grey, M"),
        make_product("Champion Boys Logo Jogger", color="Grey"),
    )
    assert match_title_color(cart, product) is not None


@pytest.mark.parametrize("cart_title, product_title, color", [
    ("Sport Cap - White", "Sport Cap", "Black"),
    ("Sport Cap - White", "Sport Cap Pro", "White"),
    ("Sport Cap", "Sport Cap", "White"),
    ("Sport Cap - White", "Sport Cap", None),
])
def test_title_color_misses(cart_title, product_title, color):
    cart, product = _pair(make_cart_item(cart_title), make_product(product_title, color=color))
    assert match_title_color(cart, product) is None


def test_title_is_never_exact():
    cart, product = _pair(make_cart_item("Sport Cap - White"), make_product("Sport Cap"))
    assert match_title(cart, product).signal == MatchedSignal("title", CONFIDENCE_LOW, False)


def test_title_respects_threshold():
    cart, product = _pair(make_cart_item("Sport Cap - White"), make_product("Sport Cap"), threshold=1.0)
    assert match_title(cart, product) is None


def test_title_miss_on_unrelated_titles():
    cart, product = _pair(make_cart_item("Sport Cap"), make_product("Popcorners Variety Pack"))
    assert match_title(cart, product) is None


def test_observed_prices_include_variants():
    product = make_product(price=1800, variants=(ProductVariant("a", price=2000), ProductVariant("b")))
    assert observed_prices(product) == [1800, 2000]


@pytest.mark.parametrize("cart_price, product_price, variant_prices, expected", [
    (1800, 1800, (), MatchedSignal("price", CONFIDENCE_LOW, True)),
    (1900, 1800, (), MatchedSignal("price", CONFIDENCE_LOW, False)),
    (1630, 1800, (), MatchedSignal("price", CONFIDENCE_LOW, False)),
    (2100, 1800, (), None),
    (1500, None, (1000, 2000), MatchedSignal("price", CONFIDENCE_LOW, False)),
    (2000, None, (1000, 2000), MatchedSignal("price", CONFIDENCE_LOW, True)),
    (1800, None, (), None),
    (0, 1800, (), None),
])
def test_price(cart_price, product_price, variant_prices, expected):
    variants = tuple(ProductVariant(f"v{i}", price=p) for i, p in enumerate(variant_prices))
    cart, product = _pair(make_cart_item(price=cart_price), make_product(price=product_price, variants=variants))
    hit = match_price(cart, product)
    assert (hit.signal if hit else None) == expected


def test_price_skipped_on_currency_mismatch():
    cart, product = _pair(make_cart_item(price=1800, currency="USD"), make_product(price=1800, currency="EUR"))
    assert match_price(cart, product) is None


def test_price_compares_when_one_currency_is_missing():
    cart, product = _pair(make_cart_item(price=1800, currency=None), make_product(price=1800, currency="eur"))
    assert match_price(cart, product) is not None


# ---------------------------------------------------------------------------
# Confidence threshold
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("confidence, minimum, expected", [
    (CONFIDENCE_HIGH, CONFIDENCE_HIGH, True),
    (CONFIDENCE_MEDIUM, CONFIDENCE_HIGH, False),
    (CONFIDENCE_MEDIUM, CONFIDENCE_MEDIUM, True),
    (CONFIDENCE_LOW, CONFIDENCE_MEDIUM, False),
    (CONFIDENCE_HIGH, CONFIDENCE_LOW, True),
    (CONFIDENCE_NONE, CONFIDENCE_LOW, False),
])
def test_meets_threshold(confidence, minimum, expected):
    assert meets_threshold(confidence, minimum) is expected


# ---------------------------------------------------------------------------
# Primary selection and signal collection
# ---------------------------------------------------------------------------

def _features(item, products, extractor=None):
    return cart_features(item, extractor), [product_features(p, extractor) for p in products]


def test_no_products_is_no_match():
    cart, _ = _features(make_cart_item(), [])
    result = match_cart_item(cart, [])
    assert result.product is None
    assert result.confidence == CONFIDENCE_NONE
    assert result.method is None
    assert result.signals == ()


def test_highest_tier_wins_over_earlier_product():
    title_only = make_product("Sport Cap", price=5000)
    by_code = make_product("Cap", price=5000, identifiers=make_ids(stock_codes=["i3a6w"]))
    cart, products = _features(make_cart_item("Sport Cap - White", image_url=CAP_IMAGE), [title_only, by_code])

    result = match_cart_item(cart, products)
    assert result.product is by_code
    assert result.method == "image_code"
    assert result.confidence == CONFIDENCE_HIGH
    assert [s.method for s in result.signals] == ["image_code", "title"]


def test_first_encountered_wins_within_a_tier():
    first = make_product("Alpha", identifiers=make_ids(stock_codes=["x1"]))
    second = make_product("Beta", identifiers=make_ids(stock_codes=["x1"]))
    cart, products = _features(make_cart_item("Gamma", identifiers=make_ids(stock_codes=["x1"])), [first, second])
    assert match_cart_item(cart, products).product is first


def test_signals_collected_across_products():
    by_code = make_product("Alpha", price=100, identifiers=make_ids(stock_codes=["x1"]))
    by_url = make_product("Beta", price=100, url="https://shop.com/item/1")
    item = make_cart_item(
        "Gamma", price=5000, url="https://shop.com/item/1", identifiers=make_ids(stock_codes=["x1"]),
    )
    cart, products = _features(item, [by_code, by_url])

    result = match_cart_item(cart, products)
    assert result.product is by_code
    assert result.method == METHOD_STOCK_CODE
    assert [s.method for s in result.signals] == ["stock_code", "url"]


def test_price_is_never_primary():
    cart, products = _features(make_cart_item("Gamma", price=1800), [make_product("Alpha", price=1800)])
    result = match_cart_item(cart, products)
    assert result.product is None
    assert result.confidence == CONFIDENCE_NONE
    assert result.method is None
    assert result.signals == (MatchedSignal("price", CONFIDENCE_LOW, True),)


def test_variant_of_primary_is_reported():
    variant = ProductVariant("sku-2", image_url="https://cdn/v2.jpg")
    product = make_product(variants=(ProductVariant("sku-1"), variant))
    cart, products = _features(make_cart_item(identifiers=make_ids(stock_codes=["SKU-2"])), [product])
    result = match_cart_item(cart, products)
    assert result.method == "variant_stock_code"
    assert result.variant == variant


def test_every_signal_uses_the_static_tier_table():
    product = make_product(
        "Sport Cap", price=900, color="White", url="https://shop.com/cap",
        identifiers=make_ids(stock_codes=["i3a6w"]),
    )
    item = make_cart_item("Sport Cap - White", price=900, image_url=CAP_IMAGE, url="https://shop.com/cap")
    cart, products = _features(item, [product])
    for signal in match_cart_item(cart, products).signals:
        assert signal.confidence == METHOD_CONFIDENCE[signal.method]


class _Counting:
    """Predicate wrapper that records how often it ran."""

    def __init__(self, predicate):
        self.predicate = predicate
        self.calls = 0

    def __call__(self, cart, product):
        self.calls += 1
        return self.predicate(cart, product)


def _always(method):
    return lambda cart, product: StrategyMatch(MatchedSignal(method, METHOD_CONFIDENCE[method], True))


def test_stops_once_high_primary_and_all_signals_collected():
    counting = _Counting(_always(METHOD_STOCK_CODE))
    cart, products = _features(make_cart_item(), [make_product(), make_product(), make_product()])
    result = match_cart_item(cart, products, strategies=(Strategy(METHOD_STOCK_CODE, counting),))
    assert counting.calls == 1
    assert result.product is products[0].product


def test_collected_method_not_rerun_when_it_cannot_promote():
    counting = _Counting(_always(METHOD_TITLE))
    cart, products = _features(make_cart_item(), [make_product(), make_product()])
    match_cart_item(cart, products, strategies=(Strategy(METHOD_TITLE, counting),))
    assert counting.calls == 1


def test_uncollected_methods_still_run_after_high_primary():
    code = _Counting(_always(METHOD_STOCK_CODE))
    url_second_only = _Counting(
        lambda cart, product: StrategyMatch(MatchedSignal(METHOD_URL, CONFIDENCE_MEDIUM, True))
        if product.product.title == "second" else None
    )
    cart, products = _features(make_cart_item(), [make_product("first"), make_product("second")])
    result = match_cart_item(
        cart, products,
        strategies=(Strategy(METHOD_STOCK_CODE, code), Strategy(METHOD_URL, url_second_only)),
    )
    assert result.product.title == "first"
    assert [s.method for s in result.signals] == [METHOD_STOCK_CODE, METHOD_URL]
    assert code.calls == 1
    assert url_second_only.calls == 2


def test_later_product_promotes_to_higher_tier():
    url_second_only = (
        lambda cart, product: StrategyMatch(MatchedSignal(METHOD_URL, CONFIDENCE_MEDIUM, True))
        if product.product.title == "second" else None
    )
    cart, products = _features(make_cart_item(), [make_product("first"), make_product("second")])
    result = match_cart_item(
        cart, products,
        strategies=(Strategy(METHOD_URL, url_second_only), Strategy(METHOD_TITLE, _always(METHOD_TITLE))),
    )
    assert result.product.title == "second"
    assert result.method == METHOD_URL
    assert result.confidence == CONFIDENCE_MEDIUM
