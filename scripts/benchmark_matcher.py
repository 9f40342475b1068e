"""
Micro-benchmark for the cart enrichment engine.

Tests:
1. calculate_title_similarity() on typical cart/product title pairs
2. UrlIdExtractor on store-specific and generic URLs
3. enrich_cart() end-to-end on synthetic carts against synthetic sessions

Usage:
    python benchmark_matcher.py
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import logging
import time
import numpy as np
from enrichment import enrich_cart
from identifiers import DEFAULT_EXTRACTOR
from models import CartItem, ProductIdentifiers, ProductVariant, ProductView
from text_matching import calculate_title_similarity

STORE_ID = '15861'
NAMES = ['Arrival', 'Crest', 'Sport', 'Power', 'Vital', 'Legacy', 'Apex', 'Flex']
KINDS = ['T-Shirt', 'Joggers', 'Shorts', 'Cap', 'Hoodie', 'Leggings']
COLORS = ['Black', 'White', 'Navy', 'Grey', 'Cherry Purple', 'Archive Brown']


def random_code(rng: np.random.Generator) -> str:
    letters = rng.choice(list('ABCDEFGHIJKLMNOPQRSTUVWXYZ'), size=2)
    digits = rng.integers(0, 10, size=2)
    return f"{letters[0]}{digits[0]}{letters[1]}{digits[1]}{rng.choice(list('ABCDEFGHJK'))}"


def generate_synthetic_products(n_rows: int = 40, seed: int = 7) -> list:
    """Generate synthetic product views for benchmarking."""
    rng = np.random.default_rng(seed)
    products = []
    for i in range(n_rows):
        title = f"{rng.choice(NAMES)} {rng.choice(KINDS)}"
        color = str(rng.choice(COLORS))
        code = random_code(rng)
        price = int(rng.integers(9, 80)) * 100
        slug = title.lower().replace(' ', '-')
        variants = tuple(
            ProductVariant(
                stock_code=f"{code}-{j}",
                url=f"https://www.gymshark.com/products/{slug}-{j}?variant={4000000 + i * 10 + j}",
                price=price,
                color=str(rng.choice(COLORS)),
            )
            for j in range(int(rng.integers(0, 4)))
        )
        products.append(ProductView(
            title=title,
            price=price,
            url=f"https://www.gymshark.com/products/{slug}-{i}",
            image_url=f"https://cdn.shopify.com/files/{title.replace(' ', '')}{color.replace(' ', '')}{code}-XX01.jpg",
            store_id=STORE_ID,
            currency='USD',
            color=color,
            identifiers=ProductIdentifiers(stock_codes=[code]),
            variants=variants,
        ))
    return products


def generate_synthetic_cart(products: list, n_rows: int = 10, seed: int = 11) -> list:
    """Half the cart comes from viewed products, the rest was never viewed."""
    rng = np.random.default_rng(seed)
    cart = []
    for i in range(n_rows):
        if i % 2 == 0 and products:
            product = products[int(rng.integers(0, len(products)))]
            cart.append(CartItem(
                title=f"{product.title} - {product.color}",
                price=product.price,
                image_url=product.image_url.replace('.jpg', '_64x64.jpg'),
                store_id=STORE_ID,
                currency='USD',
            ))
        else:
            cart.append(CartItem(
                title=f"Unviewed Item {i}",
                price=int(rng.integers(1, 5)) * 100,
                store_id=STORE_ID,
                currency='USD',
            ))
    return cart


def benchmark_function(func, *args, **kwargs):
    """Benchmark a function and return (result, elapsed_ms)."""
    start = time.perf_counter()
    result = func(*args, **kwargs)
    end = time.perf_counter()
    elapsed_ms = (end - start) * 1000
    return result, elapsed_ms


def benchmark_title_similarity(n_iterations: int = 10000):
    """Benchmark calculate_title_similarity() on the title strategy's hot path."""
    test_pairs = [
        ("Sport Cap - White", "Sport Cap"),
        ("Champion Boys Logo Jogger Grey M:- Grey, M", "Champion Boys Logo Jogger"),
        ("Arrival Block 6\" Shorts - Black", "Arrival Block 6\" Shorts"),
        ("Member's Mark Gummy Bears (56 oz.)", "Popcorners Variety Pack (28 ct.)"),
    ]

    print("\n" + "="*70)
    print("BENCHMARK: calculate_title_similarity() - Hot Path (n x m calls)")
    print("="*70)

    for cart_title, product_title in test_pairs:
        start = time.perf_counter()
        for _ in range(n_iterations):
            score = calculate_title_similarity(cart_title, product_title)
        end = time.perf_counter()

        elapsed_ms = (end - start) * 1000
        per_call_us = elapsed_ms * 1000 / n_iterations

        print(f"\nInput: {cart_title!r} vs {product_title!r} → {score:.3f}")
        print(f"  Total: {elapsed_ms:.2f}ms ({n_iterations} calls)")
        print(f"  Per call: {per_call_us:.2f}μs")


def benchmark_url_extraction(n_iterations: int = 5000):
    """Benchmark the URL id extractor."""
    print("\n" + "="*70)
    print("BENCHMARK: UrlIdExtractor - URL Identifier Extraction")
    print("="*70)

    test_cases = [
        ("https://www.samsclub.com/ip/seort/16675013342", '10086'),
        ("https://www.target.com/p/some-item/-/A-12345678?preselect=87654321", '9528'),
        ("https://oldnavy.gap.com/browse/product.do?pid=123456002&utm_source=x", None),
        ("https://www.example.com/catalog/prd-1234567.html", None),
    ]

    for url, store_id in test_cases:
        start = time.perf_counter()
        for _ in range(n_iterations):
            ids = DEFAULT_EXTRACTOR(url, store_id)
        end = time.perf_counter()

        elapsed_ms = (end - start) * 1000
        per_call_us = elapsed_ms * 1000 / n_iterations

        print(f"\nInput: {url} (store {store_id or 'by domain'}) → {sorted(ids)}")
        print(f"  Total: {elapsed_ms:.2f}ms ({n_iterations} calls)")
        print(f"  Per call: {per_call_us:.2f}μs")


def benchmark_enrich_cart():
    """Benchmark enrich_cart() end-to-end at several session sizes."""
    print("\n" + "="*70)
    print("BENCHMARK: enrich_cart() - End-to-End")
    print("="*70)

    for n_products, n_cart in [(10, 4), (40, 10), (200, 25)]:
        products = generate_synthetic_products(n_products)
        cart = generate_synthetic_cart(products, n_cart)

        enriched, elapsed = benchmark_function(enrich_cart, cart, products, min_confidence='low')
        summary = enriched.summary

        print(f"\n{n_cart} cart items x {n_products} product views:")
        print(f"  Total: {elapsed:.2f}ms")
        print(f"  Per cart item: {elapsed / n_cart:.2f}ms")
        print(f"  Matched: {summary.matched_items}/{summary.total_items} ({summary.match_rate:.1f}%)")
        for method, count in summary.by_method.items():
            if count:
                print(f"    {method}: {count}")


def main():
    """Run all benchmarks."""
    print("="*70)
    print("CART ENRICHMENT PERFORMANCE BENCHMARK")
    print("="*70)
    print("\nThis benchmark measures:")
    print("  1. calculate_title_similarity() - Hot path (n x m calls)")
    print("  2. UrlIdExtractor - URL identifier extraction")
    print("  3. enrich_cart() - End-to-end")

    benchmark_title_similarity(10000)
    benchmark_url_extraction(5000)
    benchmark_enrich_cart()

    print("\n" + "="*70)
    print("BENCHMARK COMPLETE")
    print("="*70)


if __name__ == '__main__':
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    main()
