"""
Identifier extraction for cart enrichment.

Two sources of identifiers feed the matcher beyond what the normalizers put
in ProductIdentifiers:

    1. Image-filename codes. Many stores embed the style code in the image
       filename ("SportCapGSWhiteI3A6W-WB5795051.jpg" → "I3A6W"), which is
       often the only identifier a cart line carries.
    2. URL-embedded ids. UrlIdExtractor applies a store-specific pattern table
       (StoreRegistry) with generic fallbacks. The registry is an immutable,
       versioned value handed to the extractor at construction; the matcher
       only ever calls the extractor as a function of a URL.
"""

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Image-filename codes
# ---------------------------------------------------------------------------

# Uppercase-leading alphanumeric token of 4-10 chars followed by a separator
IMAGE_CODE_PATTERN = re.compile(r'([A-Z][A-Z0-9]{3,9})(?=[-_.])')


def extract_codes_from_image_url(image_url: Optional[str]) -> List[str]:
    """
    Pull candidate stock codes out of an image URL's filename.

    Only the last path segment is scanned. Codes are returned lower-cased, in
    filename order, without duplicates.
    """
    if not image_url:
        return []
    filename = image_url.split('/')[-1]
    codes = []
    for code in IMAGE_CODE_PATTERN.findall(filename):
        code = code.lower()
        if code not in codes:
            codes.append(code)
    return codes


# ---------------------------------------------------------------------------
# URL normalization
# ---------------------------------------------------------------------------

def normalize_url(url: Optional[str]) -> str:
    """Lowercase and drop trailing slashes. Used for URL equality only."""
    if not url:
        return ''
    return url.strip().lower().rstrip('/')


MULTI_PART_TLDS = frozenset({
    'co.uk', 'com.au', 'co.jp', 'co.nz', 'com.br', 'com.mx', 'co.in', 'com.sg',
})

# Brand subdomains that identify a different store on a shared parent domain
PRESERVED_SUBDOMAINS = frozenset({'oldnavy', 'bananarepublic', 'athleta'})

TRACKING_PARAM_PREFIXES = ('utm_',)
TRACKING_PARAMS = frozenset({'gclid', 'fbclid', 'msclkid', 'ref', 'cid'})


def parse_domain(hostname: str) -> str:
    """
    Reduce a hostname to its store domain.

        www.nike.com         → nike.com
        www.amazon.co.uk     → amazon.co.uk
        oldnavy.gap.com      → oldnavy.gap.com
    """
    parts = [p for p in hostname.lower().split('.') if p]
    if len(parts) < 2:
        return hostname.lower()

    if '.'.join(parts[-2:]) in MULTI_PART_TLDS:
        base = '.'.join(parts[-3:])
    else:
        base = '.'.join(parts[-2:])

    preserved = next((p for p in parts if p in PRESERVED_SUBDOMAINS), None)
    if preserved is None or preserved in base:
        return base
    return f'{preserved}.{base}'


def split_url(url: str) -> Tuple[str, str, str]:
    """
    Return (domain, pathname, search) for a URL, lower-cased, with tracking
    parameters removed. search keeps its leading "?" when non-empty.
    """
    raw = url.strip()
    if '://' not in raw:
        raw = f'https://{raw}'
    parts = urlsplit(raw.lower())
    if not parts.hostname:
        raise ValueError(f"URL has no hostname: {url!r}")

    query = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in TRACKING_PARAMS and not k.startswith(TRACKING_PARAM_PREFIXES)
    ]
    search = f'?{urlencode(query)}' if query else ''
    return parse_domain(parts.hostname), parts.path or '/', search


# ---------------------------------------------------------------------------
# Store registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoreAlias:
    id: str
    domain: str


@dataclass(frozen=True)
class StoreConfig:
    """
    URL pattern configuration for one store.

    Pathname/search patterns capture the id in group 1 (and optionally a second
    form in group 2). transform_id rewrites each pathname capture.
    """
    id: str
    domain: str
    aliases: Tuple[StoreAlias, ...] = ()
    pathname_patterns: Tuple[Pattern, ...] = ()
    search_patterns: Tuple[Pattern, ...] = ()
    transform_id: Optional[Callable[[str], str]] = None


@dataclass(frozen=True)
class StoreRegistry:
    """
    Immutable, versioned lookup of store configurations by id and by domain.
    Alias ids and alias domains resolve to the primary configuration.
    """
    version: str
    stores: Tuple[StoreConfig, ...] = ()
    _by_id: Mapping[str, StoreConfig] = field(init=False, repr=False, compare=False)
    _by_domain: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        by_id = {}
        by_domain = {}
        for config in self.stores:
            by_id[config.id] = config
            by_domain[config.domain] = config.id
            for alias in config.aliases:
                by_id[alias.id] = config
                by_domain[alias.domain] = alias.id
        object.__setattr__(self, 'stores', tuple(self.stores))
        object.__setattr__(self, '_by_id', MappingProxyType(by_id))
        object.__setattr__(self, '_by_domain', MappingProxyType(by_domain))

    def get(self, store_id: Optional[str] = None, domain: Optional[str] = None) -> Optional[StoreConfig]:
        """Look up by id when given (fast path), otherwise by domain."""
        if store_id is not None:
            return self._by_id.get(store_id)
        if domain is not None:
            resolved = self._by_domain.get(domain)
            return None if resolved is None else self._by_id.get(resolved)
        return None

    def __len__(self) -> int:
        return len(self.stores)


def _strip_target_prefix(captured: str) -> str:
    return captured[2:] if captured.startswith('a-') else captured


DEFAULT_STORE_REGISTRY = StoreRegistry(
    version='2025.12.1',
    stores=(
        StoreConfig(
            id='5246',
            domain='nike.com',
            aliases=(StoreAlias(id='5246-ca', domain='nike.ca'),),
            pathname_patterns=(re.compile(r'/t/[\w-]+/([a-z]{1,2}\d{4}-\d{3})'),),
        ),
        StoreConfig(
            id='9528',
            domain='target.com',
            pathname_patterns=(re.compile(r'/-/(a-\d{6,10})'),),
            search_patterns=(re.compile(r'[?&]preselect=(\d{6,10})'),),
            transform_id=_strip_target_prefix,
        ),
        StoreConfig(
            id='10086',
            domain='samsclub.com',
            pathname_patterns=(re.compile(r'/ip/[^/]+/(?:prod)?(\d{6,14})'),),
        ),
        StoreConfig(
            id='2149',
            domain='walmart.com',
            pathname_patterns=(re.compile(r'/ip/(?:[^/]+/)?(\d{6,12})'),),
        ),
        StoreConfig(
            id='2431',
            domain='oldnavy.gap.com',
            aliases=(StoreAlias(id='2431-ca', domain='oldnavy.gapcanada.ca'),),
            search_patterns=(re.compile(r'[?&]pid=(\d{6,13})'),),
        ),
        StoreConfig(id='15861', domain='gymshark.com'),
    ),
)

# ---------------------------------------------------------------------------
# URL identifier extraction
# ---------------------------------------------------------------------------
PATTERN_EXTRACTOR_MAX_RESULTS = 12

GENERIC_PATHNAME_PATTERNS = (
    # p123456 / prd-123456 / prod123456 → both the prefixed and bare forms
    re.compile(r'\b((?:prod|prd|p)-?(\d{6,24}))\b'),
    # trailing numeric id: /123456789 or -123456789.html
    re.compile(r'\b[/-](\d{6,24})(?:\.html)?$'),
)

GENERIC_SEARCH_PATTERN = re.compile(
    r'[?&](?:sku|pid|id|productid|skuid|athcpid|upc_id|variant|prdtno)=([\w-]{4,24})'
)


class UrlIdExtractor:
    """
    Pure function object: URL → frozenset of lower-cased product ids.

    Extraction order:
        1. Store-specific pathname patterns (with optional transform_id)
        2. Generic pathname patterns, only when step 1 found nothing
        3. Store-specific search patterns
        4. Generic search pattern
    Unparseable URLs and URLs without ids yield an empty set.
    """

    def __init__(self, registry: StoreRegistry = DEFAULT_STORE_REGISTRY,
                 max_results: int = PATTERN_EXTRACTOR_MAX_RESULTS):
        self.registry = registry
        self.max_results = max_results

    def __call__(self, url: Optional[str], store_id: Optional[str] = None) -> FrozenSet[str]:
        return self.extract(url, store_id)

    def _collect(self, source: str, pattern: Pattern, results: set,
                 transform: Optional[Callable[[str], str]] = None) -> None:
        for match in pattern.finditer(source):
            for group in match.groups()[:2]:
                if group:
                    results.add(transform(group) if transform else group)
            if len(results) >= self.max_results:
                logger.warning("URL id extraction hit the %d result cap for %r", self.max_results, source)
                return

    def extract(self, url: Optional[str], store_id: Optional[str] = None) -> FrozenSet[str]:
        if not url:
            return frozenset()
        try:
            domain, pathname, search = split_url(url)
        except ValueError as e:
            logger.debug("Skipping id extraction for %r: %s", url, e)
            return frozenset()

        config = self.registry.get(store_id=store_id) if store_id else None
        if config is None:
            config = self.registry.get(domain=domain)

        results: set = set()
        if config is not None:
            for pattern in config.pathname_patterns:
                self._collect(pathname, pattern, results, config.transform_id)

        if not results:
            for pattern in GENERIC_PATHNAME_PATTERNS:
                self._collect(pathname, pattern, results)

        if search:
            if config is not None:
                for pattern in config.search_patterns:
                    self._collect(search, pattern, results)
            self._collect(search, GENERIC_SEARCH_PATTERN, results)

        return frozenset(sorted(results)[:self.max_results])


DEFAULT_EXTRACTOR = UrlIdExtractor()


def extract_ids_from_urls(extractor: Callable[..., Iterable[str]],
                          urls: Iterable[Optional[str]],
                          store_id: Optional[str] = None) -> FrozenSet[str]:
    """Union of extractor results over several URLs (product + variant URLs)."""
    found: set = set()
    for url in urls:
        if url:
            found.update(i.lower() for i in extractor(url, store_id))
    return frozenset(found)
