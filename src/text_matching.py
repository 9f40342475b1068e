"""
Title parsing and fuzzy title similarity.

Title parsing:
    Cart titles often carry the chosen variant as a suffix that product pages
    keep in a separate color field. Each vendor convention is one parser in
    TITLE_FORMATS, tried in order; the first that recognises the title wins and
    a plain title falls through to the no-suffix fallback.

        "Sport Cap - White"                           → ("Sport Cap", "White")
        "Champion Boys Logo Jogger Grey M:- Grey, M"  → ("Champion Boys Logo Jogger", "Grey")
        "Sport Cap"                                   → ("Sport Cap", None)

Title similarity:
    No single metric holds up across vendor conventions (appended SKUs,
    trailing size/color tokens, punctuation), so the score is the maximum of:
        - exact match after normalization             → 1.0
        - one normalized title a substring of another → 0.95
        - token Dice coefficient
        - character-bigram Dice coefficient
        - normalized Levenshtein similarity (rapidfuzz)
"""

import re
from typing import Callable, List, NamedTuple, Optional, Set

from rapidfuzz.distance import Levenshtein

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CONTAINMENT_SCORE = 0.95

# Hyphen, en dash or em dash with whitespace on both sides
_DASH_SEPARATOR = re.compile(r'\s+[-–—]\s+')

# "Name Color Size:- Color, Size"
_COLON_DASH_SUFFIX = re.compile(r'^(?P<head>.+?)\s*:-\s*(?P<tail>.+)$')

_PUNCTUATION = re.compile(r'[^\w\s-]')
_WHITESPACE = re.compile(r'\s+')


class ParsedTitle(NamedTuple):
    base: str
    color: Optional[str]


# ---------------------------------------------------------------------------
# Title parsing
# ---------------------------------------------------------------------------

def _parse_colon_dash_suffix(title: str) -> Optional[ParsedTitle]:
    """
    "Champion Boys Logo Jogger Grey M:- Grey, M" style titles.

    The text before ":-" repeats the variant tokens at its end; those are
    stripped so the base name stays intact. The first comma field after ":-"
    is the color.
    """
    match = _COLON_DASH_SUFFIX.match(title)
    if not match:
        return None

    fields = [f.strip() for f in match.group('tail').split(',') if f.strip()]
    if not fields:
        return None

    suffix_tokens = {tok.lower() for f in fields for tok in f.split()}
    words = match.group('head').split()
    while len(words) > 1 and words[-1].lower() in suffix_tokens:
        words.pop()

    return ParsedTitle(base=' '.join(words), color=fields[0])


def _parse_dash_suffix(title: str) -> Optional[ParsedTitle]:
    """"Sport Cap - White" style titles; the last dash-separated part is the color."""
    parts = _DASH_SEPARATOR.split(title)
    if len(parts) < 2:
        return None
    color = parts.pop().strip()
    base = ' - '.join(p.strip() for p in parts).strip()
    if not base or not color:
        return None
    return ParsedTitle(base=base, color=color)


# Order matters: the colon-dash convention can itself contain " - "
TITLE_FORMATS: List[Callable[[str], Optional[ParsedTitle]]] = [
    _parse_colon_dash_suffix,
    _parse_dash_suffix,
]


def parse_cart_title(title: Optional[str]) -> ParsedTitle:
    """Split a cart title into its base name and color/variant suffix."""
    if not title or not title.strip():
        return ParsedTitle(base='', color=None)

    title = title.strip()
    for parser in TITLE_FORMATS:
        parsed = parser(title)
        if parsed is not None:
            return parsed

    return ParsedTitle(base=title, color=None)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_for_comparison(text: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace. Used for exact comparisons."""
    if not text:
        return ''
    return _WHITESPACE.sub(' ', text.lower()).strip()


def normalize_title_for_similarity(text: Optional[str]) -> str:
    """
    Normalize a title for fuzzy comparison.

    Steps:
        1. Lowercase
        2. Remove punctuation except hyphens (keeps "t-shirt" intact)
        3. Collapse whitespace
    """
    if not text:
        return ''
    text = _PUNCTUATION.sub('', text.lower())
    return _WHITESPACE.sub(' ', text).strip()


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

def dice_coefficient(set1: Set[str], set2: Set[str]) -> float:
    if not set1 and not set2:
        return 1.0
    if not set1 or not set2:
        return 0.0
    return 2 * len(set1 & set2) / (len(set1) + len(set2))


def get_bigrams(text: str) -> Set[str]:
    return {text[i:i + 2] for i in range(len(text) - 1)}


def token_dice(t1: str, t2: str) -> float:
    return dice_coefficient(set(t1.split()), set(t2.split()))


def bigram_dice(t1: str, t2: str) -> float:
    return dice_coefficient(get_bigrams(t1), get_bigrams(t2))


def levenshtein_similarity(t1: str, t2: str) -> float:
    """1 - distance / max(len) so that 1.0 is identical and 0.0 shares nothing."""
    if t1 == t2:
        return 1.0
    if not t1 or not t2:
        return 0.0
    return 1 - Levenshtein.distance(t1, t2) / max(len(t1), len(t2))


def containment_score(t1: str, t2: str) -> float:
    """CONTAINMENT_SCORE when the shorter normalized title is a substring of the longer one."""
    shorter, longer = (t1, t2) if len(t1) <= len(t2) else (t2, t1)
    if not shorter:
        return 0.0
    if shorter in longer:
        return CONTAINMENT_SCORE
    return 0.0


def calculate_title_similarity(title1: Optional[str], title2: Optional[str]) -> float:
    """
    Unified title similarity in [0, 1]: the maximum of all sub-scores.

    Token Dice handles reordered or extra words, bigram Dice partial words and
    some typos, Levenshtein character-level typos and near-exact titles.
    """
    t1 = normalize_title_for_similarity(title1)
    t2 = normalize_title_for_similarity(title2)
    if not t1 or not t2:
        return 0.0
    if t1 == t2:
        return 1.0

    return max(
        containment_score(t1, t2),
        token_dice(t1, t2),
        bigram_dice(t1, t2),
        levenshtein_similarity(t1, t2),
    )
