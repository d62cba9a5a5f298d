from __future__ import annotations

"""
Text normalisation helpers shared across catalog building, retrieval and
diversity scoring.

Public helpers:

* basic_clean(text) -> str
    Light-weight clean for provider synopses (HTML, unicode, whitespace).

* normalize_for_comparison(text) -> str
    Lowercased, punctuation-free form used for keys and token overlap.

* tokenize(text) / lexical_terms(text) -> List[str]
    Comparison tokens, and the stop-word-free variant used for title
    full-text matching.

* trigram_similarity(a, b) -> float
    pg_trgm style similarity used by seed resolution.

* compute_franchise_key(title) -> str
    Grouping key collapsing sequels / cuts / parts of one title family.
"""

import re
import unicodedata
from typing import List, Set

from bs4 import BeautifulSoup

MAX_INPUT_CHARS = 20_000

# Small English stop list; mirrors what an 'english' tsquery would drop.
STOP_WORDS: Set[str] = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
    "has", "have", "he", "her", "his", "in", "into", "is", "it", "its", "of",
    "on", "or", "she", "so", "than", "that", "the", "their", "them", "then",
    "there", "these", "they", "this", "to", "was", "were", "which", "while",
    "who", "will", "with", "would", "you", "your", "after", "when", "where",
    "what", "about", "been", "being", "over", "under", "more", "most",
}

_FRANCHISE_DROP_WORDS: Set[str] = {
    "part",
    "season",
    "director",
    "cut",
    "edition",
    "extended",
    "ultimate",
    "chapter",
    "episode",
    "movie",
    "film",
}

_ROMAN_RX = re.compile(r"^m{0,4}(cm|cd|d?c{0,3})(xc|xl|l?x{0,3})(ix|iv|v?i{0,3})$")
_NUMBER_RX = re.compile(r"^\d{1,4}$")
_WS_RX = re.compile(r"\s+")
_TRGM_WORD_RX = re.compile(r"[0-9a-z]+")


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _strip_html(text: str) -> str:
    if not text or "<" not in text:
        return text or ""
    soup = BeautifulSoup(text, "html.parser")
    return soup.get_text(" ", strip=True)


def _normalise_unicode(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("–", "-").replace("—", "-")
    return text


def _is_punct_or_symbol(ch: str) -> bool:
    cat = unicodedata.category(ch)
    return cat[0] in ("P", "S")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def basic_clean(text: str | None) -> str:
    """Light-weight clean for catalog fields.

    * strips HTML (AniList / Google Books descriptions ship markup)
    * normalises unicode and whitespace
    * truncates excessively long inputs
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    if len(text) > MAX_INPUT_CHARS:
        text = text[:MAX_INPUT_CHARS]

    text = _strip_html(text)
    text = _normalise_unicode(text)
    text = _WS_RX.sub(" ", text).strip()
    return text


def normalize_for_comparison(text: str | None) -> str:
    if not text:
        return ""
    norm = unicodedata.normalize("NFKD", str(text)).lower()
    norm = "".join(" " if _is_punct_or_symbol(ch) else ch for ch in norm)
    return _WS_RX.sub(" ", norm).strip()


def tokenize(text: str | None) -> List[str]:
    norm = normalize_for_comparison(text)
    return norm.split(" ") if norm else []


def lexical_terms(text: str | None) -> List[str]:
    """Tokens with English stop words removed (order and repeats kept)."""
    return [t for t in tokenize(text) if t not in STOP_WORDS]


def matches_all_terms(query_terms: List[str], doc_terms: List[str]) -> bool:
    """AND semantics of a web-search style tsquery; empty query never matches."""
    if not query_terms:
        return False
    doc = set(doc_terms)
    return all(t in doc for t in query_terms)


def _trigrams(text: str) -> Set[str]:
    grams: Set[str] = set()
    for word in _TRGM_WORD_RX.findall((text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i : i + 3])
    return grams


def trigram_similarity(a: str | None, b: str | None) -> float:
    ga, gb = _trigrams(a or ""), _trigrams(b or "")
    if not ga or not gb:
        return 0.0
    shared = len(ga & gb)
    return shared / float(len(ga | gb))


def compute_franchise_key(title: str | None) -> str:
    """
    >>> compute_franchise_key("Dune Part Two (Director's Cut)")
    'dune two'
    """
    words = []
    for word in tokenize(title):
        if _NUMBER_RX.match(word) or _ROMAN_RX.match(word):
            continue
        # possessive leftovers ("director's" -> "director s")
        if len(word) == 1 and word.isalpha():
            continue
        if word in _FRANCHISE_DROP_WORDS:
            continue
        words.append(word)
    return " ".join(words).strip()


def franchise_group_key(franchise_key: str | None, title: str | None) -> str:
    """Dedup key: stored franchise key when present, otherwise the title."""
    return normalize_for_comparison(franchise_key or title or "")
