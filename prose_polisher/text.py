"""Text normalization helpers for n-gram analysis."""

import re
from typing import Iterable, Mapping

COMMON_WORDS = frozenset({
    "a", "about", "above", "after", "again", "against", "all", "am", "an", "and",
    "any", "are", "as", "at", "be", "because", "been", "before", "being", "below",
    "between", "both", "but", "by", "can", "could", "did", "do", "does", "doing",
    "down", "during", "each", "few", "for", "from", "further", "had", "has", "have",
    "having", "he", "her", "here", "hers", "herself", "him", "himself", "his", "how",
    "i", "if", "in", "into", "is", "it", "it's", "its", "itself", "just", "me",
    "more", "most", "my", "myself", "no", "nor", "not", "now", "of", "off", "on",
    "once", "only", "or", "other", "our", "ours", "out", "over", "own", "same",
    "she", "should", "so", "some", "such", "than", "that", "the", "their", "theirs",
    "them", "themselves", "then", "there", "these", "they", "this", "those",
    "through", "to", "too", "under", "until", "up", "very", "was", "we", "were",
    "what", "when", "where", "which", "while", "who", "whom", "why", "will", "with",
    "would", "you", "your", "yours", "yourself", "yourselves", "i'm", "don't",
    "didn't", "can't", "won't", "said", "says", "like", "one", "back", "still",
})

_CODE_BLOCK_RE = re.compile(r"(?:```|~~~)\w*\s*[\s\S]*?(?:```|~~~)")
_BLOCK_TAG_RE = re.compile(r"<(info_panel|memo|code|pre|script|style)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_EMPHASIS_RE = re.compile(r"(?:\*|_|~|`)+(.+?)(?:\*|_|~|`)+")
_QUOTE_RE = re.compile(r"\"(.*?)\"")
_PAREN_RE = re.compile(r"\((.*?)\)")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+\"?")
_NON_WORD_RE = re.compile(r"[^\w\s'-]")
_INLINE_SPACE_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def strip_markup(text: str | None) -> str:
    """Remove code blocks, HTML and markdown emphasis, keeping the prose."""
    if not text:
        return ""
    clean = _CODE_BLOCK_RE.sub(" ", text)
    clean = _BLOCK_TAG_RE.sub(" ", clean)
    clean = _TAG_RE.sub(" ", clean)
    clean = _EMPHASIS_RE.sub(r"\1", clean)
    clean = _QUOTE_RE.sub(r" \1 ", clean)
    clean = _PAREN_RE.sub(r" \1 ", clean)
    return _WHITESPACE_RE.sub(" ", clean).strip()


def split_sentences(text: str) -> list[str]:
    """Split into sentences; trailing text without terminal punctuation is kept."""
    sentences = []
    last_end = 0
    for m in _SENTENCE_RE.finditer(text):
        sentences.append(m.group(0).strip())
        last_end = m.end()
    tail = text[last_end:].strip()
    if tail:
        sentences.append(tail)
    return [s for s in sentences if s]


def tokenize(text: str) -> list[str]:
    """Lowercase words with punctuation other than apostrophes and hyphens removed."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [w.strip("'-") for w in cleaned.split() if w.strip("'-")]


def normalize_phrase(text: str) -> str:
    """Canonical form of a phrase: lowercase, whitespace collapsed."""
    return _WHITESPACE_RE.sub(" ", text.lower()).strip()


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces, trim every line and allow at most one blank line in a row."""
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def generate_ngrams(words: list[str], n: int) -> list[str]:
    """All contiguous n-word windows, joined by single spaces."""
    if n <= 0 or len(words) < n:
        return []
    return [" ".join(words[i:i + n]) for i in range(len(words) - n + 1)]


def contains_term(words: Iterable[str], phrase: str, term: str) -> bool:
    """True when ``term`` occurs in the phrase as a whole word or word sequence.

    A possessive ending on the last word still counts: ``alice`` is found in
    ``alice's smile``.
    """
    if " " in term:
        return re.search(rf"(?:^| ){re.escape(term)}(?:'s)?(?: |$)", phrase) is not None
    possessive = f"{term}'s"
    return any(w == term or w == possessive for w in words)


def is_whitelisted(words: list[str], whitelist: Iterable[str]) -> bool:
    """True when any whitelisted term appears in the word list."""
    phrase = " ".join(words)
    return any(contains_term(words, phrase, term) for term in whitelist)


def is_common_only(words: list[str]) -> bool:
    """True when every word is a stock function word."""
    return all(w in COMMON_WORDS for w in words)


def blacklist_weight(words: list[str], blacklist: Mapping[str, int]) -> int:
    """Maximum weight of any blacklisted term contained in the words, or 0."""
    if not blacklist:
        return 0
    phrase = " ".join(words)
    return max(
        (weight for term, weight in blacklist.items() if contains_term(words, phrase, term)),
        default=0,
    )


def token_contains(longer: list[str], shorter: list[str]) -> bool:
    """True when ``shorter`` is a contiguous token run inside ``longer``."""
    if len(shorter) > len(longer):
        return False
    return f" {' '.join(shorter)} " in f" {' '.join(longer)} "


def common_prefix_length(a: list[str], b: list[str]) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n
