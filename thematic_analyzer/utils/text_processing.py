"""Text processing utilities for code extraction and theme labeling."""

from collections import Counter
from typing import Iterable, List, Sequence
import re

from rapidfuzz import fuzz

STOP_WORDS = frozenset({
    # articles, conjunctions, prepositions
    'the', 'a', 'an', 'and', 'or', 'but', 'nor', 'yet', 'so',
    'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by', 'from', 'as',
    'into', 'through', 'during', 'before', 'after', 'above', 'below',
    'between', 'under', 'about', 'against', 'among', 'around', 'behind',
    'within', 'without', 'across', 'upon', 'over',
    # pronouns
    'i', 'you', 'he', 'she', 'it', 'we', 'they', 'them', 'their', 'this',
    'that', 'these', 'those', 'my', 'your', 'his', 'her', 'its', 'our',
    # auxiliaries and modals
    'is', 'am', 'are', 'was', 'were', 'been', 'being', 'be',
    'have', 'has', 'had', 'having', 'do', 'does', 'did', 'doing',
    'will', 'would', 'should', 'could', 'may', 'might', 'must', 'can',
    # adverbs, quantifiers, interrogatives
    'also', 'very', 'just', 'only', 'even', 'such', 'more', 'most',
    'some', 'any', 'all', 'both', 'each', 'few', 'many', 'much',
    'other', 'another', 'same', 'own', 'which', 'who', 'whom', 'whose',
    'what', 'when', 'where', 'why', 'how', 'not', 'no', 'none', 'nothing',
    'neither', 'than', 'too', 'now', 'then', 'once', 'again', 'further',
    'here', 'there', 'while', 'however', 'therefore', 'thus',
})

# Research terms that look like noise (digits, hyphens) but carry meaning.
RESEARCH_TERM_WHITELIST = frozenset({
    'covid-19', 'covid19', 'sars-cov-2', 'long-covid', 'h1n1', 'h5n1', 'hiv-1', 'hiv-2',
    'p-value', 't-test', 'f-test', 'z-test', 'r-squared', 'chi-square', 'anova', 'ancova',
    'manova', 'meta-analysis', 'meta-analytic', 'n-of-1', 'mrna', 'crispr', 'cas9',
    'gpt-3', 'gpt-4', '2d', '3d', '5g', '6g', 'wi-fi', 'type-1', 'type-2',
})

_SENTENCE_SPLIT = re.compile(r'[.!?]+')
_NON_WORD = re.compile(r'[^\w\s-]')
_PURE_NUMBER = re.compile(r'^\d+$')
_NUMBER_HEAVY = re.compile(r'\d.*\d')
_COMPLEX_ABBREV = re.compile(r'^[a-z]+-\d+-[a-z]+$')
_LONG_ACRONYM = re.compile(r'^[A-Z]{7,}$')


def clean_text(text: str) -> str:
    """Clean and normalize text for processing.

    Args:
        text: Text to clean

    Returns:
        Cleaned text
    """
    if not text:
        return ""

    text = ' '.join(text.split())
    # Keep letters, numbers and basic punctuation
    text = re.sub(r'[^\w\s.,;:!?\-]', ' ', text)
    return ' '.join(text.split())


def normalize_text(text: str) -> str:
    """Canonical form of ``text`` used for cache keys (collapsed whitespace, case kept)."""
    if not text:
        return ""
    return ' '.join(text.split())


def is_noise_word(word: str) -> bool:
    """Return True for numbers, number-heavy tokens and other extraction artifacts."""
    if not word:
        return True
    if word.lower() in RESEARCH_TERM_WHITELIST:
        return False
    if _PURE_NUMBER.match(word) or _COMPLEX_ABBREV.match(word.lower()):
        return True
    if _LONG_ACRONYM.match(word):
        return True
    if _NUMBER_HEAVY.search(word):
        return True
    return not re.search(r'[a-z]', word, re.IGNORECASE)


def segment_sentences(text: str, min_length: int = 20) -> List[str]:
    """Split ``text`` on sentence punctuation, keeping sentences longer than ``min_length``."""
    if not text:
        return []
    sentences = (s.strip() for s in _SENTENCE_SPLIT.split(text))
    return [' '.join(s.split()) for s in sentences if len(s) > min_length]


def tokenize(text: str, min_word_length: int = 3) -> List[str]:
    """Lower-case word tokens without stop words, short words or noise tokens."""
    if not text:
        return []
    words = _NON_WORD.sub(' ', text.lower()).split()
    return [
        w.strip('-') for w in words
        if len(w.strip('-')) > min_word_length
        and w not in STOP_WORDS
        and not is_noise_word(w.strip('-'))
    ]


def bigrams(words: Sequence[str]) -> List[str]:
    return [f"{words[i]} {words[i + 1]}" for i in range(len(words) - 1)]


def top_terms(terms: Iterable[str], n: int) -> List[str]:
    """Most frequent terms, ties broken by first appearance."""
    counts = Counter(terms)
    return [term for term, _ in counts.most_common(n)]


def truncate(text: str, max_length: int = 300) -> str:
    if len(text) <= max_length:
        return text
    cut = text[:max_length].rsplit(' ', 1)[0]
    return f"{cut}..."


def capitalize_label(label: str) -> str:
    """Title-case each word of a code label while keeping hyphenated terms intact."""
    return ' '.join(word[:1].upper() + word[1:] for word in label.split())


def collapse_near_duplicates(labels: Sequence[str], threshold: float = 90.0) -> List[str]:
    """Drop labels that are fuzzy duplicates of an earlier label.

    Args:
        labels: Candidate labels in priority order
        threshold: Minimum ``token_set_ratio`` (0-100) for two labels to count as duplicates

    Returns:
        Labels with later near-duplicates removed
    """
    kept: List[str] = []
    for label in labels:
        if any(fuzz.token_set_ratio(label, other) >= threshold for other in kept):
            continue
        kept.append(label)
    return kept
