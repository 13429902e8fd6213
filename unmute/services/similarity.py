"""
Term-frequency vectorization and cosine similarity for content matching.

Tokenizing and stopword removal come from scikit-learn's CountVectorizer
analyzer. Vectors are raw term counts, not TF-IDF and not unit-scaled.
"""

import math
from collections import Counter
from typing import Dict, List, Mapping

from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, CountVectorizer

# Single-character tokens are kept so contractions split into stopword fragments.
TOKEN_PATTERN = r'(?u)\b\w+\b'

STOPWORDS = ENGLISH_STOP_WORDS.union({
    'feel', 'feeling', 'feels', 'felt',
    'make', 'makes', 'making',
    'im', 'ive', 'dont', 'cant', 'really', 'just', 'let', 'gets', 'getting', 'got',
    # contraction fragments
    'aren', 'couldn', 'd', 'didn', 'doesn', 'don', 'hadn', 'hasn', 'haven', 'isn', 'll', 'm',
    'mustn', 're', 's', 'shan', 'shouldn', 't', 've', 'wasn', 'weren', 'won', 'wouldn',
})

_vectorizer = CountVectorizer(lowercase=True, token_pattern=TOKEN_PATTERN, stop_words=sorted(STOPWORDS))
_preprocess = _vectorizer.build_preprocessor()
_split = _vectorizer.build_tokenizer()
_analyze = _vectorizer.build_analyzer()


def tokenize(text: str) -> List[str]:
    """Lower-case ``text`` and split it into word tokens."""
    if not text:
        return []
    return _split(_preprocess(text))


def vectorize(text: str) -> Dict[str, int]:
    """Turn free text into a sparse term-frequency vector.

    Args:
        text: Raw content text

    Returns:
        Mapping of non-stopword term to its count; empty for empty or
        all-stopword text
    """
    if not text:
        return {}
    return dict(Counter(_analyze(text)))


def _magnitude(vector: Mapping[str, int]) -> float:
    return math.sqrt(sum(count * count for _, count in sorted(vector.items())))


def cosine_similarity(vec_a: Mapping[str, int], vec_b: Mapping[str, int]) -> float:
    """Cosine similarity of two term-frequency vectors.

    Returns 0.0 when either vector has zero magnitude. The intersection is
    summed in sorted term order and the magnitudes multiplied smaller-first, so
    swapping the arguments gives a bit-identical result.

    Args:
        vec_a: First term-frequency vector
        vec_b: Second term-frequency vector

    Returns:
        Similarity in [0, 1]
    """
    if not vec_a or not vec_b:
        return 0.0

    shared = sorted(set(vec_a).intersection(vec_b))
    dot = 0.0
    for term in shared:
        dot += vec_a[term] * vec_b[term]

    magnitude_a = _magnitude(vec_a)
    magnitude_b = _magnitude(vec_b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    low, high = sorted((magnitude_a, magnitude_b))
    return min(1.0, max(0.0, dot / (low * high)))


def text_similarity(text_a: str, text_b: str) -> float:
    """Convenience wrapper: vectorize both texts and compare them."""
    return cosine_similarity(vectorize(text_a), vectorize(text_b))
