#!/usr/bin/env python3
"""
N-Gram Fingerprinting for **kern spines
Exact, order-sensitive fingerprints of canonical pitch/rhythm tokens

Fingerprints are the 31-multiplier polynomial hash of the token list (the
java.util.Objects.hash layout), wrapped to signed 32 bits, so existing
simplehash tables stay readable: identical n-grams always produce identical
fingerprints.
"""

import logging
import os
from typing import Iterator, List, Sequence, Tuple

from fingerprint_index import IndexRecord
from kern_file import Document
from kern_filters import DEFAULT_FILTER, TokenFilter

logger = logging.getLogger(__name__)

_INT32_MASK = 0xFFFFFFFF
_HASH_MULTIPLIER = 31


def get_kern_files(path):
    """Recursively find all kern files in directory."""
    kern_files = []
    for root, dirs, files in os.walk(path):
        for file in files:
            if file.lower().endswith('.krn'):
                kern_files.append(os.path.join(root, file))
    return sorted(kern_files)


def _to_int32(value: int) -> int:
    value &= _INT32_MASK
    return value - (1 << 32) if value & 0x80000000 else value


def java_string_hash(text: str) -> int:
    """String.hashCode(): s[0]*31^(n-1) + ... + s[n-1] over UTF-16 code units."""
    h = 0
    encoded = text.encode('utf-16-be')
    for i in range(0, len(encoded), 2):
        unit = (encoded[i] << 8) | encoded[i + 1]
        h = (_HASH_MULTIPLIER * h + unit) & _INT32_MASK
    return _to_int32(h)


def ngrams(tokens: Sequence[str], n: int) -> List[Tuple[str, ...]]:
    """
    Every contiguous window of n tokens, sliding by one.

    Returns an empty list when there are fewer than n tokens.
    """
    if n < 1:
        raise ValueError(f"n-gram size must be >= 1, got {n}")
    return [tuple(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


def fingerprint(ngram: Sequence[str]) -> int:
    """
    Order-sensitive fingerprint of one n-gram.

    Objects.hash(list): the list hash starts at 1 and folds 31*h + hash(token)
    for each token; Objects.hash wraps that once more as 31 + h. Everything is
    done in signed 32-bit arithmetic.
    """
    h = 1
    for token in ngram:
        h = (_HASH_MULTIPLIER * h + java_string_hash(token)) & _INT32_MASK
    return _to_int32(_HASH_MULTIPLIER + h)


def canonical_text(ngram: Sequence[str]) -> str:
    """Tokens joined with no separator. Diagnostics only."""
    return ''.join(ngram)


def describe(ngram: Sequence[str], fp: int) -> str:
    return f"n-gram: [ {', '.join(ngram)} ]\t\thash: {fp}"


class NGramFingerprinter:
    """
    Builds index records for kern documents and fingerprints for queries.

    Every voice of a document is hashed at every gram size between min_size
    and max_size inclusive.
    """

    def __init__(self, min_size=3, max_size=10, token_filter: TokenFilter = None):
        """
        Initialize fingerprinter

        Args:
            min_size: Smallest n-gram size written to the index
            max_size: Largest n-gram size written to the index
            token_filter: Filter reducing raw tokens to the canonical alphabet
        """
        if min_size < 1 or max_size < min_size:
            raise ValueError(f"invalid n-gram size range [{min_size}, {max_size}]")
        self.min_size = min_size
        self.max_size = max_size
        self.token_filter = token_filter or DEFAULT_FILTER

    def records_for(self, document: Document) -> Iterator[IndexRecord]:
        """
        Yield one IndexRecord per n-gram of every voice in the document.

        Voices with fewer filtered tokens than a gram size simply produce
        nothing at that size.
        """
        for gram_size in range(self.min_size, self.max_size + 1):
            for index in sorted(document.voices):
                voice = document.voices[index]
                filtered = self.token_filter.apply_filters(voice.tokens)
                for gram in ngrams(filtered, gram_size):
                    fp = fingerprint(gram)
                    logger.debug("%s[%s] %s", document.source_id, voice.name, describe(gram, fp))
                    yield IndexRecord(
                        fingerprint=fp,
                        source_id=document.source_id,
                        voice_name=voice.name or "",
                        dataset_name=document.dataset_name,
                        gram_size=gram_size,
                        canonical_gram_text=canonical_text(gram),
                    )

    def query_fingerprints(self, tokens: Sequence[str], n: int) -> List[int]:
        """Fingerprints for every n-gram of already filtered query tokens."""
        return [fingerprint(gram) for gram in ngrams(tokens, n)]
