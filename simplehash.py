"""
Simplehash: n-gram fingerprint retrieval over kern documents

Ingestion: Document -> per-voice n-grams -> FingerprintIndex (one atomic batch)
Query:     Document voice -> n-grams -> one lookup per fingerprint -> ranking
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from fingerprint_index import FingerprintIndex, Match
from kern_file import Document
from kern_filters import FilterConfig, TokenFilter, trim_trailing_rests
from match_ranker import MatchResult, rank, to_ranked_dicts
from ngram_fingerprinting import NGramFingerprinter
from simplehash_config import SimplehashConfig
from simplehash_errors import IndexReadError, ParseError

logger = logging.getLogger(__name__)


@dataclass
class SearchResults:
    """
    Ranked matches for one query.

    `degraded` is set when one or more index lookups failed, so an empty
    result from a broken backend is not mistaken for "no matches".
    """
    matches: List[MatchResult] = field(default_factory=list)
    degraded: bool = False
    errors: List[str] = field(default_factory=list)
    query_ngrams: int = 0
    matched_ngrams: int = 0
    gram_size: Optional[int] = None

    def __iter__(self):
        return iter(self.matches)

    def __len__(self):
        return len(self.matches)

    def __getitem__(self, item):
        return self.matches[item]

    @property
    def coverage(self) -> float:
        """Percentage of query n-grams that matched at least one document."""
        if not self.query_ngrams:
            return 0.0
        return round((self.matched_ngrams / self.query_ngrams) * 100, 1)

    def ranked(self, top_k: Optional[int] = None) -> List[Dict]:
        matches = self.matches if top_k is None else self.matches[:top_k]
        return to_ranked_dicts(matches, self.matched_ngrams)


class Simplehash:
    """Entry point shared by the ingestion script and the HTTP server."""

    def __init__(self, index: FingerprintIndex = None, config: SimplehashConfig = None,
                 token_filter: TokenFilter = None):
        self.config = (config or SimplehashConfig()).validate()
        self.index = index if index is not None else FingerprintIndex()
        self.token_filter = token_filter or TokenFilter(FilterConfig(self.config.allowed_chars))
        self.fingerprinter = NGramFingerprinter(self.config.query_size_min,
                                                self.config.query_size_max,
                                                self.token_filter)

    def ingest(self, document: Document) -> int:
        """
        Index every voice of a document at every configured gram size.

        Returns:
            Number of records written

        Raises:
            IndexWriteError: nothing from this document was written
        """
        records = list(self.fingerprinter.records_for(document))
        return self.index.bulk_insert(records)

    def query_gram_size(self, token_count: int) -> Optional[int]:
        """
        Gram size used for a query with `token_count` filtered tokens, or None
        when the query is too short to match anything in the index.
        """
        if self.config.query_gram_size is not None:
            size = self.config.query_gram_size
        else:
            size = min(token_count, self.config.query_size_max)
        if size < self.config.query_size_min or size > token_count:
            return None
        return size

    def query_tokens(self, document: Document, voice_index: int) -> List[str]:
        voice = document.voices.get(voice_index)
        if voice is None:
            raise ParseError(f"no kern voice at column {voice_index} "
                             f"(voices: {sorted(document.voices)})", document.source_id)
        return trim_trailing_rests(self.token_filter.apply_filters(voice.tokens))

    def lookup(self, document: Document, voice_index: int) -> SearchResults:
        """
        Rank indexed documents against one voice of a query document.

        Args:
            document: Parsed query
            voice_index: Column index of the query voice

        Raises:
            ParseError: the document has no voice at voice_index
        """
        tokens = self.query_tokens(document, voice_index)
        gram_size = self.query_gram_size(len(tokens))
        if gram_size is None:
            logger.info("Query has %d token(s), too short for the index", len(tokens))
            return SearchResults()

        fingerprints = self.fingerprinter.query_fingerprints(tokens, gram_size)
        outcomes = self._dispatch(fingerprints)

        results = SearchResults(query_ngrams=len(fingerprints), gram_size=gram_size)
        per_fingerprint = []
        for fp, rows, error in outcomes:
            if error is not None:
                logger.warning("Index lookup failed for %d: %s", fp, error)
                results.degraded = True
                results.errors.append(str(error))
                continue
            if rows:
                results.matched_ngrams += 1
            per_fingerprint.append(rows)

        results.matches = rank(per_fingerprint)
        return results

    def _lookup_one(self, fp: int) -> Tuple[int, List[Match], Optional[IndexReadError]]:
        try:
            return fp, self.index.lookup(fp), None
        except IndexReadError as e:
            return fp, [], e

    def _dispatch(self, fingerprints: List[int]):
        workers = self.config.lookup_workers
        if workers <= 1 or len(fingerprints) <= 1:
            return [self._lookup_one(fp) for fp in fingerprints]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self._lookup_one, fingerprints))

    def documents_searched(self) -> int:
        return self.index.distinct_document_count()

    def dataset_name(self, source_id: str) -> str:
        return self.index.dataset_name(source_id)
