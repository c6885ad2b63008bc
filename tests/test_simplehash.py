"""End-to-end tests for ingestion and lookup."""

import pytest

from conftest import kern_document
from fingerprint_index import FingerprintIndex, MemoryStore
from match_ranker import MatchResult
from simplehash import SearchResults, Simplehash
from simplehash_config import SimplehashConfig
from simplehash_errors import IndexReadError, IndexWriteError, ParseError


class FlakyStore(MemoryStore):
    """Fails lookups for a chosen set of fingerprints."""

    def __init__(self, failing=None):
        super().__init__()
        self.failing = failing

    def lookup_by_fingerprint(self, fp):
        if self.failing is None or fp in self.failing:
            raise RuntimeError("backend unavailable")
        return super().lookup_by_fingerprint(fp)


class RejectingStore(MemoryStore):
    def bulk_insert(self, records):
        raise RuntimeError("read-only database")


@pytest.mark.parametrize("query", [["4c", "4d", "4e"], ["4d", "4e", "4f"]])
def test_each_trigram_finds_the_document(simplehash, two_voice_document, query) -> None:
    simplehash.ingest(two_voice_document)
    results = simplehash.lookup(kern_document("<query>", query), 0)
    assert list(results) == [MatchResult("A.krn", 1)]
    assert results[0].match_count == 1
    assert not results.degraded


def test_ingest_returns_record_count(simplehash, two_voice_document) -> None:
    # two soprano trigrams and one bass trigram
    assert simplehash.ingest(two_voice_document) == 3


def test_documents_searched(simplehash, two_voice_document, other_document) -> None:
    assert simplehash.documents_searched() == 0
    simplehash.ingest(two_voice_document)
    simplehash.ingest(other_document)
    simplehash.ingest(kern_document("C.krn", ["2c", "2e", "2g"]))
    assert simplehash.documents_searched() == 3


def test_no_match_is_empty_not_degraded(simplehash, two_voice_document) -> None:
    simplehash.ingest(two_voice_document)
    results = simplehash.lookup(kern_document("<query>", ["1c", "1d", "1e"]), 0)
    assert len(results) == 0
    assert not results.degraded
    assert results.coverage == 0.0


def test_ranking_across_documents(trigram_config) -> None:
    simplehash = Simplehash(config=trigram_config)
    simplehash.ingest(kern_document("long.krn", ["4c", "4d", "4e", "4f", "4g"]))
    simplehash.ingest(kern_document("short.krn", ["4c", "4d", "4e"]))

    results = simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e", "4f", "4g"]), 0)
    assert list(results) == [MatchResult("long.krn", 3), MatchResult("short.krn", 1)]
    assert results.query_ngrams == 3
    assert results.matched_ngrams == 3
    assert results.coverage == 100.0


def test_query_gram_size_follows_query_length() -> None:
    simplehash = Simplehash(config=SimplehashConfig(query_size_min=3, query_size_max=5))
    assert simplehash.query_gram_size(2) is None
    assert simplehash.query_gram_size(4) == 4
    assert simplehash.query_gram_size(9) == 5


def test_fixed_query_gram_size() -> None:
    simplehash = Simplehash(config=SimplehashConfig(query_size_min=3, query_size_max=5,
                                                    query_gram_size=3))
    assert simplehash.query_gram_size(9) == 3
    assert simplehash.query_gram_size(2) is None


def test_query_shorter_than_minimum(simplehash, two_voice_document) -> None:
    simplehash.ingest(two_voice_document)
    results = simplehash.lookup(kern_document("<query>", ["4c", "4d"]), 0)
    assert len(results) == 0
    assert results.query_ngrams == 0


def test_trailing_rests_are_trimmed_from_queries(simplehash, two_voice_document) -> None:
    simplehash.ingest(two_voice_document)
    results = simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e", "4r", "8r"]), 0)
    assert list(results) == [MatchResult("A.krn", 1)]
    assert results.coverage == 100.0


def test_query_uses_requested_voice(simplehash, two_voice_document) -> None:
    simplehash.ingest(two_voice_document)
    query = kern_document("<query>", ["4C", "4D", "4E"])
    assert list(simplehash.lookup(query, 0)) == [MatchResult("A.krn", 1)]


def test_missing_voice_is_a_parse_error(simplehash, two_voice_document) -> None:
    with pytest.raises(ParseError):
        simplehash.lookup(two_voice_document, 7)


def test_failed_lookups_degrade_the_result(trigram_config, two_voice_document) -> None:
    simplehash = Simplehash(FingerprintIndex(FlakyStore()), trigram_config)
    simplehash.ingest(two_voice_document)
    results = simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e"]), 0)
    assert results.degraded
    assert results.errors
    assert len(results) == 0


def test_partial_failure_keeps_other_matches(trigram_config, two_voice_document) -> None:
    from ngram_fingerprinting import fingerprint

    store = FlakyStore(failing={fingerprint(("4d", "4e", "4f"))})
    simplehash = Simplehash(FingerprintIndex(store), trigram_config)
    simplehash.ingest(two_voice_document)

    results = simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e", "4f"]), 0)
    assert results.degraded
    assert len(results.errors) == 1
    assert list(results) == [MatchResult("A.krn", 1)]


def test_failed_ingest_writes_nothing(trigram_config, two_voice_document) -> None:
    simplehash = Simplehash(FingerprintIndex(RejectingStore()), trigram_config)
    with pytest.raises(IndexWriteError):
        simplehash.ingest(two_voice_document)
    assert simplehash.documents_searched() == 0


def test_parallel_lookups_match_sequential(two_voice_document, other_document) -> None:
    results = []
    for workers in (1, 4):
        config = SimplehashConfig(query_size_min=2, query_size_max=3, lookup_workers=workers,
                                  query_gram_size=2)
        simplehash = Simplehash(config=config)
        simplehash.ingest(two_voice_document)
        simplehash.ingest(other_document)
        results.append(list(simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e", "8a", "8b"]), 0)))
    assert results[0] == results[1]
    assert results[0][0] == MatchResult("A.krn", 2)


def test_dataset_name(simplehash, two_voice_document) -> None:
    simplehash.ingest(two_voice_document)
    assert simplehash.dataset_name("A.krn") == "chorales"


def test_search_results_ranked() -> None:
    results = SearchResults(matches=[MatchResult("a.krn", 2)], query_ngrams=4, matched_ngrams=2)
    assert results.coverage == 50.0
    assert results.ranked() == [{"rank": 1, "piece": "a.krn", "matches": 2, "confidence": 100.0}]
    assert results.ranked(top_k=0) == []


def test_index_read_error_is_not_raised_from_lookup(trigram_config) -> None:
    simplehash = Simplehash(FingerprintIndex(FlakyStore()), trigram_config)
    try:
        simplehash.lookup(kern_document("<query>", ["4c", "4d", "4e"]), 0)
    except IndexReadError:
        pytest.fail("lookup must degrade instead of raising")
