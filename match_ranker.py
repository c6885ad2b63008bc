"""
Ranks documents by how many query n-grams they share.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple


@dataclass(frozen=True)
class MatchResult:
    source_id: str
    match_count: int


def rank(per_fingerprint_results: Iterable[Iterable[Tuple[str, int]]]) -> List[MatchResult]:
    """
    Sum match counts per source across every fingerprint's lookup result.

    Most matches first; ties go to the smaller source id.
    """
    totals = Counter()
    for rows in per_fingerprint_results:
        for source_id, count in rows:
            totals[source_id] += count

    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [MatchResult(source_id, count) for source_id, count in ordered]


def top_k(results: Sequence[MatchResult], k: int) -> List[MatchResult]:
    return list(results[:max(k, 0)])


def to_ranked_dicts(results: Sequence[MatchResult], matched_ngrams: int) -> List[Dict]:
    """
    Results as dicts with rank and confidence.

    Confidence is the share of matched query n-grams that hit the document.
    """
    ranked = []
    for i, result in enumerate(results):
        confidence = (result.match_count / matched_ngrams) * 100 if matched_ngrams else 0.0
        ranked.append({
            'rank': i + 1,
            'piece': result.source_id,
            'matches': result.match_count,
            'confidence': round(confidence, 1),
        })
    return ranked
