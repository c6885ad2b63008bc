"""
Token filters for Humdrum **kern data.

Predicates classify single kern tokens (rests, barlines, interpretations,
instrument classes). TokenFilter reduces a spine's raw tokens to the
canonical pitch/rhythm alphabet used for n-gram fingerprints.

See https://www.humdrum.org/rep/kern/
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from simplehash_config import DEFAULT_ALLOWED_CHARS
from simplehash_errors import ConfigurationError

logger = logging.getLogger(__name__)

NULL_TOKEN = "."
TERMINATOR = "*-"
INSTRUMENT_CLASS_MARKER = "*I"

_NULL_RE = re.compile(r"\.")
_REST_RE = re.compile(r"\d+\.*r+")
_MEASURE_RE = re.compile(r"=+([0-9a-z]*(\|)?:?(\|){0,2})([;:!'`\-])?")
_INTERPRETATION_TOKEN = r"(\*+[a-zA-Z0-9:\[\]/#-]*\s*)"
_INSTRUMENT_CLASS_RE = re.compile(r"\*I(\S+)")
_NOT_INSTRUMENT_NAME_RE = re.compile(r"[^A-HJ-Za-z0-9]+")
# Lookaheads only cover **kern and **silbe representations
_TANDEM_RE = re.compile(
    r"\*(?!I)(?!\*)(?!kern|silbe)"
    r"(clef[a-zA-Z]+[0-9]|k\[[a-zA-Z#\-]*\]|M\d+/\d+|[a-gA-G]:|met\([a-z]\)|M{2}[0-9]*)?\s*"
)


def is_null_token(token: str) -> bool:
    """In kern, a null token is a single period."""
    return _NULL_RE.fullmatch(token) is not None


def is_rest_token(token: str) -> bool:
    """Duration digits, optional dots, then one or more 'r'."""
    return _REST_RE.fullmatch(token) is not None


def is_measure_delimiter(token: str) -> bool:
    return _MEASURE_RE.fullmatch(token) is not None


def is_interpretation(line: str, voice_count: int) -> bool:
    """
    True if the whole line is exactly `voice_count` interpretation tokens.

    Pass a single spine token with voice_count=1 to classify one token.
    """
    if voice_count < 1:
        return False
    pattern = "%s{%d}" % (_INTERPRETATION_TOKEN, voice_count)
    return re.fullmatch(pattern, line.strip()) is not None


def is_tandem_interpretation(token: str) -> bool:
    return _TANDEM_RE.fullmatch(token) is not None


def is_instrument_class(token: str) -> bool:
    return _INSTRUMENT_CLASS_RE.fullmatch(token) is not None


def filter_instrument_class(token: str) -> str:
    """Strip the '*I' marker from an instrument class token: '*Iviola' -> 'viola'."""
    return _NOT_INSTRUMENT_NAME_RE.sub("", token)


def remove_null_tokens(tokens: Iterable[str]) -> List[str]:
    return [token for token in tokens if not is_null_token(token)]


def trim_trailing_rests(tokens: Sequence[str]) -> List[str]:
    """
    Drop rest tokens from the end of a token sequence.

    ['4c', '4r', '8r'] -> ['4c']; a sequence that does not end in a rest
    comes back unchanged, and an all-rest sequence comes back empty.
    """
    last_note = len(tokens)
    while last_note > 0 and is_rest_token(tokens[last_note - 1]):
        last_note -= 1
    return list(tokens[:last_note])


def partition(tokens: Sequence[str], size: int) -> List[List[str]]:
    """Split tokens into consecutive chunks of `size`; the last may be shorter."""
    if size < 1:
        raise ValueError(f"partition size must be >= 1, got {size}")
    return [list(tokens[i:i + size]) for i in range(0, len(tokens), size)]


@dataclass(frozen=True)
class FilterConfig:
    """Characters kept by TokenFilter, as the body of a regex character class."""
    allowed_chars: str = DEFAULT_ALLOWED_CHARS


class TokenFilter:
    """
    Reduces raw kern tokens to the canonical pitch/rhythm alphabet.

    The allowed alphabet belongs to the instance, so two ingestion runs with
    different alphabets never see each other's setting.
    """

    def __init__(self, config: FilterConfig = None):
        config = config or FilterConfig()
        self._disallowed = self._compile(config.allowed_chars)
        self._allowed_chars = config.allowed_chars

    @staticmethod
    def _compile(allowed_chars: str):
        if not allowed_chars:
            raise ConfigurationError("allowed alphabet must not be empty")
        try:
            return re.compile("[^%s]+" % allowed_chars)
        except re.error as e:
            raise ConfigurationError(f"invalid allowed alphabet {allowed_chars!r}: {e}") from e

    @property
    def allowed_chars(self) -> str:
        return self._allowed_chars

    @property
    def filter_expression(self) -> str:
        """The regex of characters removed by strip_disallowed_chars."""
        return self._disallowed.pattern

    def set_allowed_alphabet(self, allowed_chars: str) -> None:
        self._disallowed = self._compile(allowed_chars)
        self._allowed_chars = allowed_chars
        logger.debug("Filter expression set to %s", self._disallowed.pattern)

    def strip_disallowed_chars(self, token: str) -> str:
        return self._disallowed.sub("", token)

    def apply_filters(self, tokens: Iterable[str]) -> List[str]:
        """
        Filter a spine's raw tokens down to pitch and rhythm information.

        Order: barlines removed, interpretation and comment tokens removed,
        disallowed characters stripped (beams, articulations, ties, ...),
        null tokens and tokens left empty removed.
        """
        filtered = []
        for token in tokens:
            if is_measure_delimiter(token):
                continue
            if token.startswith("*") or token.startswith("!"):
                continue
            stripped = self.strip_disallowed_chars(token)
            if not stripped or is_null_token(stripped):
                continue
            filtered.append(stripped)
        return filtered


DEFAULT_FILTER = TokenFilter()
