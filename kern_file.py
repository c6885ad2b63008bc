"""
Humdrum **kern parser.

Turns the lines of a kern document into a Document: header metadata plus one
Voice (spine) per **kern column, holding that column's raw tokens in file
order.

The parser is a two-state automaton. It starts in HEADER, reading metadata,
the exclusive interpretation line and instrument classes, and switches to
EVENTS on the first line that starts_event_data() accepts. Parsing ends at the
spine terminator '*-'.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from kern_filters import (
    DEFAULT_FILTER,
    INSTRUMENT_CLASS_MARKER,
    TERMINATOR,
    TokenFilter,
    filter_instrument_class,
    is_instrument_class,
    is_interpretation,
)
from simplehash_errors import ParseError

logger = logging.getLogger(__name__)

KERN_ENCODING = "iso-8859-1"
METADATA_MARKER = "!!!"
COMMENT_MARKER = "!"
EXCLUSIVE_MARKER = "**"
VOICE_DECLARATION = "**kern"

_YEAR_RE = re.compile(r"\d{4}")


class ParserState(Enum):
    HEADER = "header"
    EVENTS = "events"


@dataclass(frozen=True)
class Voice:
    """One **kern spine."""
    index: int
    name: Optional[str] = None
    tokens: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.tokens)

    def filtered_tokens(self, token_filter: TokenFilter = None) -> List[str]:
        """Canonical tokens for this spine. Recomputed on every call."""
        return (token_filter or DEFAULT_FILTER).apply_filters(self.tokens)


@dataclass(frozen=True)
class Document:
    """A parsed kern source. Never mutated after parse."""
    source_id: str = ""
    dataset_name: str = ""
    metadata: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    voices: Mapping[int, Voice] = field(default_factory=lambda: MappingProxyType({}))

    def voice_at(self, position: int) -> Optional[Voice]:
        """The n-th kern voice in column order (0-based), regardless of column index."""
        ordered = [self.voices[key] for key in sorted(self.voices)]
        if 0 <= position < len(ordered):
            return ordered[position]
        return None

    @property
    def title(self) -> Optional[str]:
        return self.metadata.get("title")

    @property
    def composer(self) -> Optional[str]:
        return self.metadata.get("composer")


# ---------------------------------------------------------------------------
# Metadata (reference records, '!!!KEY: value')
# ---------------------------------------------------------------------------

def _catalog(value: str) -> Dict[str, str]:
    parts = value.split(" ", 1)
    fields = {"catalog": parts[0]}
    if len(parts) > 1:
        fields["catalog_number"] = parts[1].strip()
    return fields


def _composer_dates(value: str) -> Dict[str, str]:
    years = _YEAR_RE.findall(value)
    fields = {}
    if years:
        fields["composer_born"] = years[0]
    if len(years) > 1:
        fields["composer_died"] = years[1]
    return fields


METADATA_FIELDS = {
    "SCT": _catalog,
    "XEN": lambda value: {"collection_name": value},
    "COM": lambda value: {"composer": value},
    "CDT": _composer_dates,
    "OTL": lambda value: {"title": value},
}


def parse_metadata_line(line: str) -> Dict[str, str]:
    """
    Map one '!!!KEY: value' line to metadata fields.

    Unknown keys give an empty dict. Raises ValueError if the ':' separator
    is missing.
    """
    if ":" not in line:
        raise ValueError(f"metadata line has no ':' separator: {line!r}")
    key, value = line.split(":", 1)
    handler = METADATA_FIELDS.get(key.lstrip("!").strip())
    if handler is None:
        return {}
    return handler(value.strip())


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def starts_event_data(line: str, voice_count: int) -> bool:
    """
    Transition predicate for the HEADER -> EVENTS switch.

    A line starts event data unless it is blank, a metadata/comment line or a
    whole-line interpretation for `voice_count` columns.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith(COMMENT_MARKER):
        return False
    return not is_interpretation(stripped, voice_count)


class _DocumentBuilder:
    """Mutable state for one parse call; frozen into a Document at the end."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        self.metadata: Dict[str, str] = {}
        self.columns: Optional[int] = None
        self.tokens: Dict[int, List[str]] = {}
        self.names: Dict[int, Optional[str]] = {}

    def declare(self, columns: List[str]) -> None:
        self.columns = len(columns)
        for i, column in enumerate(columns):
            if column == VOICE_DECLARATION:
                self.tokens[i] = []
                self.names[i] = None

    def name_voices(self, columns: List[str]) -> None:
        for i, column in enumerate(columns):
            if i in self.tokens and is_instrument_class(column):
                self.names[i] = filter_instrument_class(column)

    def add_events(self, columns: List[str]) -> None:
        for i, column in enumerate(columns):
            voice_tokens = self.tokens.get(i)
            if voice_tokens is not None:
                voice_tokens.append(column)

    def build(self, dataset_name: str) -> Document:
        voices = {
            i: Voice(index=i, name=self.names.get(i), tokens=tuple(tokens))
            for i, tokens in self.tokens.items()
        }
        return Document(
            source_id=self.source_id,
            dataset_name=dataset_name or "",
            metadata=MappingProxyType(dict(self.metadata)),
            voices=MappingProxyType(voices),
        )


def parse_lines(lines: Iterable[str], source_id: str = "", dataset_name: str = "") -> Document:
    """
    Parse kern lines into a Document.

    Args:
        lines: Lines of the document, with or without line terminators
        source_id: Stable identifier, usually the file name
        dataset_name: Provenance group attached to the document

    Raises:
        ParseError: if event data starts before the '**' declaration line
    """
    builder = _DocumentBuilder(source_id)
    state = ParserState.HEADER

    for line_no, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")

        if TERMINATOR in line.split():
            break

        if line.startswith(METADATA_MARKER):
            try:
                builder.metadata.update(parse_metadata_line(line))
            except ValueError as e:
                logger.warning("%s:%d: skipping metadata line: %s", source_id or "<query>", line_no, e)
            continue

        if line.startswith(COMMENT_MARKER) or not line.strip():
            continue

        columns = line.split()

        if builder.columns is None:
            if line.startswith(EXCLUSIVE_MARKER):
                builder.declare(columns)
                continue
            raise ParseError("event data found before the exclusive interpretation line",
                             source_id, line_no)

        # Instrument classes name voices in either phase and are never events
        if INSTRUMENT_CLASS_MARKER in line:
            builder.name_voices(columns)
            continue

        if state is ParserState.HEADER:
            if not starts_event_data(line, builder.columns):
                continue
            state = ParserState.EVENTS

        builder.add_events(columns)

    document = builder.build(dataset_name)
    logger.debug("Parsed %s: %d voice(s)", source_id or "<query>", len(document.voices))
    return document


def parse_text(text: str, source_id: str = "", dataset_name: str = "") -> Document:
    return parse_lines(text.splitlines(), source_id=source_id, dataset_name=dataset_name)


def parse_file(path, dataset_name: str = "") -> Document:
    """Parse a .krn file. The source id is the file name."""
    path = Path(path)
    with open(path, "r", encoding=KERN_ENCODING, newline="") as f:
        return parse_lines(f, source_id=path.name, dataset_name=dataset_name)
