"""Tests for the kern parser."""

import dataclasses
import logging

import pytest

from kern_file import (
    Document,
    ParserState,
    parse_file,
    parse_lines,
    parse_metadata_line,
    parse_text,
    starts_event_data,
)
from simplehash_errors import ParseError


def test_voices_are_keyed_by_column(two_voice_document) -> None:
    assert sorted(two_voice_document.voices) == [0, 1]
    assert two_voice_document.voices[0].index == 0
    assert two_voice_document.voices[1].index == 1


def test_instrument_names(two_voice_document) -> None:
    assert two_voice_document.voices[0].name == "soprano"
    assert two_voice_document.voices[1].name == "bass"


def test_raw_tokens_in_file_order(two_voice_document) -> None:
    assert two_voice_document.voices[0].tokens == ("=1", "4cL", "4dJ", "=2", "4e", "4f")
    assert two_voice_document.voices[1].tokens == ("=1", "4C", "4D", "=2", "4E", ".")


def test_filtered_tokens(two_voice_document) -> None:
    assert two_voice_document.voices[0].filtered_tokens() == ["4c", "4d", "4e", "4f"]
    assert two_voice_document.voices[1].filtered_tokens() == ["4C", "4D", "4E"]


def test_metadata_fields(two_voice_document) -> None:
    meta = two_voice_document.metadata
    assert meta["composer"] == "Bach, Johann Sebastian"
    assert meta["composer_born"] == "1685"
    assert meta["composer_died"] == "1750"
    assert meta["title"] == "Test Chorale"
    assert meta["catalog"] == "BWV"
    assert meta["catalog_number"] == "269"
    assert meta["collection_name"] == "Chorales"
    assert two_voice_document.title == "Test Chorale"
    assert two_voice_document.composer == "Bach, Johann Sebastian"


def test_malformed_metadata_line_is_skipped_and_logged(two_voice_text, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="kern_file"):
        document = parse_text(two_voice_text, source_id="A.krn")
    assert "NOSEPARATOR" in caplog.text
    assert len(document.voices) == 2


def test_unknown_metadata_keys_are_ignored() -> None:
    assert parse_metadata_line("!!!YOR: somewhere") == {}
    assert parse_metadata_line("!!!OTL: Title: with colon") == {"title": "Title: with colon"}
    with pytest.raises(ValueError):
        parse_metadata_line("!!!OTL")


def test_source_and_dataset(two_voice_document) -> None:
    assert two_voice_document.source_id == "A.krn"
    assert two_voice_document.dataset_name == "chorales"


def test_terminator_stops_parsing(two_voice_document) -> None:
    assert "4g" not in two_voice_document.voices[0].tokens


def test_non_kern_columns_get_no_voice() -> None:
    text = "**kern\t**dynam\t**kern\n4c\tp\t4e\n4d\t.\t4f\n*-\t*-\t*-\n"
    document = parse_text(text)
    assert sorted(document.voices) == [0, 2]
    assert document.voices[2].tokens == ("4e", "4f")
    assert document.voice_at(1).index == 2
    assert document.voice_at(2) is None


def test_zero_kern_voices_is_not_an_error() -> None:
    document = parse_text("**text\n*\nhello\n*-\n")
    assert dict(document.voices) == {}


def test_empty_input() -> None:
    document = parse_lines([])
    assert dict(document.voices) == {}
    assert dict(document.metadata) == {}


def test_event_data_before_declaration_is_a_parse_error() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_text("!!!COM: Someone\n4c\n4d\n", source_id="bad.krn")
    assert excinfo.value.source_id == "bad.krn"
    assert excinfo.value.line_no == 2
    assert "bad.krn:2" in str(excinfo.value)


def test_document_is_immutable(two_voice_document) -> None:
    with pytest.raises(dataclasses.FrozenInstanceError):
        two_voice_document.source_id = "other"
    with pytest.raises(TypeError):
        two_voice_document.voices[5] = None
    with pytest.raises(TypeError):
        two_voice_document.metadata["title"] = "x"


def test_starts_event_data_predicate() -> None:
    assert not starts_event_data("*clefG2\t*clefF4", 2)
    assert not starts_event_data("!! comment", 2)
    assert not starts_event_data("   ", 2)
    assert starts_event_data("=1\t=1", 2)
    assert starts_event_data("4c\t4d", 2)


def test_parser_states() -> None:
    assert ParserState.HEADER is not ParserState.EVENTS


def test_interpretations_inside_event_data_are_kept_raw() -> None:
    document = parse_text("**kern\n4c\n*clefF4\n4d\n*-\n")
    assert document.voices[0].tokens == ("4c", "*clefF4", "4d")
    assert document.voices[0].filtered_tokens() == ["4c", "4d"]


def test_quoted_instrument_names() -> None:
    document = parse_text('**kern\t**kern\n*I"Bass\t*I"Soprano\n*clefF4\t*clefG2\n4C\t4c\n*-\t*-\n')
    assert document.voices[0].name == "Bass"
    assert document.voices[1].name == "Soprano"
    assert document.voices[0].tokens == ("4C",)


def test_instrument_name_after_unrecognized_interpretation() -> None:
    document = parse_text("**kern\n*met(c)\n*Iviola\n4c\n*-\n")
    assert document.voices[0].name == "viola"
    assert document.voices[0].tokens == ("*met(c)", "4c")
    assert document.voices[0].filtered_tokens() == ["4c"]


def test_parse_file_latin1_and_crlf(tmp_path) -> None:
    path = tmp_path / "dvorak.krn"
    path.write_bytes(b"!!!COM: Dvo\xf8\xe1k\r\n**kern\r\n4c\r\n8d\r\n*-\r\n")
    document = parse_file(path, dataset_name="latin")
    assert document.source_id == "dvorak.krn"
    assert document.dataset_name == "latin"
    assert document.composer == b"Dvo\xf8\xe1k".decode("iso-8859-1")
    assert document.voices[0].tokens == ("4c", "8d")


def test_default_document() -> None:
    document = Document()
    assert document.voice_at(0) is None
    assert document.title is None
