"""Shared kern fixtures."""

import pytest

from fingerprint_index import FingerprintIndex, MemoryStore, SQLiteStore
from kern_file import parse_text
from simplehash import Simplehash
from simplehash_config import SimplehashConfig

TWO_VOICE_KERN = """\
!!!COM: Bach, Johann Sebastian
!!!CDT: 1685/03/21/-1750/07/28/
!!!OTL: Test Chorale
!!!SCT: BWV 269
!!!XEN: Chorales
!!!NOSEPARATOR
!! a global comment
**kern\t**kern
*Isoprano\t*Ibass
*clefG2\t*clefF4
*M4/4\t*M4/4
=1\t=1
4cL\t4C
4dJ\t4D\textra
=2\t=2
4e\t4E
4f\t.
*-\t*-
4g\t4G
"""

OTHER_KERN = """\
**kern
*Ialto
8a
8b
8cc
8dd
*-
"""


def kern_document(source_id, tokens, dataset_name=""):
    """Single-voice kern document from a list of event tokens."""
    text = "**kern\n" + "\n".join(tokens) + "\n*-\n"
    return parse_text(text, source_id=source_id, dataset_name=dataset_name)


@pytest.fixture
def two_voice_text():
    return TWO_VOICE_KERN


@pytest.fixture
def two_voice_document():
    return parse_text(TWO_VOICE_KERN, source_id="A.krn", dataset_name="chorales")


@pytest.fixture
def other_document():
    return parse_text(OTHER_KERN, source_id="B.krn", dataset_name="misc")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SQLiteStore(tmp_path / "simplehash.sqlite")


@pytest.fixture
def trigram_config():
    return SimplehashConfig(query_size_min=3, query_size_max=3)


@pytest.fixture
def simplehash(trigram_config):
    return Simplehash(FingerprintIndex(MemoryStore()), trigram_config)
