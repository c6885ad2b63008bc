"""
Fingerprint index: append-only storage of hashed n-grams and grouped lookup.

FingerprintIndex sits on top of a store. Two stores are provided:

    MemoryStore  - nested dicts, saved and loaded with pickle
    SQLiteStore  - the 'simplehash' table layout

Each bulk insert is all-or-nothing: a document's fingerprints are either all
visible to lookups or not at all.
"""

import logging
import os
import pickle
import sqlite3
import threading
from collections import defaultdict
from contextlib import closing
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from simplehash_errors import IndexReadError, IndexWriteError

logger = logging.getLogger(__name__)

Match = Tuple[str, int]


@dataclass(frozen=True)
class IndexRecord:
    """One stored n-gram. Field set is fixed for index compatibility."""
    fingerprint: int
    source_id: str
    voice_name: str
    dataset_name: str
    gram_size: int
    canonical_gram_text: str

    def as_row(self) -> Dict[str, object]:
        return {
            'fingerprint': self.fingerprint,
            'sourceId': self.source_id,
            'voiceName': self.voice_name,
            'datasetName': self.dataset_name,
            'gramSize': self.gram_size,
            'canonicalGramText': self.canonical_gram_text,
        }


def _sorted_matches(counts: Iterable[Match]) -> List[Match]:
    return sorted(counts, key=lambda item: (-item[1], item[0]))


class MemoryStore:
    """
    In-process store.

    database[fingerprint][source_id] = [(voice_name, dataset_name, gram_size, gram_text), ...]
    """

    def __init__(self):
        self.database = defaultdict(lambda: defaultdict(list))
        self._sources = {}
        self._lock = threading.Lock()

    def bulk_insert(self, records: Sequence[IndexRecord]) -> int:
        # Stage first so nothing is applied unless every record is valid
        staged = []
        for record in records:
            if not isinstance(record.fingerprint, int) or not isinstance(record.source_id, str):
                raise TypeError(f"malformed index record: {record!r}")
            staged.append((record.fingerprint, record.source_id,
                           (record.voice_name, record.dataset_name,
                            record.gram_size, record.canonical_gram_text)))

        with self._lock:
            for fp, source_id, payload in staged:
                self.database[fp][source_id].append(payload)
                self._sources[source_id] = payload[1]
        return len(staged)

    def lookup_by_fingerprint(self, fp: int) -> List[Match]:
        with self._lock:
            by_source = self.database.get(fp)
            if not by_source:
                return []
            counts = [(source_id, len(rows)) for source_id, rows in by_source.items()]
        return _sorted_matches(counts)

    def distinct_count(self) -> int:
        with self._lock:
            return len(self._sources)

    def dataset_name(self, source_id: str) -> str:
        with self._lock:
            return self._sources.get(source_id, '')

    def __len__(self):
        """Number of unique fingerprints."""
        return len(self.database)

    def save(self, filepath):
        """Save fingerprint database to file"""
        with self._lock:
            plain = {fp: {source_id: list(rows) for source_id, rows in by_source.items()}
                     for fp, by_source in self.database.items()}
        with open(filepath, 'wb') as f:
            pickle.dump(plain, f)
        logger.info("Fingerprint database saved to %s", filepath)

    def load(self, filepath):
        """Load fingerprint database from file"""
        with open(filepath, 'rb') as f:
            plain = pickle.load(f)
        database = defaultdict(lambda: defaultdict(list))
        sources = {}
        for fp, by_source in plain.items():
            for source_id, rows in by_source.items():
                database[fp][source_id].extend(rows)
                if rows:
                    sources[source_id] = rows[-1][1]
        with self._lock:
            self.database = database
            self._sources = sources
        logger.info("Fingerprint database loaded from %s", filepath)


class SQLiteStore:
    """
    SQLite store. One connection per call; a bulk insert is one transaction.
    """

    CREATE_TABLE = (
        "CREATE TABLE IF NOT EXISTS simplehash ("
        " gram_id INTEGER PRIMARY KEY,"
        " dataset_name TEXT,"
        " filename TEXT,"
        " partname TEXT,"
        " gram_size INTEGER,"
        " gram_raw TEXT,"
        " gram_hashed INTEGER"
        ");"
    )
    CREATE_INDEX = "CREATE INDEX IF NOT EXISTS simplehash_gram_hashed ON simplehash (gram_hashed);"
    INSERT = (
        "INSERT INTO simplehash (dataset_name, filename, partname, gram_size, gram_raw, gram_hashed)"
        " VALUES (?, ?, ?, ?, ?, ?);"
    )
    SELECT_WITH_HASH = (
        "SELECT filename, COUNT(gram_id) AS num_matches FROM simplehash"
        " WHERE gram_hashed = ? GROUP BY filename"
        " ORDER BY num_matches DESC, filename ASC;"
    )
    COUNT_FILES = "SELECT COUNT(DISTINCT filename) AS num_files FROM simplehash;"
    SELECT_DATASET = "SELECT dataset_name FROM simplehash WHERE filename = ? LIMIT 1;"

    def __init__(self, db_path):
        self.db_path = str(db_path)
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(self.CREATE_TABLE)
                conn.execute(self.CREATE_INDEX)

    def _connect(self):
        return sqlite3.connect(self.db_path, timeout=30)

    def bulk_insert(self, records: Sequence[IndexRecord]) -> int:
        rows = [(r.dataset_name, r.source_id, r.voice_name, r.gram_size,
                 r.canonical_gram_text, r.fingerprint) for r in records]
        with closing(self._connect()) as conn:
            # Commits on success, rolls back on any exception
            with conn:
                conn.executemany(self.INSERT, rows)
        return len(rows)

    def lookup_by_fingerprint(self, fp: int) -> List[Match]:
        with closing(self._connect()) as conn:
            rows = conn.execute(self.SELECT_WITH_HASH, (fp,)).fetchall()
        return [(filename, int(count)) for filename, count in rows]

    def distinct_count(self) -> int:
        with closing(self._connect()) as conn:
            (count,) = conn.execute(self.COUNT_FILES).fetchone()
        return int(count)

    def dataset_name(self, source_id: str) -> str:
        with closing(self._connect()) as conn:
            row = conn.execute(self.SELECT_DATASET, (source_id,)).fetchone()
        return (row[0] or '') if row else ''


class FingerprintIndex:
    """Bulk insert and grouped lookup over a store."""

    def __init__(self, store=None):
        self.store = store if store is not None else MemoryStore()

    def bulk_insert(self, records: Sequence[IndexRecord]) -> int:
        """
        Insert a batch of records atomically.

        Returns:
            Number of records inserted

        Raises:
            IndexWriteError: the store failed; nothing from the batch is visible
        """
        records = list(records)
        if not records:
            return 0
        try:
            inserted = self.store.bulk_insert(records)
        except Exception as e:
            raise IndexWriteError(f"bulk insert of {len(records)} records failed: {e}") from e
        logger.debug("Inserted %d records", inserted)
        return inserted

    def lookup(self, fp: int) -> List[Match]:
        """
        (source_id, match_count) pairs for one fingerprint, most matches first.

        Raises:
            IndexReadError: the store failed
        """
        try:
            matches = self.store.lookup_by_fingerprint(fp)
        except Exception as e:
            raise IndexReadError(f"lookup of fingerprint {fp} failed: {e}") from e
        return _sorted_matches(matches)

    def distinct_document_count(self) -> int:
        try:
            return self.store.distinct_count()
        except Exception as e:
            raise IndexReadError(f"counting documents failed: {e}") from e

    def dataset_name(self, source_id: str) -> str:
        """Dataset a source was ingested with; '' when the store cannot tell."""
        lookup = getattr(self.store, 'dataset_name', None)
        if lookup is None:
            return ''
        try:
            return lookup(source_id)
        except Exception as e:
            raise IndexReadError(f"dataset lookup for {source_id} failed: {e}") from e


def open_store(db_path):
    """
    Pick a store from the path: ':memory:' or a .pkl/.pickle file gives a
    MemoryStore (loaded when the file exists), anything else is SQLite.
    """
    db_path = str(db_path)
    if db_path == ':memory:':
        return MemoryStore()
    if db_path.lower().endswith(('.pkl', '.pickle')):
        store = MemoryStore()
        if os.path.exists(db_path):
            store.load(db_path)
        return store
    return SQLiteStore(db_path)
