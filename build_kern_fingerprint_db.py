#!/usr/bin/env python3
"""
Builds the fingerprint database from a directory of kern files.

Every .krn file under the data directory is parsed, each of its **kern spines
is cut into n-grams of every size between QUERY_SIZE_MIN and QUERY_SIZE_MAX,
and the hashed n-grams are written to the index, one atomic batch per file.
A clefdataset.json next to a file names the dataset it belongs to.
"""

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import lru_cache
from typing import List, Optional, Sequence

import pandas as pd
from tqdm import tqdm

from fingerprint_index import FingerprintIndex, IndexRecord, MemoryStore, open_store
from kern_file import parse_file
from ngram_fingerprinting import get_kern_files
from simplehash import Simplehash
from simplehash_config import SimplehashConfig
from simplehash_errors import ConfigurationError, IndexWriteError, ParseError

logger = logging.getLogger(__name__)

DATASET_DESCRIPTOR = 'clefdataset.json'
CSV_COLUMNS = ['filename', 'partname', 'gram_size', 'gram_raw', 'gram_hashed', 'dataset_name']


@lru_cache(maxsize=None)
def get_dataset_name(directory: str) -> str:
    """Dataset name from <directory>/clefdataset.json, or '' if there is none."""
    descriptor = os.path.join(directory, DATASET_DESCRIPTOR)
    if not os.path.exists(descriptor):
        return ''
    try:
        with open(descriptor, 'r', encoding='utf-8') as f:
            attributes = json.load(f).get('datasetAttributes', {})
    except (OSError, ValueError, AttributeError) as e:
        logger.warning("Could not read %s: %s", descriptor, e)
        return ''
    if not isinstance(attributes, dict):
        return ''
    return str(attributes.get('name', ''))


def prepare_records(kern_file: str, simplehash: Simplehash) -> List[IndexRecord]:
    """Parse and hash one file. Pure per call, safe to run in a thread pool."""
    dataset_name = get_dataset_name(os.path.dirname(os.path.abspath(kern_file)))
    document = parse_file(kern_file, dataset_name=dataset_name)
    return list(simplehash.fingerprinter.records_for(document))


def write_csv_mirror(records: Sequence[IndexRecord], csv_path: str) -> int:
    """Append records to the diagnostic CSV mirror. Writes the header once."""
    if not records:
        return 0
    df = pd.DataFrame(
        [{
            'filename': r.source_id,
            'partname': r.voice_name,
            'gram_size': r.gram_size,
            'gram_raw': r.canonical_gram_text,
            'gram_hashed': r.fingerprint,
            'dataset_name': r.dataset_name,
        } for r in records],
        columns=CSV_COLUMNS,
    )
    write_header = not os.path.exists(csv_path) or os.path.getsize(csv_path) == 0
    df.to_csv(csv_path, mode='a', header=write_header, index=False)
    return len(df)


def build_database(kern_files: Sequence[str], simplehash: Simplehash,
                   csv_path: Optional[str] = None, workers: int = 4) -> dict:
    """
    Build fingerprint database from collection of kern files

    Parsing and hashing run in parallel; each file's records are inserted as
    one batch, so a failing file never leaves partial fingerprints behind.

    Returns:
        Dict with 'files', 'records' and 'failed' (list of (path, reason))
    """
    print(f"Building fingerprint database for {len(kern_files)} kern files...")

    stats = {'files': 0, 'records': 0, 'failed': []}

    with ThreadPoolExecutor(max_workers=max(workers, 1)) as pool:
        futures = {pool.submit(prepare_records, path, simplehash): path for path in kern_files}

        for future in tqdm(as_completed(futures), total=len(futures), desc="Processing kern files"):
            path = futures[future]
            try:
                records = future.result()
                inserted = simplehash.index.bulk_insert(records)
            except (ParseError, IndexWriteError, OSError) as e:
                logger.warning("Skipping %s: %s", path, e)
                stats['failed'].append((path, str(e)))
                continue

            if csv_path:
                write_csv_mirror(records, csv_path)

            stats['files'] += 1
            stats['records'] += inserted

    print(f"✓ Database built: {stats['records']:,} records from {stats['files']} files")
    if stats['failed']:
        print(f"  {len(stats['failed'])} file(s) skipped")
    return stats


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Build the kern n-gram fingerprint database')
    parser.add_argument('--data-dir', help='Directory searched recursively for .krn files (DATA_DIR)')
    parser.add_argument('--db-path', help='SQLite file, or .pkl for a pickled in-memory database (DB_PATH)')
    parser.add_argument('--csv-path', help='Optional CSV mirror of every record (CSV_PATH)')
    parser.add_argument('--min-size', type=int, help='Smallest n-gram size (QUERY_SIZE_MIN)')
    parser.add_argument('--max-size', type=int, help='Largest n-gram size (QUERY_SIZE_MAX)')
    parser.add_argument('--workers', type=int, help='Parallel parse/hash workers (INGEST_WORKERS)')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        sizes_given = args.min_size is not None and args.max_size is not None
        config = SimplehashConfig.from_env(require_sizes=not sizes_given).with_overrides(
            data_dir=args.data_dir,
            db_path=args.db_path,
            csv_path=args.csv_path,
            query_size_min=args.min_size,
            query_size_max=args.max_size,
            ingest_workers=args.workers,
        )
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    print("Building kern fingerprint database...\n")
    print(f"Data directory: {config.data_dir}")
    print(f"Database: {config.db_path}")
    print(f"N-gram sizes: {config.query_size_min}-{config.query_size_max}\n")

    if not os.path.isdir(config.data_dir):
        print(f"Error: Data directory not found at {config.data_dir}")
        return 1

    kern_files = get_kern_files(config.data_dir)
    print(f"Found {len(kern_files)} kern files\n")

    store = open_store(config.db_path)
    simplehash = Simplehash(FingerprintIndex(store), config)
    stats = build_database(kern_files, simplehash, csv_path=config.csv_path,
                           workers=config.ingest_workers)

    if isinstance(store, MemoryStore) and config.db_path != ':memory:':
        store.save(config.db_path)

    print(f"\nDone! {simplehash.documents_searched()} documents indexed")
    print(f"Saved to: {config.db_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
