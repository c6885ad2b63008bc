"""
Simplehash Query Server

GET/POST /simplehash?staffIdx=N
    Body: MusicXML (converted with musicxml2hum) or kern text.
    Finds the indexed kern documents sharing the most n-grams with staff N.
GET /health
"""

import logging
import sys
from typing import Optional, Tuple

from flask import Flask, jsonify, request
from flask_cors import CORS

from converter import convert_musicxml
from fingerprint_index import FingerprintIndex, open_store
from kern_file import KERN_ENCODING, parse_text
from simplehash import Simplehash
from simplehash_config import SimplehashConfig
from simplehash_errors import ConfigurationError, ConversionError, IndexReadError, ParseError

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

KERN_CONTENT_TYPES = ('text/plain', 'text/x-kern', 'application/x-kern')

system: Optional[Simplehash] = None


def _response(status='success', errors=None, results=None, items_searched=0, coverage=0.0):
    return {
        'status': status,
        'errors': errors or [],
        'itemsSearched': items_searched,
        'results': results or [],
        'coverage': coverage,
    }


def _error(message, http_status=400, items_searched=0):
    return jsonify(_response(status='error', errors=[message], items_searched=items_searched)), http_status


def _query_text() -> Tuple[str, bool]:
    """
    Kern text of the request body and whether it was converted from MusicXML.

    Kern bodies are 8-bit text and are decoded like kern files.
    """
    raw = request.get_data()
    mimetype = (request.mimetype or '').lower()
    if mimetype in KERN_CONTENT_TYPES or raw.lstrip().startswith((b'**', b'!!')):
        return raw.decode(KERN_ENCODING), False
    return convert_musicxml(raw.decode('utf-8', errors='replace')), True


def _staff_voice(document, staff_idx: int, converted: bool):
    """
    Voice for a 1-based staff number.

    Kern bodies count kern spines from the left. musicxml2hum writes the
    lowest staff in the leftmost spine, so converted queries count from the
    right to keep MusicXML staff order.
    """
    if converted:
        return document.voice_at(len(document.voices) - staff_idx)
    return document.voice_at(staff_idx - 1)


def _dataset_name(source_id: str) -> str:
    try:
        return system.dataset_name(source_id)
    except IndexReadError as e:
        logger.warning("Could not read dataset of %s: %s", source_id, e)
        return ''


@app.route('/simplehash', methods=['GET', 'POST'])
def simplehash_endpoint():
    """Main query endpoint."""
    staff_idx = request.args.get('staffIdx')
    if staff_idx is None:
        return _error('Error: required parameter staffIdx is missing.')
    try:
        staff_idx = int(staff_idx)
    except ValueError:
        return _error(f'Error: staffIdx must be an integer, got {staff_idx!r}.')
    if staff_idx < 1:
        return _error('Error: staffIdx must be 1 or greater.')

    if system is None:
        return _error('Error: simplehash is not initialized.', http_status=503)

    try:
        items_searched = system.documents_searched()
    except IndexReadError as e:
        logger.warning("Could not count indexed documents: %s", e)
        items_searched = 0

    if not request.get_data():
        return _error('Error: request body is empty.', items_searched=items_searched)

    try:
        text, converted = _query_text()
        document = parse_text(text, source_id='<query>')
        voice = _staff_voice(document, staff_idx, converted)
        if voice is None:
            raise ParseError(f'no kern spine for staff {staff_idx} '
                             f'({len(document.voices)} kern spine(s) in query)')
        results = system.lookup(document, voice.index)
    except (ConversionError, ParseError) as e:
        return _error(f'Error: {e}', items_searched=items_searched)

    ranked = [
        {
            'id': entry['rank'],
            'datasetName': _dataset_name(entry['piece']),
            'filename': entry['piece'],
            'properties': {
                'matches': entry['matches'],
                'confidence': entry['confidence'],
            },
        }
        for entry in results.ranked()
    ]

    status = 'degraded' if results.degraded else 'success'
    return jsonify(_response(status=status, errors=results.errors, results=ranked,
                             items_searched=items_searched, coverage=results.coverage))


@app.route('/health')
def health():
    """Health check endpoint"""
    return {
        'status': 'ok',
        'system_initialized': system is not None,
    }


def initialize_system(config: SimplehashConfig = None, simplehash: Simplehash = None) -> bool:
    """Initialize the query system from config (or install a ready one)."""
    global system
    try:
        if simplehash is None:
            config = config or SimplehashConfig.from_env()
            simplehash = Simplehash(FingerprintIndex(open_store(config.db_path)), config)
        system = simplehash
        print(f"✓ Simplehash ready ({system.documents_searched()} documents indexed)")
        return True
    except (ConfigurationError, IndexReadError, OSError) as e:
        print(f"✗ Initialization error: {e}")
        return False


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Simplehash kern retrieval server')
    parser.add_argument('--db-path', help='Fingerprint database (DB_PATH)')
    parser.add_argument('--gram-size', type=int, help='Fixed query n-gram size (QUERY_GRAM_SIZE)')
    parser.add_argument('--port', type=int, default=8080, help='Server port')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = SimplehashConfig.from_env().with_overrides(db_path=args.db_path,
                                                            query_gram_size=args.gram_size)
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}")
        sys.exit(1)

    print("=" * 70)
    print("SIMPLEHASH KERN RETRIEVAL SERVER")
    print("=" * 70)
    print(f"Fingerprint DB: {config.db_path}")
    print(f"N-gram sizes: {config.query_size_min}-{config.query_size_max}")
    print(f"Port: {args.port}")
    print("=" * 70)
    print()

    if not initialize_system(config):
        print("Failed to initialize system. Exiting.")
        sys.exit(1)

    print(f"\nStarting server on http://localhost:{args.port}")
    print("Press Ctrl+C to stop\n")

    app.run(host='0.0.0.0', port=args.port, debug=False)
