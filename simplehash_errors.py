"""
Exception types raised by the kern fingerprinting pipeline.
"""

from typing import Optional


class SimplehashError(Exception):
    """Base class for every error raised by simplehash."""


class ParseError(SimplehashError):
    """Malformed or incomplete kern input. Aborts one document only."""

    def __init__(self, message: str, source_id: str = "", line_no: Optional[int] = None):
        self.source_id = source_id
        self.line_no = line_no
        location = source_id or "<query>"
        if line_no is not None:
            location = f"{location}:{line_no}"
        super().__init__(f"{location}: {message}")


class IndexWriteError(SimplehashError):
    """The store failed during a bulk insert; the batch was rolled back."""


class IndexReadError(SimplehashError):
    """The store failed while looking up a fingerprint."""


class ConfigurationError(SimplehashError):
    """Missing or invalid startup configuration."""


class ConversionError(SimplehashError):
    """The external MusicXML to kern converter failed."""
