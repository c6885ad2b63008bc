"""
Runtime configuration for simplehash.

Values come from the environment (QUERY_SIZE_MIN, QUERY_SIZE_MAX, DB_PATH, ...)
and can be overridden by command line flags in the scripts.
"""

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from simplehash_errors import ConfigurationError

DEFAULT_ALLOWED_CHARS = "A-Ga-g0-9\\-#rn\\."
DEFAULT_DB_PATH = "kern_fingerprint_database.sqlite"
DEFAULT_DATA_DIR = "/usr/local/data"


@dataclass(frozen=True)
class SimplehashConfig:
    query_size_min: int = 3
    query_size_max: int = 10
    # Fixed query n-gram size; None means "use the query's own length"
    query_gram_size: Optional[int] = None
    db_path: str = DEFAULT_DB_PATH
    data_dir: str = DEFAULT_DATA_DIR
    csv_path: Optional[str] = None
    lookup_workers: int = 1
    ingest_workers: int = 4
    allowed_chars: str = DEFAULT_ALLOWED_CHARS

    def validate(self) -> "SimplehashConfig":
        if self.query_size_min < 1:
            raise ConfigurationError(f"QUERY_SIZE_MIN must be >= 1, got {self.query_size_min}")
        if self.query_size_max < self.query_size_min:
            raise ConfigurationError(
                f"QUERY_SIZE_MAX ({self.query_size_max}) is smaller than "
                f"QUERY_SIZE_MIN ({self.query_size_min})"
            )
        if self.query_gram_size is not None and not (
                self.query_size_min <= self.query_gram_size <= self.query_size_max):
            raise ConfigurationError(
                f"QUERY_GRAM_SIZE ({self.query_gram_size}) is outside the indexed range "
                f"[{self.query_size_min}, {self.query_size_max}]"
            )
        if self.lookup_workers < 1 or self.ingest_workers < 1:
            raise ConfigurationError("worker counts must be >= 1")
        if not self.allowed_chars:
            raise ConfigurationError("ALLOWED_CHARS must not be empty")
        if not self.db_path:
            raise ConfigurationError("DB_PATH must not be empty")
        return self

    def with_overrides(self, **overrides) -> "SimplehashConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 require_sizes: bool = True) -> "SimplehashConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)
            require_sizes: Fail if QUERY_SIZE_MIN or QUERY_SIZE_MAX is missing
        """
        env = os.environ if environ is None else environ

        if require_sizes and (not env.get("QUERY_SIZE_MIN") or not env.get("QUERY_SIZE_MAX")):
            raise ConfigurationError(
                "QUERY_SIZE_MIN or QUERY_SIZE_MAX is not defined in the environment."
            )

        defaults = cls()
        config = cls(
            query_size_min=_int_from(env, "QUERY_SIZE_MIN", defaults.query_size_min),
            query_size_max=_int_from(env, "QUERY_SIZE_MAX", defaults.query_size_max),
            query_gram_size=_int_from(env, "QUERY_GRAM_SIZE", None),
            db_path=env.get("DB_PATH") or defaults.db_path,
            data_dir=env.get("DATA_DIR") or defaults.data_dir,
            csv_path=env.get("CSV_PATH") or None,
            lookup_workers=_int_from(env, "LOOKUP_WORKERS", defaults.lookup_workers),
            ingest_workers=_int_from(env, "INGEST_WORKERS", defaults.ingest_workers),
            allowed_chars=env.get("ALLOWED_CHARS") or defaults.allowed_chars,
        )
        return config.validate()


def _int_from(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None
