"""Freshness-checked file cache for expensive lookups.

One entry per file under the cache directory. An entry is fresh when it
exists, is younger than the TTL and no source file (for example an
encrypted secrets file) was modified after it.
"""
import fcntl
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from .models import Freshness

logger = logging.getLogger("cpc.cache")

STATUS_CACHE_TTL = 30
SECRETS_CACHE_TTL = 300
TOFU_OUTPUT_CACHE_TTL = 300

CACHE_FOOTER_PREFIX = "# Cache updated: "

# Every cache file the CLI creates
KNOWN_CACHE_PATTERNS = (
    "cpc_secrets_cache",
    "cpc_env_cache.sh",
    "cpc_status_cache_*",
    "cpc_ssh_cache_*",
    "cpc_tofu_output_cache_*",
    "cpc_workspace_cache",
)

LOCK_DIR_NAME = ".cpc_cache_locks"


class CacheStore:
    """File-backed cache confined to a single directory."""

    def __init__(self, cache_dir: Union[str, Path], default_ttl: Optional[float] = None):
        """Initialize the store.

        Args:
            cache_dir: Directory holding the cache files
            default_ttl: TTL used when freshness() is called without one;
                None means entries never expire by age
        """
        self.cache_dir = Path(cache_dir)
        self.default_ttl = default_ttl

    def path_for(self, key: str) -> Path:
        """Resolve a key to its file, refusing keys that escape the cache directory."""
        if not key or key in (".", ".."):
            raise ValueError(f"Invalid cache key: {key!r}")
        path = (self.cache_dir / key).resolve()
        root = self.cache_dir.resolve()
        if path.parent != root:
            raise ValueError(f"Cache key must be a plain file name: {key!r}")
        return path

    def age(self, key: str) -> Optional[float]:
        """Seconds since the entry was written, or None when it does not exist."""
        try:
            mtime = self.path_for(key).stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, time.time() - mtime)

    def freshness(
        self,
        key: str,
        source: Optional[Union[str, Path]] = None,
        ttl: Optional[float] = None
    ) -> Freshness:
        """Classify an entry as missing, stale or fresh.

        Args:
            key: Cache key
            source: Optional file the cached value was derived from; the
                entry is stale when this file is newer than the entry
            ttl: Maximum age in seconds (falls back to the store default)

        Returns:
            Freshness: MISSING, STALE or FRESH
        """
        if ttl is None:
            ttl = self.default_ttl
        try:
            entry_mtime = self.path_for(key).stat().st_mtime
        except FileNotFoundError:
            return Freshness.MISSING
        except OSError as e:
            logger.debug("Cannot inspect cache entry %s: %s", key, e)
            return Freshness.STALE

        if source is not None:
            try:
                if Path(source).stat().st_mtime > entry_mtime:
                    logger.debug("Cache entry %s is older than %s", key, source)
                    return Freshness.STALE
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.debug("Cannot inspect cache source %s: %s", source, e)
                return Freshness.STALE

        if ttl is not None and time.time() - entry_mtime >= ttl:
            return Freshness.STALE
        return Freshness.FRESH

    def read(self, key: str) -> Optional[str]:
        """Return the cached value, or None when the entry is missing or unreadable."""
        try:
            text = self.path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Failed to read cache entry %s: %s", key, e)
            return None

        lines = text.splitlines(keepends=True)
        if lines and lines[-1].startswith(CACHE_FOOTER_PREFIX):
            lines.pop()
            if lines and lines[-1].endswith("\n"):
                lines[-1] = lines[-1][:-1]
        return "".join(lines)

    def write(self, key: str, value: str) -> bool:
        """Replace an entry with value plus a timestamp footer.

        The new content is written to a temporary file and renamed over the
        entry while holding the key's lock, so readers never see a partial
        file and concurrent writers do not interleave.

        Returns:
            bool: False when the cache directory is missing or not writable
        """
        path = self.path_for(key)
        content = f"{value}\n{CACHE_FOOTER_PREFIX}{datetime.now():%a %b %d %H:%M:%S %Y}\n"
        tmp_name = None
        try:
            with self._lock(key):
                fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(self.cache_dir))
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
                tmp_name = None
        except OSError as e:
            logger.warning("Failed to write cache entry %s: %s", key, e)
            return False
        finally:
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
        logger.debug("Updated cache file: %s", path)
        return True

    def clear(self, key_or_pattern: str) -> int:
        """Remove one entry or every entry matching a glob. Returns how many were removed."""
        if not self.cache_dir.is_dir():
            return 0
        if any(ch in key_or_pattern for ch in "*?["):
            if "/" in key_or_pattern:
                raise ValueError(f"Cache pattern must not contain a path: {key_or_pattern!r}")
            candidates = list(self.cache_dir.glob(key_or_pattern))
        else:
            candidates = [self.path_for(key_or_pattern)]

        removed = 0
        for path in candidates:
            if not path.is_file():
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to remove cache file %s: %s", path, e)
                continue
            removed += 1
            (self.cache_dir / LOCK_DIR_NAME / f"{path.name}.lock").unlink(missing_ok=True)
            logger.debug("Removed cache file: %s", path)
        return removed

    def keys(self) -> List[str]:
        """Names of the well-known cpc cache files currently present."""
        if not self.cache_dir.is_dir():
            return []
        found = set()
        for pattern in KNOWN_CACHE_PATTERNS:
            found.update(p.name for p in self.cache_dir.glob(pattern) if p.is_file())
        return sorted(found)

    def clear_all(self) -> int:
        """Remove every well-known cpc cache file."""
        removed = sum(self.clear(pattern) for pattern in KNOWN_CACHE_PATTERNS)
        logger.info("All caches cleared successfully (%d files removed)", removed)
        return removed

    def get_or_compute(
        self,
        key: str,
        producer: Callable[[], str],
        ttl: Optional[float] = None,
        source: Optional[Union[str, Path]] = None
    ) -> str:
        """Return the cached value when fresh, otherwise compute, store and return it."""
        if self.freshness(key, source=source, ttl=ttl) is Freshness.FRESH:
            value = self.read(key)
            if value is not None:
                logger.debug("Using cached %s (age: %ds)", key, self.age(key) or 0)
                return value
        value = producer()
        self.write(key, value)
        return value

    @contextmanager
    def _lock(self, key: str) -> Iterator[None]:
        lock_dir = self.cache_dir / LOCK_DIR_NAME
        lock_dir.mkdir(exist_ok=True)
        with open(lock_dir / f"{key}.lock", "a") as fp:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
