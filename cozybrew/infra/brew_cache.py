"""Persistent, TTL-governed cache of decoded `brew` responses.

Each key owns a value file and a metadata sidecar in the cache root. The
value is written first and the sidecar second, both through an atomic
rename, and the sidecar records a digest of the value it belongs to. A value
is only served when its sidecar is readable, matches the digest and is
younger than the TTL. Expiry is enforced on read; there is no sweeper.
"""

import hashlib
import json
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Final, Mapping

from logly import logger

DEFAULT_TTL_SEC: Final[float] = 3600.0

_META_SUFFIX: Final[str] = ".meta"


class CacheKey(Enum):
    """One cache slot per logical response category."""

    INSTALLED_FORMULAE = "installed_formulae"
    INSTALLED_CASKS = "installed_casks"
    OUTDATED_FORMULAE = "outdated_formulae"
    OUTDATED_CASKS = "outdated_casks"
    TAPS = "taps"

    @property
    def filename(self) -> str:
        return f"{self.value}.json"


class CacheDecodeError(ValueError):
    """Raised when a fresh cache entry holds bytes that are not valid JSON."""

    def __init__(self, key: CacheKey, cause: Exception):
        super().__init__(f"cache entry {key.value!r} is corrupt: {cause}")
        self.key = key


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _atomic_write(path: Path, data: bytes) -> None:
    """Writes `data` to a temp file next to `path`, then renames it into place."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class BrewCache:
    """File-backed cache keyed by :class:`CacheKey`."""

    def __init__(
        self,
        cache_dir: Path | str,
        default_ttl: float = DEFAULT_TTL_SEC,
        ttl_by_key: Mapping[CacheKey, float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initializes the cache and creates its root directory.

        Args:
            cache_dir: Storage root. Everything under it belongs to the cache.
            default_ttl: Max age in seconds when neither the caller nor
                `ttl_by_key` gives one.
            ttl_by_key: Per-key max ages.
            clock: Returns the current aware datetime; injectable for tests.
        """
        self._root = Path(cache_dir)
        self._default_ttl = default_ttl
        self._ttl_by_key = dict(ttl_by_key or {})
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _value_path(self, key: CacheKey) -> Path:
        return self._root / key.filename

    def _meta_path(self, key: CacheKey) -> Path:
        return self._root / f"{key.filename}{_META_SUFFIX}"

    def ttl_for(self, key: CacheKey, ttl: float | None = None) -> float:
        if ttl is not None:
            return ttl
        return self._ttl_by_key.get(key, self._default_ttl)

    def save(self, key: CacheKey, value: Any) -> None:
        """Stores `value` under `key`, replacing any previous entry.

        Raises:
            TypeError: If `value` is not JSON-serializable.
            OSError: If the cache root cannot be written.
        """
        data = json.dumps(value, ensure_ascii=False).encode("utf-8")
        metadata = {
            "timestamp": self._clock().isoformat(),
            "sha256": hashlib.sha256(data).hexdigest(),
        }
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            _atomic_write(self._value_path(key), data)
            _atomic_write(self._meta_path(key), json.dumps(metadata).encode("utf-8"))
        logger.debug(f"Cache saved key={key.value} bytes={len(data)}")

    def _read_metadata(self, key: CacheKey) -> tuple[datetime, str] | None:
        try:
            raw = json.loads(self._meta_path(key).read_text(encoding="utf-8"))
            saved_at = datetime.fromisoformat(raw["timestamp"])
            digest = str(raw["sha256"])
        except (OSError, ValueError, KeyError, TypeError):
            return None
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        return saved_at, digest

    def load(self, key: CacheKey, ttl: float | None = None) -> Any | None:
        """Returns the cached value for `key`, or None if absent or expired.

        An expired entry is deleted as a side effect, unless a newer save has
        replaced it in the meantime. An entry without readable metadata is
        reported absent and left on disk for the next save to overwrite.

        Args:
            key: Cache slot to read.
            ttl: Max age in seconds; `<= 0` always counts as expired.

        Raises:
            CacheDecodeError: If the entry is fresh but its value is corrupt.
        """
        value_path = self._value_path(key)
        try:
            data = value_path.read_bytes()
        except FileNotFoundError:
            return None

        metadata = self._read_metadata(key)
        if metadata is None:
            # Either the entry is broken or a save has not published its sidecar yet.
            logger.debug(f"Cache metadata missing or unreadable key={key.value}")
            return None
        saved_at, digest = metadata

        if hashlib.sha256(data).hexdigest() != digest:
            # A concurrent save replaced the value but has not published its metadata yet.
            logger.debug(f"Cache value/metadata mismatch key={key.value}")
            return None

        max_age = self.ttl_for(key, ttl)
        age = (self._clock() - saved_at).total_seconds()
        if max_age <= 0 or age > max_age:
            logger.debug(f"Cache expired key={key.value} age={age:.0f}s ttl={max_age:.0f}s")
            self._remove_if_unchanged(key, metadata)
            return None

        try:
            return json.loads(data.decode("utf-8"))
        except ValueError as e:
            raise CacheDecodeError(key, e) from e

    def _remove_if_unchanged(self, key: CacheKey, metadata: tuple[datetime, str]) -> None:
        """Removes an expired entry unless a newer save has replaced it meanwhile."""
        with self._lock:
            if self._read_metadata(key) != metadata:
                return
            try:
                data = self._value_path(key).read_bytes()
            except FileNotFoundError:
                data = None
            if data is not None and hashlib.sha256(data).hexdigest() != metadata[1]:
                return
            self.remove(key)

    def remove(self, key: CacheKey) -> None:
        """Deletes the value and metadata for `key`; a missing entry is fine."""
        with self._lock:
            self._value_path(key).unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)

    def clear_all(self) -> None:
        """Deletes everything under the cache root."""
        if not self._root.exists():
            return
        with self._lock:
            for child in self._root.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child, ignore_errors=True)
                else:
                    child.unlink(missing_ok=True)
        logger.info(f"Cache cleared root={self._root}")
