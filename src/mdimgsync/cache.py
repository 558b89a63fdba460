from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .utils import default_cache_dir, ensure_dir


CACHE_VERSION = "1.0"
CACHE_FILENAME = "upload-cache.json"


class CacheError(RuntimeError):
    pass


@dataclass(frozen=True)
class CacheEntry:
    local_path: str
    remote_path: str
    url: str
    hash: str
    upload_time: str


class _ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ContentCache:
    """Persistent map of local image path -> last known remote copy.

    Entries are keyed by the resolved local path. ``find_by_hash`` offers a
    secondary lookup by content digest for callers that want moved or copied
    files to reuse an earlier upload.
    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self._items: dict[str, CacheEntry] = {}
        self._lock = _ReadWriteLock()

    @property
    def path(self) -> Path:
        return self.cache_dir / CACHE_FILENAME

    def load(self, create: bool = True) -> None:
        logger = logging.getLogger(__name__)
        with self._lock.write():
            if not self.path.exists():
                self._items = {}
                if not create:
                    return
                try:
                    self._save_unlocked()
                except CacheError as exc:
                    logger.warning("Could not create cache file: %s", exc)
                return
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                self._items = _parse_items(raw)
            except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.warning("Cache file %s unreadable, starting empty: %s", self.path, exc)
                self._items = {}

    def save(self) -> None:
        with self._lock.write():
            self._save_unlocked()

    def get_item(self, local_path: str) -> CacheEntry | None:
        with self._lock.read():
            return self._items.get(local_path)

    def find_by_hash(self, content_hash: str) -> CacheEntry | None:
        with self._lock.read():
            for entry in self._items.values():
                if entry.hash == content_hash:
                    return entry
        return None

    def add_item(self, local_path: str, remote_path: str, url: str, content_hash: str) -> CacheEntry:
        entry = CacheEntry(
            local_path=local_path,
            remote_path=remote_path,
            url=url,
            hash=content_hash,
            upload_time=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock.write():
            self._items[local_path] = entry
        return entry

    def remove_item(self, local_path: str) -> bool:
        with self._lock.write():
            return self._items.pop(local_path, None) is not None

    def items(self) -> list[CacheEntry]:
        with self._lock.read():
            return sorted(self._items.values(), key=lambda entry: entry.local_path)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._items)

    def _save_unlocked(self) -> None:
        data = {
            "version": CACHE_VERSION,
            "items": {key: asdict(entry) for key, entry in self._items.items()},
        }
        payload = json.dumps(data, ensure_ascii=False, indent=2)
        tmp_name = None
        try:
            ensure_dir(self.cache_dir)
            fd, tmp_name = tempfile.mkstemp(prefix=".upload-cache.", dir=self.cache_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CacheError(f"failed to write cache file {self.path}: {exc}") from exc


def _parse_items(raw: Any) -> dict[str, CacheEntry]:
    if not isinstance(raw, dict):
        raise ValueError("cache root must be an object")
    items = raw.get("items") or {}
    if not isinstance(items, dict):
        raise ValueError("cache items must be an object")
    parsed: dict[str, CacheEntry] = {}
    for key, value in items.items():
        parsed[key] = CacheEntry(
            local_path=str(value.get("local_path", key)),
            remote_path=str(value["remote_path"]),
            url=str(value["url"]),
            hash=str(value.get("hash", "")),
            upload_time=str(value.get("upload_time", "")),
        )
    return parsed
