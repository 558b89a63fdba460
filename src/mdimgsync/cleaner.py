from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .cache import ContentCache


def clear_cache(cache_dir: Path) -> dict[str, Any]:
    logger = logging.getLogger(__name__)
    cache = ContentCache(cache_dir)
    removed: list[str] = []

    if not cache.path.exists():
        logger.info("Cache file not found: %s", cache.path)
        return {"cache_file": str(cache.path), "removed": removed}

    try:
        cache.path.unlink()
        removed.append(str(cache.path))
    except OSError as exc:
        logger.warning("Failed to remove %s: %s", cache.path, exc)

    logger.info("Cache cleared: %d file(s) removed", len(removed))
    return {"cache_file": str(cache.path), "removed": removed}


def forget_paths(cache_dir: Path, paths: list[str]) -> list[str]:
    logger = logging.getLogger(__name__)
    cache = ContentCache(cache_dir)
    cache.load()
    forgotten = []
    for raw in paths:
        key = os.path.abspath(Path(raw).expanduser())
        if cache.remove_item(key) or cache.remove_item(raw):
            forgotten.append(key)
        else:
            logger.warning("Not in cache: %s", raw)
    if forgotten:
        cache.save()
    return forgotten
