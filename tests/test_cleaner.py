import logging
from pathlib import Path

import pytest

from mdimgsync.cache import ContentCache
from mdimgsync.cleaner import clear_cache, forget_paths


def _seed(cache_dir: Path, *paths: str) -> None:
    cache = ContentCache(cache_dir)
    for path in paths:
        cache.add_item(path, f"images/{Path(path).name}", f"https://cdn.test/{Path(path).name}", "h")
    cache.save()


def test_clear_cache_reports_removed_file(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    _seed(tmp_path, "/a.png", "/b.png", "/c.png")

    with caplog.at_level(logging.INFO, logger="mdimgsync.cleaner"):
        result = clear_cache(tmp_path)

    assert result["removed"] == [str(tmp_path / "upload-cache.json")]
    assert "Cache cleared: 1 file(s) removed" in caplog.text
    assert not (tmp_path / "upload-cache.json").exists()


def test_clear_cache_without_file(tmp_path: Path) -> None:
    assert clear_cache(tmp_path)["removed"] == []


def test_forget_paths_drops_only_known_entries(tmp_path: Path) -> None:
    image = str(tmp_path / "a.png")
    _seed(tmp_path / "cache", image, str(tmp_path / "b.png"))

    forgotten = forget_paths(tmp_path / "cache", [image, str(tmp_path / "unknown.png")])

    cache = ContentCache(tmp_path / "cache")
    cache.load()
    assert forgotten == [image]
    assert [entry.local_path for entry in cache.items()] == [str(tmp_path / "b.png")]
