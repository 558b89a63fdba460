from pathlib import Path

import pytest

from mdimgsync.cache import ContentCache
from mdimgsync.cli import _extract_config_arg, main


def test_extract_config_arg_long_form() -> None:
    cleaned, config_path = _extract_config_arg(["--config", "foo.yaml", "upload"])
    assert cleaned == ["upload"]
    assert config_path == "foo.yaml"


def test_extract_config_arg_short_form() -> None:
    cleaned, config_path = _extract_config_arg(["-c=bar.yaml", "providers"])
    assert cleaned == ["providers"]
    assert config_path == "bar.yaml"


def test_extract_config_arg_absent() -> None:
    cleaned, config_path = _extract_config_arg(["cache", "list"])
    assert cleaned == ["cache", "list"]
    assert config_path is None


def test_extract_config_arg_missing_value() -> None:
    with pytest.raises(ValueError):
        _extract_config_arg(["-c"])


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def test_upload_to_local_provider(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "docs" / "img").mkdir(parents=True)
    (tmp_path / "docs" / "img" / "a.png").write_bytes(b"pixels")
    doc = tmp_path / "docs" / "post.md"
    doc.write_text("# Post\n![diagram](img/a.png)\n", encoding="utf-8")
    cache_dir = tmp_path / "cache"

    code = _run(
        [
            "upload",
            "-d",
            str(tmp_path / "docs"),
            "-p",
            "local",
            "--root-dir",
            str(tmp_path / "site"),
            "--custom-domain",
            "cdn.example.com",
            "--cache-dir",
            str(cache_dir),
        ]
    )

    text = doc.read_text(encoding="utf-8")
    assert code == 0
    assert "![diagram](https://cdn.example.com/images/a_" in text
    assert len(list((tmp_path / "site" / "images").glob("a_*.png"))) == 1
    cache = ContentCache(cache_dir)
    cache.load()
    assert len(cache) == 1


def test_upload_dry_run_leaves_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "a.png").write_bytes(b"pixels")
    doc = tmp_path / "post.md"
    doc.write_text("![a](a.png)\n", encoding="utf-8")

    code = _run(
        [
            "upload",
            "-f",
            str(doc),
            "-p",
            "local",
            "--root-dir",
            str(tmp_path / "site"),
            "--cache-dir",
            str(tmp_path / "cache"),
            "--dry-run",
        ]
    )

    assert code == 0
    assert doc.read_text(encoding="utf-8") == "![a](a.png)\n"
    assert not (tmp_path / "site" / "images").exists()
    assert not (tmp_path / "cache" / "upload-cache.json").exists()


def test_upload_without_provider_is_usage_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "post.md").write_text("", encoding="utf-8")

    assert _run(["upload", "-f", str(tmp_path / "post.md"), "--cache-dir", str(tmp_path / "c")]) == 2


def test_upload_missing_source_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    code = _run(
        [
            "upload",
            "-d",
            str(tmp_path / "nowhere"),
            "-p",
            "local",
            "--root-dir",
            str(tmp_path / "site"),
            "--cache-dir",
            str(tmp_path / "cache"),
        ]
    )

    assert code == 1


def test_strict_mode_reports_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "a.png").write_bytes(b"pixels")
    doc = tmp_path / "post.md"
    doc.write_text("![a](a.png)\n", encoding="utf-8")
    blocker = tmp_path / "site" / "images"
    blocker.parent.mkdir()
    blocker.write_text("not a directory", encoding="utf-8")
    argv = [
        "upload",
        "-f",
        str(doc),
        "-p",
        "local",
        "--root-dir",
        str(tmp_path / "site"),
        "--cache-dir",
        str(tmp_path / "cache"),
    ]

    assert _run(argv) == 0
    assert _run(argv + ["--strict"]) == 3
    assert doc.read_text(encoding="utf-8") == "![a](a.png)\n"


def test_cache_commands(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.chdir(tmp_path)
    cache_dir = tmp_path / "cache"
    cache = ContentCache(cache_dir)
    cache.add_item(str(tmp_path / "a.png"), "images/a.png", "https://cdn.test/a.png", "h1")
    cache.add_item(str(tmp_path / "b.png"), "images/b.png", "https://cdn.test/b.png", "h2")
    cache.save()

    assert _run(["cache", "--cache-dir", str(cache_dir), "list"]) == 0
    assert "https://cdn.test/a.png" in capsys.readouterr().out

    assert _run(["cache", "--cache-dir", str(cache_dir), "forget", str(tmp_path / "a.png")]) == 0
    reloaded = ContentCache(cache_dir)
    reloaded.load()
    assert [entry.local_path for entry in reloaded.items()] == [str(tmp_path / "b.png")]

    assert _run(["cache", "--cache-dir", str(cache_dir), "clear"]) == 0
    assert not (cache_dir / "upload-cache.json").exists()


def test_providers_command(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.chdir(tmp_path)

    assert _run(["providers"]) == 0
    assert capsys.readouterr().out.split() == ["local", "webdav"]
