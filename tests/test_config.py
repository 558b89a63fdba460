import textwrap
from pathlib import Path

import pytest

from mdimgsync.config import (
    ConfigError,
    ConflictPolicy,
    _as_list,
    get_storage_config,
    load_config,
    normalize_exts,
    parse_conflict_policy,
)


def test_as_list_normalizes_values() -> None:
    assert _as_list(None) == []
    assert _as_list("md") == ["md"]
    assert _as_list([1, "a"]) == ["1", "a"]


def test_normalize_exts() -> None:
    assert normalize_exts(["MD", ".Markdown", " ", ""]) == [".md", ".markdown"]


def test_load_config_requires_file(tmp_path: Path) -> None:
    missing = tmp_path / "missing.yaml"
    with pytest.raises(ConfigError):
        load_config(missing)


def test_load_config_optional_file_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.yaml", required=False)

    assert config.upload.concurrency == 5
    assert config.upload.conflict_policy is ConflictPolicy.RENAME
    assert config.upload.markdown_ext == [".md", ".markdown"]
    assert get_storage_config(config).provider == ""


def test_load_config_minimal(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            f"""
            upload:
              concurrency: 3
              conflict_policy: Version
              cache_dir: {(tmp_path / 'cache').as_posix()}
              markdown_ext: [md]
            storages:
              site:
                provider: LOCAL
                root_dir: {(tmp_path / 'site').as_posix()}
                path_prefix: /static/
            runtime:
              log_level: DEBUG
            """
        ).lstrip(),
        encoding="utf-8",
    )

    config = load_config(config_path)
    storage = get_storage_config(config)

    assert config.upload.concurrency == 3
    assert config.upload.conflict_policy is ConflictPolicy.VERSION
    assert config.upload.cache_dir == tmp_path / "cache"
    assert config.upload.markdown_ext == [".md"]
    assert config.runtime.log_level == "DEBUG"
    assert storage.name == "site"
    assert storage.provider == "local"
    assert storage.root_dir == tmp_path / "site"
    assert storage.path_prefix == "static"


def test_storage_selection(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            default_storage: dav
            storages:
              dav:
                provider: webdav
                endpoint: https://dav.test
                timeout_sec: 5
              other:
                provider: webdav
                endpoint: https://other.test
                extra_header: x
            """
        ).lstrip(),
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert get_storage_config(config).endpoint == "https://dav.test"
    assert get_storage_config(config).timeout_sec == 5.0
    assert get_storage_config(config, "other").options == {"extra_header": "x"}
    with pytest.raises(ConfigError):
        get_storage_config(config, "nope")


def test_multiple_storages_need_a_default(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "storages:\n  a: {provider: local}\n  b: {provider: local}\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigError):
        get_storage_config(load_config(config_path))


def test_load_config_rejects_bad_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("upload:\n  concurrency: 0\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(config_path)

    config_path.write_text("storages:\n  a:\n    bucket: x\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(config_path)

    config_path.write_text("default_storage: ghost\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_parse_conflict_policy() -> None:
    assert parse_conflict_policy(None) is ConflictPolicy.RENAME
    assert parse_conflict_policy("") is ConflictPolicy.RENAME
    assert parse_conflict_policy(" OVERWRITE ") is ConflictPolicy.OVERWRITE
    with pytest.raises(ConfigError):
        parse_conflict_policy("merge")
