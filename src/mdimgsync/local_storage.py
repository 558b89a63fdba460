from __future__ import annotations

import json
import shutil
from pathlib import Path

from .config import StorageConfig
from .storage import StorageError, StorageProvider, normalize_metadata
from .utils import build_public_url, ensure_dir, join_remote_path


META_SUFFIX = ".meta.json"


class LocalStorageProvider(StorageProvider):
    """Stores objects as plain files below ``root_dir``.

    Useful for static sites that serve an assets directory directly. Object
    metadata lives next to each object in a ``<name>.meta.json`` sidecar.
    """

    def __init__(self) -> None:
        self._root: Path | None = None
        self._prefix = ""
        self._public_base_url = ""

    def configure(self, config: StorageConfig) -> None:
        if config.root_dir is None:
            raise StorageError(f"storage {config.name or 'local'}: root_dir is required")
        self._root = config.root_dir
        self._prefix = config.path_prefix
        self._public_base_url = config.public_base_url or (
            f"https://{config.custom_domain}" if config.custom_domain else ""
        )
        try:
            ensure_dir(self._root)
        except OSError as exc:
            raise StorageError(f"cannot create storage root {self._root}: {exc}") from exc

    def upload(self, local_path: str, remote_path: str, metadata: dict[str, str]) -> str:
        target = self._object_path(remote_path)
        try:
            ensure_dir(target.parent)
            shutil.copyfile(local_path, target)
            self._write_metadata(target, normalize_metadata(metadata))
        except OSError as exc:
            raise StorageError(f"failed to store {remote_path}: {exc}") from exc
        return self.get_public_url(remote_path)

    def get_public_url(self, remote_path: str) -> str:
        if self._public_base_url:
            return build_public_url(self._public_base_url, self._prefix, remote_path)
        return self._object_path(remote_path).resolve().as_uri()

    def object_exists(self, remote_path: str) -> bool:
        return self._object_path(remote_path).is_file()

    def set_object_metadata(self, remote_path: str, metadata: dict[str, str]) -> None:
        target = self._object_path(remote_path)
        if not target.is_file():
            raise StorageError(f"object not found: {remote_path}")
        try:
            self._write_metadata(target, normalize_metadata(metadata))
        except OSError as exc:
            raise StorageError(f"failed to write metadata for {remote_path}: {exc}") from exc

    def get_object_metadata(self, remote_path: str) -> dict[str, str]:
        target = self._object_path(remote_path)
        if not target.is_file():
            raise StorageError(f"object not found: {remote_path}")
        meta_path = _meta_path(target)
        if not meta_path.exists():
            return {}
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"failed to read metadata for {remote_path}: {exc}") from exc
        return {str(key): str(value) for key, value in data.items()}

    def _object_path(self, remote_path: str) -> Path:
        if self._root is None:
            raise StorageError("local storage is not configured")
        rel = join_remote_path(self._prefix, remote_path)
        target = (self._root / rel).resolve()
        if not target.is_relative_to(self._root.resolve()):
            raise StorageError(f"remote path escapes storage root: {remote_path}")
        return target

    def _write_metadata(self, target: Path, metadata: dict[str, str]) -> None:
        _meta_path(target).write_text(json.dumps(metadata, ensure_ascii=False, indent=2), encoding="utf-8")


def _meta_path(target: Path) -> Path:
    return target.with_name(target.name + META_SUFFIX)
