from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from typing import Callable

from .config import StorageConfig


class StorageError(RuntimeError):
    pass


class UnknownProviderError(StorageError):
    pass


class StorageProvider(ABC):
    """Object storage backend used by the upload pipeline.

    Remote paths are always given relative to the configured prefix; each
    provider applies its own ``path_prefix`` exactly once.
    """

    @abstractmethod
    def configure(self, config: StorageConfig) -> None: ...

    @abstractmethod
    def upload(self, local_path: str, remote_path: str, metadata: dict[str, str]) -> str:
        """Store the file and return its public URL."""

    @abstractmethod
    def get_public_url(self, remote_path: str) -> str: ...

    @abstractmethod
    def object_exists(self, remote_path: str) -> bool: ...

    def compare_hash(self, remote_path: str, local_hash: str) -> bool:
        metadata = self.get_object_metadata(remote_path)
        remote_hash = metadata.get("hash")
        if remote_hash is None:
            return False
        return remote_hash.lower() == local_hash.lower()

    @abstractmethod
    def set_object_metadata(self, remote_path: str, metadata: dict[str, str]) -> None: ...

    @abstractmethod
    def get_object_metadata(self, remote_path: str) -> dict[str, str]: ...

    def close(self) -> None:
        return None


ProviderFactory = Callable[[], StorageProvider]

_PROVIDERS: dict[str, ProviderFactory] = {}


def register_provider(name: str, factory: ProviderFactory) -> None:
    _PROVIDERS[name.lower()] = factory


def get_provider(name: str) -> StorageProvider:
    _load_builtin_providers()
    factory = _PROVIDERS.get(name.lower())
    if factory is None:
        available = ", ".join(list_providers()) or "none"
        raise UnknownProviderError(f"unknown provider: {name} (available: {available})")
    return factory()


def list_providers() -> list[str]:
    _load_builtin_providers()
    return sorted(_PROVIDERS)


def open_provider(config: StorageConfig) -> StorageProvider:
    if not config.provider:
        raise StorageError("storage provider must be specified")
    provider = get_provider(config.provider)
    provider.configure(config)
    return provider


def normalize_metadata(metadata: dict[str, str]) -> dict[str, str]:
    return {key.lower(): str(value) for key, value in metadata.items()}


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


def _load_builtin_providers() -> None:
    from .local_storage import LocalStorageProvider
    from .webdav_client import WebDAVStorageProvider

    _PROVIDERS.setdefault("local", LocalStorageProvider)
    _PROVIDERS.setdefault("webdav", WebDAVStorageProvider)
