from __future__ import annotations

import json
import threading
from typing import Any

import httpx

from .config import StorageConfig
from .storage import StorageError, StorageProvider, guess_content_type, normalize_metadata
from .utils import build_public_url, join_remote_path


META_SUFFIX = ".meta.json"


class WebDAVStorageProvider(StorageProvider):
    """Storage on any server that accepts WebDAV ``PUT``/``HEAD``/``MKCOL``.

    Object metadata is kept in a JSON sidecar object next to each upload so
    that servers without custom property support still work.
    """

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self._transport = transport
        self._client: httpx.Client | None = None
        self._endpoint = ""
        self._prefix = ""
        self._custom_domain = ""
        self._known_dirs: set[str] = set()
        self._dirs_lock = threading.Lock()

    def configure(self, config: StorageConfig) -> None:
        if not config.endpoint:
            raise StorageError(f"storage {config.name or 'webdav'}: endpoint is required")
        self._endpoint = config.endpoint.rstrip("/")
        self._prefix = config.path_prefix
        self._custom_domain = config.custom_domain
        auth = (config.username, config.password) if config.username else None
        self._client = httpx.Client(
            timeout=config.timeout_sec,
            auth=auth,
            verify=not config.skip_verify,
            transport=self._transport,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def upload(self, local_path: str, remote_path: str, metadata: dict[str, str]) -> str:
        key = self._key(remote_path)
        self._ensure_parents(key)
        with open(local_path, "rb") as handle:
            data = handle.read()
        self._request(
            "PUT",
            key,
            content=data,
            headers={"Content-Type": guess_content_type(local_path)},
        )
        self._put_metadata(key, normalize_metadata(metadata))
        return self.get_public_url(remote_path)

    def get_public_url(self, remote_path: str) -> str:
        if self._custom_domain:
            return build_public_url(f"https://{self._custom_domain}", self._prefix, remote_path)
        return build_public_url(self._endpoint, self._prefix, remote_path)

    def object_exists(self, remote_path: str) -> bool:
        response = self._request("HEAD", self._key(remote_path), allow_missing=True)
        return response.status_code != 404

    def set_object_metadata(self, remote_path: str, metadata: dict[str, str]) -> None:
        key = self._key(remote_path)
        if not self.object_exists(remote_path):
            raise StorageError(f"object not found: {remote_path}")
        self._put_metadata(key, normalize_metadata(metadata))

    def get_object_metadata(self, remote_path: str) -> dict[str, str]:
        response = self._request("GET", self._key(remote_path) + META_SUFFIX, allow_missing=True)
        if response.status_code == 404:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise StorageError(f"invalid metadata for {remote_path}: {exc}") from exc
        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _key(self, remote_path: str) -> str:
        return join_remote_path(self._prefix, remote_path)

    def _put_metadata(self, key: str, metadata: dict[str, str]) -> None:
        self._request(
            "PUT",
            key + META_SUFFIX,
            content=json.dumps(metadata).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )

    def _ensure_parents(self, key: str) -> None:
        parts = key.split("/")[:-1]
        current = ""
        with self._dirs_lock:
            for part in parts:
                current = f"{current}/{part}" if current else part
                if current in self._known_dirs:
                    continue
                response = self._request("MKCOL", current + "/", allow_status={405})
                if response.status_code in (201, 405) or response.is_success:
                    self._known_dirs.add(current)

    def _request(
        self,
        method: str,
        key: str,
        allow_missing: bool = False,
        allow_status: set[int] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        if self._client is None:
            raise StorageError("webdav storage is not configured")
        url = f"{self._endpoint}/{key}"
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageError(f"{method} {url} failed: {exc}") from exc
        if allow_missing and response.status_code == 404:
            return response
        if allow_status and response.status_code in allow_status:
            return response
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(f"{method} {url} failed: HTTP {response.status_code}") from exc
        return response
