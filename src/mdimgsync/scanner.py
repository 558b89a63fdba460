from __future__ import annotations

import fnmatch
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .cache import ContentCache
from .config import UploadConfig
from .markdown_utils import find_image_links
from .utils import clean_file_name, hash_file, is_remote_url, join_remote_path, read_text


class ScanError(RuntimeError):
    pass


@dataclass(frozen=True)
class ImageReference:
    alt_text: str
    original_link_text: str
    raw_path: str
    resolved_local_path: str
    source_document_path: str


@dataclass(frozen=True)
class UploadTask:
    local_path: str
    remote_path: str
    filename: str


@dataclass
class DocumentPlan:
    """Everything the pipeline needs to know about one Markdown document.

    ``references`` lists every local image that resolved on disk. Those whose
    URL is already known from the cache appear in ``cached``; the remaining
    distinct images that no earlier document has claimed appear in ``tasks``.
    """

    path: str
    references: list[ImageReference] = field(default_factory=list)
    cached: dict[str, str] = field(default_factory=dict)
    tasks: list[UploadTask] = field(default_factory=list)
    missing: int = 0
    error: str | None = None


class Scanner:
    def __init__(
        self,
        config: UploadConfig,
        cache: ContentCache,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._config = config
        self._cache = cache
        self._cancel_event = cancel_event or threading.Event()
        self._claimed: set[str] = set()
        self.files_total = 0

    def collect(self, source: Path) -> list[Path]:
        if not source.exists():
            raise ScanError(f"source does not exist: {source}")
        if source.is_file():
            if source.suffix.lower() not in {ext.lower() for ext in self._config.markdown_ext}:
                raise ScanError(f"not a Markdown file: {source}")
            self.files_total = 1
            return [source]
        if not source.is_dir():
            raise ScanError(f"source is neither a file nor a directory: {source}")
        files = collect_markdown_files(source, self._config.markdown_ext, self._config.exclude_globs)
        self.files_total = len(files)
        return files

    def scan(self, source: Path) -> Iterator[DocumentPlan]:
        logger = logging.getLogger(__name__)
        single_file = source.is_file()
        for path in self.collect(source):
            if self._cancel_event.is_set():
                logger.warning("Scan cancelled before %s", path)
                return
            try:
                plan = self.scan_document(path)
            except (OSError, UnicodeDecodeError) as exc:
                if single_file:
                    raise ScanError(f"failed to read file {path}: {exc}") from exc
                logger.error("Failed to read %s: %s", path, exc)
                plan = DocumentPlan(path=str(path), error=str(exc))
            yield plan

    def scan_document(self, path: Path) -> DocumentPlan:
        logger = logging.getLogger(__name__)
        logger.info("Processing file: %s", path)
        content = read_text(path)
        plan = DocumentPlan(path=str(path))

        links = find_image_links(content)
        if not links:
            logger.debug("No images found in file %s", path)
            return plan

        for link in links:
            if is_remote_url(link.target):
                continue
            local_path = resolve_image_path(path, link.target)
            if not local_path.is_file():
                logger.warning("Image does not exist: %s (referenced from %s)", local_path, path)
                plan.missing += 1
                continue
            ref = ImageReference(
                alt_text=link.alt,
                original_link_text=link.raw,
                raw_path=link.target,
                resolved_local_path=str(local_path),
                source_document_path=str(path),
            )
            key = ref.resolved_local_path
            if key in plan.cached or key in self._claimed:
                plan.references.append(ref)
                continue

            cached_url = self._lookup_cache(local_path)
            if cached_url is not None:
                plan.cached[key] = cached_url
                plan.references.append(ref)
                continue

            try:
                task = self._build_task(local_path)
            except OSError as exc:
                logger.warning("Failed to hash %s: %s", local_path, exc)
                plan.missing += 1
                continue
            self._claimed.add(key)
            plan.tasks.append(task)
            plan.references.append(ref)

        logger.info(
            "Found %d local images in %s (cached=%d, new=%d, missing=%d)",
            len(plan.references),
            path,
            len(plan.cached),
            len(plan.tasks),
            plan.missing,
        )
        return plan

    def _lookup_cache(self, local_path: Path) -> str | None:
        if self._config.force:
            return None
        entry = self._cache.get_item(str(local_path))
        if entry is None and self._config.match_cache_by_hash:
            try:
                entry = self._cache.find_by_hash(hash_file(local_path, self._config.hash_algo))
            except OSError:
                entry = None
        if entry is None:
            return None
        logging.getLogger(__name__).info("Using cached URL for image: %s -> %s", local_path, entry.url)
        return entry.url

    def _build_task(self, local_path: Path) -> UploadTask:
        content_hash = hash_file(local_path, self._config.hash_algo)
        return UploadTask(
            local_path=str(local_path),
            remote_path=build_remote_path(local_path.name, content_hash, self._config.remote_dir),
            filename=local_path.name,
        )


def collect_markdown_files(root_dir: Path, exts: list[str], exclude_globs: list[str] | None = None) -> list[Path]:
    logger = logging.getLogger(__name__)
    allowed = {ext.lower() for ext in exts}
    paths: list[Path] = []

    def on_error(exc: OSError) -> None:
        logger.error("Cannot read directory %s: %s", exc.filename, exc)

    for current_root, dirs, files in os.walk(root_dir, onerror=on_error):
        dirs.sort()
        for file_name in files:
            path = Path(current_root) / file_name
            if path.suffix.lower() not in allowed:
                continue
            rel_path = path.relative_to(root_dir).as_posix()
            if any(fnmatch.fnmatch(rel_path, pattern) for pattern in exclude_globs or []):
                continue
            paths.append(path)
    paths.sort(key=lambda value: str(value))
    return paths


def resolve_image_path(document: Path, target: str) -> Path:
    candidate = Path(target)
    if candidate.is_absolute():
        return candidate
    return Path(os.path.abspath(document.parent / candidate))


def build_remote_path(filename: str, content_hash: str, remote_dir: str = "images") -> str:
    stem, ext = os.path.splitext(filename)
    name = clean_file_name(stem) or "image"
    return join_remote_path(remote_dir, f"{name}_{content_hash[:8]}{ext}")
