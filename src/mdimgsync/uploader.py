from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from .cache import CacheError, ContentCache
from .config import ConflictPolicy, UploadConfig
from .markdown_utils import apply_replacements, format_image_link
from .scanner import DocumentPlan, ImageReference, Scanner, UploadTask
from .storage import StorageProvider
from .utils import hash_file, read_text, split_ext, write_text


class HashError(RuntimeError):
    pass


class RemoteCheckError(RuntimeError):
    pass


class UploadError(RuntimeError):
    pass


class RewriteError(RuntimeError):
    pass


class CancelledError(RuntimeError):
    pass


@dataclass
class UploadResult:
    task: UploadTask
    url: str = ""
    uploaded: bool = False
    remote_path: str = ""
    content_hash: str = ""
    error: Exception | None = None


@dataclass
class RunStatistics:
    files_total: int = 0
    files_processed: int = 0
    files_failed: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    missing: int = 0
    files_changed: int = 0
    rewrite_failed: int = 0
    cancelled: bool = False

    def summary_lines(self) -> list[str]:
        return [
            "Upload Statistics:",
            f"  Total Files Processed: {self.files_processed}/{self.files_total}",
            f"  Images Uploaded: {self.uploaded}",
            f"  Images Skipped: {self.skipped}",
            f"  Failed Uploads: {self.failed}",
            f"  Missing Images: {self.missing}",
            f"  Files Changed: {self.files_changed}",
        ]


_STOP = object()
_DONE = object()


class _KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


@dataclass
class _PendingDocument:
    path: str
    references: list[ImageReference]
    urls: dict[str, str]
    outstanding: set[str] = field(default_factory=set)


class Uploader:
    """Upload the local images of Markdown documents and rewrite their links.

    The scanner runs on the calling thread and feeds a bounded task queue
    consumed by ``config.concurrency`` worker threads. A single aggregator
    thread owns the statistics, cache updates and pending replacements; it
    rewrites a document once every image the document references has an
    outcome. Worker threads are joined before the aggregator is told that no
    more results will arrive.
    """

    def __init__(self, config: UploadConfig, provider: StorageProvider, cache: ContentCache) -> None:
        self.config = config
        self.provider = provider
        self.cache = cache
        self.stats = RunStatistics()
        self._cancel_event = threading.Event()
        self._remote_locks = _KeyedLocks()
        self._resolved: dict[str, str | None] = {}
        self._waiting: dict[str, list[_PendingDocument]] = {}
        self._documents: dict[str, _PendingDocument] = {}

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def process(self, source: Path) -> RunStatistics:
        logger = logging.getLogger(__name__)
        concurrency = max(1, self.config.concurrency)
        task_queue: queue.Queue[Any] = queue.Queue(maxsize=concurrency * 2)
        result_queue: queue.Queue[Any] = queue.Queue(maxsize=concurrency * 2)

        workers = [
            threading.Thread(
                target=self._worker,
                args=(task_queue, result_queue),
                name=f"upload-worker-{i}",
            )
            for i in range(concurrency)
        ]
        aggregator = threading.Thread(target=self._aggregate, args=(result_queue,), name="upload-results")
        for worker in workers:
            worker.start()
        aggregator.start()

        scanner = Scanner(self.config, self.cache, self._cancel_event)
        logger.info(
            "Upload start: source=%s, concurrency=%d, force=%s, dry_run=%s, conflict=%s",
            source,
            concurrency,
            self.config.force,
            self.config.dry_run,
            self.config.conflict_policy.value,
        )
        try:
            try:
                for plan in scanner.scan(source):
                    # the plan must reach the aggregator before any of its results
                    result_queue.put(plan)
                    for task in plan.tasks:
                        task_queue.put(task)
            except KeyboardInterrupt:
                self._interrupt()
        finally:
            for _ in workers:
                self._until_done(task_queue.put, _STOP)
            for worker in workers:
                self._until_done(worker.join)
            self._until_done(result_queue.put, _DONE)
            self._until_done(aggregator.join)
            self.stats.files_total = scanner.files_total
            self.stats.cancelled = self.cancelled
            if not self.config.dry_run:
                try:
                    self.cache.save()
                except CacheError as exc:
                    logger.warning("Failed to save cache: %s", exc)

        logger.info(
            "Upload done: processed=%d, uploaded=%d, skipped=%d, failed=%d, changed=%d",
            self.stats.files_processed,
            self.stats.uploaded,
            self.stats.skipped,
            self.stats.failed,
            self.stats.files_changed,
        )
        return self.stats

    def _interrupt(self) -> None:
        if not self.cancelled:
            logging.getLogger(__name__).warning("Interrupted; finishing in-flight uploads")
        self.cancel()

    def _until_done(self, func: Callable[..., Any], *args: Any) -> None:
        """Run one shutdown step; Ctrl-C cancels the run but never skips the step."""
        while True:
            try:
                func(*args)
                return
            except KeyboardInterrupt:
                self._interrupt()

    def _worker(self, task_queue: queue.Queue[Any], result_queue: queue.Queue[Any]) -> None:
        logger = logging.getLogger(__name__)
        while True:
            task = task_queue.get()
            if task is _STOP:
                return
            if self._cancel_event.is_set():
                result_queue.put(UploadResult(task=task, error=CancelledError("run cancelled")))
                continue
            try:
                result = self.upload_task(task)
            except Exception as exc:
                logger.exception("Unexpected failure processing %s", task.local_path)
                result = UploadResult(task=task, error=exc)
            result_queue.put(result)

    def upload_task(self, task: UploadTask) -> UploadResult:
        try:
            content_hash = hash_file(Path(task.local_path), self.config.hash_algo)
        except OSError as exc:
            return UploadResult(task=task, error=HashError(f"failed to calculate hash: {exc}"))

        if self.config.dry_run:
            return UploadResult(
                task=task,
                url=self.provider.get_public_url(task.remote_path),
                remote_path=task.remote_path,
                content_hash=content_hash,
            )

        with self._remote_locks.hold(task.remote_path):
            remote_path = task.remote_path
            try:
                exists = self.provider.object_exists(remote_path)
                if exists and not self.config.force:
                    if self.provider.compare_hash(remote_path, content_hash):
                        return UploadResult(
                            task=task,
                            url=self.provider.get_public_url(remote_path),
                            remote_path=remote_path,
                            content_hash=content_hash,
                        )
                    remote_path = resolve_conflict(
                        self.config.conflict_policy, remote_path, self.provider.object_exists
                    )
            except Exception as exc:
                return UploadResult(task=task, error=RemoteCheckError(f"failed to check remote object: {exc}"))

            metadata = {
                "hash": content_hash,
                "original": task.filename,
                "upload_time": datetime.now(timezone.utc).isoformat(),
            }
            try:
                url = self.provider.upload(task.local_path, remote_path, metadata)
            except Exception as exc:
                return UploadResult(task=task, error=UploadError(f"failed to upload file: {exc}"))

        return UploadResult(
            task=task,
            url=url,
            uploaded=True,
            remote_path=remote_path,
            content_hash=content_hash,
        )

    def _aggregate(self, result_queue: queue.Queue[Any]) -> None:
        while True:
            item = result_queue.get()
            if item is _DONE:
                break
            if isinstance(item, DocumentPlan):
                self._register_document(item)
            else:
                self._handle_result(item)
        for doc in list(self._documents.values()):
            self._rewrite_document(doc)

    def _register_document(self, plan: DocumentPlan) -> None:
        if plan.error is not None:
            self.stats.files_failed += 1
            return
        self.stats.files_processed += 1
        self.stats.missing += plan.missing
        self.stats.skipped += len(plan.cached)
        if not plan.references:
            return

        doc = _PendingDocument(path=plan.path, references=plan.references, urls=dict(plan.cached))
        for ref in plan.references:
            key = ref.resolved_local_path
            if key in doc.urls or key in self._resolved or key in doc.outstanding:
                continue
            doc.outstanding.add(key)
            self._waiting.setdefault(key, []).append(doc)
        self._documents[doc.path] = doc
        if not doc.outstanding:
            self._rewrite_document(doc)

    def _handle_result(self, result: UploadResult) -> None:
        logger = logging.getLogger(__name__)
        local_path = result.task.local_path
        if result.error is not None:
            logger.warning("Error uploading %s: %s", local_path, result.error)
            self.stats.failed += 1
            self._resolved[local_path] = None
        elif result.uploaded:
            logger.info("Uploaded image: %s -> %s", local_path, result.url)
            self.stats.uploaded += 1
            self._resolved[local_path] = result.url
            self.cache.add_item(local_path, result.remote_path, result.url, result.content_hash)
        else:
            if self.config.dry_run:
                logger.info("Dry run: would upload %s -> %s", local_path, result.url)
            else:
                logger.info("Skipped upload (already exists): %s -> %s", local_path, result.url)
                self.cache.add_item(local_path, result.remote_path, result.url, result.content_hash)
            self.stats.skipped += 1
            self._resolved[local_path] = result.url

        for doc in self._waiting.pop(local_path, []):
            doc.outstanding.discard(local_path)
            if not doc.outstanding and doc.path in self._documents:
                self._rewrite_document(doc)

    def _rewrite_document(self, doc: _PendingDocument) -> None:
        logger = logging.getLogger(__name__)
        self._documents.pop(doc.path, None)
        replacements = []
        for ref in doc.references:
            url = doc.urls.get(ref.resolved_local_path) or self._resolved.get(ref.resolved_local_path)
            if url:
                replacements.append((ref.original_link_text, format_image_link(ref.alt_text, url)))
        if not replacements:
            return

        path = Path(doc.path)
        try:
            content = read_text(path)
            new_content, changed = apply_replacements(content, replacements)
            if not changed:
                return
            if not self.config.dry_run:
                write_text(path, new_content)
        except (OSError, UnicodeDecodeError) as exc:
            error = RewriteError(f"failed to rewrite {path}: {exc}")
            logger.error("%s", error)
            self.stats.rewrite_failed += 1
            return

        self.stats.files_changed += 1
        verb = "Would update" if self.config.dry_run else "Updated"
        logger.info("%s %d link(s) in %s", verb, changed, path)


def resolve_conflict(
    policy: ConflictPolicy,
    remote_path: str,
    exists: Callable[[str], bool],
    clock: Callable[[], int] = time.time_ns,
) -> str:
    """Pick the remote path to use when ``remote_path`` holds different content."""
    base, ext = split_ext(remote_path)
    if policy == ConflictPolicy.RENAME:
        return f"{base}_{clock()}{ext}"
    if policy == ConflictPolicy.VERSION:
        version = 1
        while True:
            candidate = f"{base}_v{version}{ext}"
            if not exists(candidate):
                return candidate
            version += 1
    return remote_path
