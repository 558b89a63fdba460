from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path
from typing import Any

from .cache import ContentCache
from .cleaner import clear_cache, forget_paths
from .config import (
    AppConfig,
    ConfigError,
    StorageConfig,
    UploadConfig,
    get_storage_config,
    load_config,
    normalize_exts,
    parse_conflict_policy,
)
from .scanner import ScanError
from .storage import StorageError, list_providers, open_provider
from .uploader import RunStatistics, Uploader
from .utils import setup_logging


DEFAULT_CONFIG = "config.yaml"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_STRICT = 3
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()

    try:
        argv, config_path = _extract_config_arg(sys.argv[1:] if argv is None else argv)
    except ValueError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)

    args = parser.parse_args(argv)
    try:
        config = load_config(config_path or DEFAULT_CONFIG, required=config_path is not None)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)

    setup_logging(config.runtime.log_level)

    try:
        if args.command == "upload":
            code = _run_upload(args, config)
        elif args.command == "cache":
            code = _run_cache(args, config)
        elif args.command == "providers":
            for name in list_providers():
                print(name)
            code = EXIT_OK
        else:
            parser.error(f"unknown command: {args.command}")
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)
    raise SystemExit(code)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdimgsync")
    parser.add_argument("-c", "--config", help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Upload local images in markdown files and rewrite links")
    source = upload.add_mutually_exclusive_group(required=True)
    source.add_argument("-f", "--file", help="Source markdown file to process")
    source.add_argument("-d", "--dir", help="Source directory containing markdown files")
    upload.add_argument("-s", "--storage", help="Named storage from the config file")
    upload.add_argument("-p", "--provider", help="Storage provider (see 'providers')")
    upload.add_argument("-b", "--bucket", help="Bucket name")
    upload.add_argument("--endpoint", help="Storage endpoint URL")
    upload.add_argument("--root-dir", help="Root directory for the local provider")
    upload.add_argument("--custom-domain", help="Custom domain for generated URLs")
    upload.add_argument("--prefix", help="Path prefix for uploaded files")
    upload.add_argument("--dry-run", action="store_true", default=None, help="Preview changes without uploading")
    upload.add_argument("--concurrency", type=int, help="Number of concurrent uploads")
    upload.add_argument("-F", "--force", action="store_true", default=None, help="Upload even if cached or present")
    upload.add_argument("--conflict", help="Conflict policy (rename, version, overwrite)")
    upload.add_argument("--cache-dir", help="Cache directory path")
    upload.add_argument("--include", help="Comma-separated markdown extensions to include")
    upload.add_argument("--strict", action="store_true", help="Exit non-zero when any image failed")

    cache = subparsers.add_parser("cache", help="Inspect or reset the upload cache")
    cache.add_argument("--cache-dir", help="Cache directory path")
    cache_sub = cache.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("list", help="Print cached uploads")
    cache_sub.add_parser("clear", help="Delete the cache file")
    forget = cache_sub.add_parser("forget", help="Drop cache entries for local image paths")
    forget.add_argument("paths", nargs="+")

    subparsers.add_parser("providers", help="List available storage providers")
    return parser


def _run_upload(args: argparse.Namespace, config: AppConfig) -> int:
    upload_cfg = _merge_upload_args(args, config)
    storage_cfg = _merge_storage_args(args, get_storage_config(config, args.storage))
    if not storage_cfg.provider:
        raise ConfigError("provider (-p) must be specified or set in the configuration file")

    cache = ContentCache(upload_cfg.cache_dir)
    cache.load(create=not upload_cfg.dry_run)
    try:
        provider = open_provider(storage_cfg)
    except StorageError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return EXIT_FAILED

    source = Path(args.file or args.dir)
    uploader = Uploader(upload_cfg, provider, cache)
    try:
        stats = uploader.process(source)
    except ScanError as exc:
        print(f"Scan error: {exc}", file=sys.stderr)
        _print_stats(uploader.stats)
        return EXIT_FAILED
    finally:
        provider.close()

    _print_stats(stats)
    if stats.cancelled:
        return EXIT_INTERRUPTED
    if args.strict and (stats.failed or stats.rewrite_failed or stats.files_failed):
        return EXIT_STRICT
    return EXIT_OK


def _run_cache(args: argparse.Namespace, config: AppConfig) -> int:
    cache_dir = Path(args.cache_dir).expanduser() if args.cache_dir else config.upload.cache_dir
    if args.cache_command == "clear":
        result = clear_cache(cache_dir)
        print(f"Removed {len(result['removed'])} file(s) from {cache_dir}")
    elif args.cache_command == "forget":
        forgotten = forget_paths(cache_dir, args.paths)
        print(f"Forgot {len(forgotten)} entr{'y' if len(forgotten) == 1 else 'ies'}")
    else:
        cache = ContentCache(cache_dir)
        cache.load(create=False)
        _print_cache(cache)
    return EXIT_OK


def _merge_upload_args(args: argparse.Namespace, config: AppConfig) -> UploadConfig:
    upload_cfg = config.upload
    changes: dict[str, Any] = {}
    if args.concurrency is not None:
        if args.concurrency < 1:
            raise ConfigError("--concurrency must be >= 1")
        changes["concurrency"] = args.concurrency
    if args.force is not None:
        changes["force"] = args.force
    if args.dry_run is not None:
        changes["dry_run"] = args.dry_run
    if args.conflict is not None:
        changes["conflict_policy"] = parse_conflict_policy(args.conflict)
    if args.cache_dir:
        changes["cache_dir"] = Path(args.cache_dir).expanduser()
    if args.include:
        changes["markdown_ext"] = normalize_exts(args.include.split(","))
    return dataclasses.replace(upload_cfg, **changes)


def _merge_storage_args(args: argparse.Namespace, storage_cfg: StorageConfig) -> StorageConfig:
    changes: dict[str, Any] = {}
    if args.provider:
        changes["provider"] = args.provider.lower()
    if args.bucket:
        changes["bucket"] = args.bucket
    if args.endpoint:
        changes["endpoint"] = args.endpoint
    if args.root_dir:
        changes["root_dir"] = Path(args.root_dir).expanduser()
    if args.custom_domain:
        changes["custom_domain"] = args.custom_domain
    if args.prefix:
        changes["path_prefix"] = args.prefix.strip("/")
    return dataclasses.replace(storage_cfg, **changes)


def _extract_config_arg(argv: list[str]) -> tuple[list[str], str | None]:
    config_path = None
    cleaned: list[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("--config", "-c"):
            if i + 1 >= len(argv):
                raise ValueError("--config requires a value")
            config_path = argv[i + 1]
            i += 2
            continue
        if arg.startswith("--config="):
            config_path = arg.split("=", 1)[1]
            i += 1
            continue
        if arg.startswith("-c="):
            config_path = arg.split("=", 1)[1]
            i += 1
            continue
        cleaned.append(arg)
        i += 1
    return cleaned, config_path


def _print_stats(stats: RunStatistics) -> None:
    print()
    for line in stats.summary_lines():
        print(line)


def _print_cache(cache: ContentCache) -> None:
    entries = cache.items()
    print(f"Cache file: {cache.path} ({len(entries)} entries)")
    for entry in entries:
        print(f"  - {entry.local_path}")
        print(f"      url: {entry.url}")
        print(f"      hash: {entry.hash}  uploaded: {entry.upload_time}")


if __name__ == "__main__":
    main()
