from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from urllib.parse import quote


_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9\-_]")
MAX_NAME_LENGTH = 50


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def hash_file(path: Path, algo: str = "md5", chunk_size: int = 1024 * 1024) -> str:
    hasher = hashlib.new(algo)
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_text(path: Path, content: str) -> None:
    ensure_dir(path.parent)
    path.write_text(content, encoding="utf-8")


def default_cache_dir() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / "mdimgsync"
    return Path.home() / ".cache" / "mdimgsync"


def is_remote_url(target: str) -> bool:
    lowered = target.lower()
    return lowered.startswith(("http://", "https://", "//"))


def clean_file_name(name: str) -> str:
    name = _UNSAFE_NAME_RE.sub("_", name)
    while "__" in name:
        name = name.replace("__", "_")
    name = name.strip("_")
    return name[:MAX_NAME_LENGTH]


def join_remote_path(*parts: str) -> str:
    cleaned = [part.strip("/") for part in parts if part and part.strip("/")]
    return "/".join(cleaned)


def build_public_url(base_url: str, prefix: str, rel_path: str) -> str:
    base_url = base_url.rstrip("/") + "/" if base_url else ""
    combined = join_remote_path(prefix, rel_path)
    combined = quote(combined, safe="/-_.~%")
    return f"{base_url}{combined}"


def split_ext(remote_path: str) -> tuple[str, str]:
    """Split ``images/a.b.png`` into ``("images/a.b", ".png")``."""
    slash = remote_path.rfind("/")
    dot = remote_path.rfind(".")
    if dot <= slash + 1:
        return remote_path, ""
    return remote_path[:dot], remote_path[dot:]
