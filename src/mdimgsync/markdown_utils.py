from __future__ import annotations

import re
from dataclasses import dataclass


_MD_IMAGE_RE = re.compile(r"!\[(?P<alt>[^\]]*)\]\((?P<url>[^)]+)\)")


@dataclass(frozen=True)
class ImageLink:
    alt: str
    target: str
    raw: str


def find_image_links(md_text: str) -> list[ImageLink]:
    links = []
    for match in _MD_IMAGE_RE.finditer(md_text):
        links.append(
            ImageLink(
                alt=match.group("alt"),
                target=_clean_url(match.group("url").strip()),
                raw=match.group(0),
            )
        )
    return links


def format_image_link(alt: str, url: str) -> str:
    return f"![{alt}]({url})"


def apply_replacements(md_text: str, replacements: list[tuple[str, str]]) -> tuple[str, int]:
    """Substitute one occurrence of ``old`` for every ``(old, new)`` pair.

    Identical links that appear several times are listed several times, so
    every occurrence is rewritten. Returns the new text and how many
    substitutions actually changed it.
    """
    counts: dict[tuple[str, str], int] = {}
    for old, new in replacements:
        if old != new:
            counts[(old, new)] = counts.get((old, new), 0) + 1

    changed = 0
    for (old, new), count in counts.items():
        found = min(md_text.count(old), count)
        if found:
            md_text = md_text.replace(old, new, found)
            changed += found
    return md_text, changed


def _clean_url(value: str) -> str:
    if value.startswith("<") and value.endswith(">"):
        return value[1:-1]
    return value
