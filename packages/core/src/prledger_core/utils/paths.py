"""Path predicates shared by the pipeline (what to review) and the severity policy (what is test code)."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable

# Assets and archives the reviewer collaborator has nothing useful to say about.
NON_CODE_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".svg",
        ".ico",
        ".webp",
        ".bmp",
        ".pdf",
        ".woff",
        ".woff2",
        ".ttf",
        ".eot",
        ".otf",
        ".mp4",
        ".mp3",
        ".wav",
        ".zip",
        ".tar",
        ".gz",
        ".7z",
        ".jar",
        ".dll",
        ".exe",
        ".lock",  # package-lock.json is caught by name below
    }
)

_NON_CODE_NAMES = frozenset({"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock", "Cargo.lock"})


def is_code_file(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    if name in _NON_CODE_NAMES:
        return False
    return not any(name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Return True if path matches any pattern.

    Each pattern may be:
    - an fnmatch glob on the full path: "src/generated/*.py"
    - an fnmatch glob on the basename: "*.lock", "*_pb2.py"
    - a directory name or prefix: "migrations/", "tests" (anything inside that tree)
    """
    basename = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(basename, pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if path.startswith(prefix) or ("/" + prefix) in path:
            return True
    return False
