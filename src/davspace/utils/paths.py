"""Path mapping between the remote tree, the base path and the local mirror.

Remote paths are POSIX-style: a single ``/`` separator, a leading ``/``, no
trailing ``/`` except for the root itself, no empty segments. Everything here
is pure apart from ``safe_local_path``/``documents_directory``, which look at
(but never modify) the local disk, and ``create_safe_directory``.
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from davspace.models.entry import RemoteEntry

SEPARATOR = "/"
ROOT = "/"

# Suffix given to a file whose local name is already taken by a directory.
FILE_SUFFIX = ".file"

_REPEATED_SEP = re.compile(r"/+")


def _segments(path: str) -> list[str]:
    path = (path or "").replace("\\", SEPARATOR)
    return [s for s in _REPEATED_SEP.split(path) if s]


def clean(path: str) -> str:
    """Canonicalize an absolute remote path (``//a//b/`` -> ``/a/b``)."""
    segments = _segments(path)
    if not segments:
        return ROOT
    return SEPARATOR + SEPARATOR.join(segments)


def normalize(path: str, base_path: str = ROOT) -> str:
    """Map a path relative to ``base_path`` to an absolute remote path.

    Separators are collapsed and leading/trailing ones stripped. An input that
    resolves to nothing (``""``, ``"/"``, ``"//"``) yields ``base_path``.
    """
    base = clean(base_path)
    segments = _segments(path)
    if not segments:
        return base
    relative = SEPARATOR.join(segments)
    if base == ROOT:
        return SEPARATOR + relative
    return f"{base}{SEPARATOR}{relative}"


def relative_to(
    absolute_path: str,
    base_path: str,
    *,
    on_mismatch: Callable[[str, str], None] | None = None,
) -> str:
    """Return ``absolute_path`` relative to ``base_path``.

    ``/`` when both are equal, ``/rest`` when ``absolute_path`` lies under the
    base. Otherwise ``absolute_path`` comes back unchanged and ``on_mismatch``
    (if given) is called with both paths.
    """
    absolute = clean(absolute_path)
    base = clean(base_path)
    if base == ROOT:
        return absolute
    if absolute == base:
        return ROOT
    if absolute.startswith(base + SEPARATOR):
        return absolute[len(base):]
    if on_mismatch is not None:
        on_mismatch(absolute, base)
    return absolute


def join(parent: str, name: str) -> str:
    """Append a single name (or relative path) to a remote directory path."""
    parent = clean(parent)
    tail = SEPARATOR.join(_segments(name))
    if not tail:
        return parent
    if parent == ROOT:
        return SEPARATOR + tail
    return f"{parent}{SEPARATOR}{tail}"


def parent_of(path: str) -> str:
    segments = _segments(path)
    if len(segments) <= 1:
        return ROOT
    return SEPARATOR + SEPARATOR.join(segments[:-1])


def basename(path: str) -> str:
    segments = _segments(path)
    return segments[-1] if segments else ""


def is_within(path: str, ancestor: str) -> bool:
    """True when ``path`` is ``ancestor`` itself or lies inside it."""
    path = clean(path)
    ancestor = clean(ancestor)
    if ancestor == ROOT:
        return True
    return path == ancestor or path.startswith(ancestor + SEPARATOR)


def entry_sort_key(entry: "RemoteEntry") -> tuple[int, str]:
    """Directories first, then case-insensitive name order."""
    return (0 if entry.is_dir else 1, entry.name.casefold())


def sort_entries(entries: Iterable["RemoteEntry"]) -> list["RemoteEntry"]:
    return sorted(entries, key=entry_sort_key)


def safe_local_path(local_root: Path | str, relative_path: str) -> Path:
    """Local mirror path for a remote file.

    If a local directory already occupies the exact target name, the file gets
    ``FILE_SUFFIX`` appended instead of colliding with the directory.
    """
    root = Path(local_root)
    segments = _segments(relative_path)
    if not segments:
        return root
    *dirs, name = segments
    local_dir = root.joinpath(*dirs)
    candidate = local_dir / name
    if candidate.is_dir():
        return local_dir / f"{name}{FILE_SUFFIX}"
    return candidate


def create_safe_directory(local_path: Path | str) -> Path:
    """Create a local directory, picking ``name_1``, ``name_2``... if a file is in the way."""
    target = Path(local_path)
    candidate = target
    attempt = 1
    while candidate.exists():
        if candidate.is_dir():
            return candidate
        candidate = target.with_name(f"{target.name}_{attempt}")
        attempt += 1
    candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def documents_directory(home: Path | None = None, platform: str | None = None) -> Path:
    """Best guess at the user's documents folder. Does not create anything."""
    home = home or Path.home()
    platform = platform or sys.platform

    if platform.startswith("win"):
        profile = Path(os.environ.get("USERPROFILE") or home)
        candidates = [
            home / "Documents",
            home / "My Documents",
            profile / "Documents",
            profile / "My Documents",
        ]
    elif platform == "darwin":
        candidates = []
    else:
        candidates = [
            home / "Documents",
            home / "文档",
            home / "My Documents",
            home / "我的文档",
        ]

    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return home / "Documents"
