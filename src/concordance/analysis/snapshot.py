"""Read-only handles over the artifact snapshot under review.

A snapshot is either a directory or an archive (.zip, .tar, .tar.gz,
.tgz). Handles never write and hold no open files between reads, so
one handle is shared by every validation worker without locking.
"""

from __future__ import annotations

import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)

_ZIP_SUFFIXES = (".zip",)
_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tar.xz")


class Snapshot(Protocol):
    """Read access to the artifact under review."""

    @property
    def label(self) -> str: ...

    def is_available(self) -> bool:
        """False once the snapshot root can no longer be reached."""
        ...

    def read_lines(self, path: str) -> list[str] | None:
        """Return the file's lines, or None if the path does not exist.

        Raises OSError (or UnicodeDecodeError) on read failures.
        """
        ...


def safe_relative_path(path: str) -> str | None:
    """Normalize a cited path; None if it escapes the snapshot root."""
    if not path or "\x00" in path:
        return None
    cleaned = path.replace("\\", "/")
    pure = PurePosixPath(cleaned)
    if pure.is_absolute() or ".." in pure.parts:
        return None
    parts = [p for p in pure.parts if p not in ("", ".")]
    if not parts:
        return None
    return "/".join(parts)


class DirectorySnapshot:
    """Snapshot backed by a directory tree."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def label(self) -> str:
        return str(self._root)

    def is_available(self) -> bool:
        return self._root.is_dir()

    def read_lines(self, path: str) -> list[str] | None:
        rel = safe_relative_path(path)
        if rel is None:
            return None
        target = self._root / rel
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8").splitlines()


class ArchiveSnapshot:
    """Snapshot backed by a zip or tar archive.

    The member index is built once; each read reopens the archive so
    no handle outlives a single resolution.
    """

    def __init__(self, archive: Path) -> None:
        self._archive = archive
        self._is_zip = archive.name.lower().endswith(_ZIP_SUFFIXES)
        self._members = self._index_members()

    @property
    def label(self) -> str:
        return str(self._archive)

    def is_available(self) -> bool:
        return self._archive.is_file()

    def read_lines(self, path: str) -> list[str] | None:
        rel = safe_relative_path(path)
        if rel is None:
            return None
        member = self._members.get(rel)
        if member is None:
            return None
        if self._is_zip:
            with zipfile.ZipFile(self._archive) as zf:
                data = zf.read(member)
        else:
            with tarfile.open(self._archive) as tf:
                handle = tf.extractfile(member)
                if handle is None:
                    return None
                with handle:
                    data = handle.read()
        return data.decode("utf-8").splitlines()

    def _index_members(self) -> dict[str, str]:
        """Map normalized member paths to their stored names."""
        if self._is_zip:
            with zipfile.ZipFile(self._archive) as zf:
                names = [
                    info.filename
                    for info in zf.infolist()
                    if not info.is_dir()
                ]
        else:
            with tarfile.open(self._archive) as tf:
                names = [m.name for m in tf.getmembers() if m.isfile()]

        index: dict[str, str] = {}
        for name in names:
            rel = safe_relative_path(name)
            if rel is not None:
                index.setdefault(rel, name)
        return index


def open_snapshot(path: Path | None) -> Snapshot | None:
    """Open a snapshot handle, or None when it cannot be used.

    A missing or unreadable snapshot degrades validation to
    'unknown' instead of failing the run.
    """
    if path is None:
        return None
    if path.is_dir():
        return DirectorySnapshot(path)
    if not path.is_file():
        logger.warning("event=snapshot_missing path=%s", path)
        return None

    name = path.name.lower()
    if not name.endswith(_ZIP_SUFFIXES + _TAR_SUFFIXES):
        logger.warning(
            "event=snapshot_unsupported path=%s", path
        )
        return None
    try:
        return ArchiveSnapshot(path)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as exc:
        logger.warning(
            "event=snapshot_unreadable path=%s error=%s", path, exc
        )
        return None
