"""Cache keys composed from commands and the files they use."""

from __future__ import annotations

import hashlib
import os
import stat
from typing import Callable, Iterator, Optional

Excludes = Optional[Callable[[str], bool]]

_CHUNK = 1 << 16


def hash_file(path: str) -> str:
    """Hash a file's mode, ownership and content (or link target) without following links."""
    st = os.lstat(path)
    digest = hashlib.sha256()
    digest.update(str(st.st_mode).encode())
    digest.update(f"{st.st_uid},{st.st_gid}".encode())
    if stat.S_ISLNK(st.st_mode):
        digest.update(os.readlink(path).encode())
    elif stat.S_ISREG(st.st_mode):
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK), b""):
                digest.update(chunk)
    return digest.hexdigest()


def _walk(path: str) -> Iterator[str]:
    """Yield ``path`` and everything beneath it in lexical order, not following links."""
    yield path
    if stat.S_ISDIR(os.lstat(path).st_mode):
        for name in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, name))


def _excluded(excludes: Excludes, path: str) -> bool:
    return bool(excludes and excludes(path))


def _hash_dir(path: str, excludes: Excludes) -> tuple[bool, str]:
    digest = hashlib.sha256()
    empty = True
    for entry in _walk(path):
        if _excluded(excludes, entry):
            continue
        digest.update(hash_file(entry).encode())
        empty = False
    return empty, digest.hexdigest()


class CompositeCache:
    """Builds a cache key from a sequence of keys."""

    def __init__(self, *initial: str) -> None:
        self.keys: list[str] = list(initial)

    def add_key(self, *args: str) -> None:
        """Append keys to the sequence."""
        self.keys.extend(args)

    def key(self) -> str:
        """The human-readable composite key."""
        return "-".join(self.keys)

    def hash(self) -> str:
        """The SHA-256 hex digest of the composite key."""
        return hashlib.sha256(self.key().encode()).hexdigest()

    def add_path(self, path: str, excludes: Excludes = None) -> None:
        """Add the hash of a file or directory tree to the key."""
        st = os.lstat(path)
        if stat.S_ISDIR(st.st_mode):
            empty, dir_hash = _hash_dir(path, excludes)
            if not empty or not _excluded(excludes, path):
                self.keys.append(dir_hash)
            return
        if _excluded(excludes, path):
            return
        self.keys.append(hashlib.sha256(hash_file(path).encode()).hexdigest())

    def copy(self) -> "CompositeCache":
        return CompositeCache(*self.keys)

    def __repr__(self) -> str:
        return f"CompositeCache({self.key()!r})"