"""Cross-stage references in multi-stage builds and the files they carry over."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

_MAGIC = frozenset("*?[")


@dataclass
class CopyFrom:
    """A ``COPY --from=<source>`` instruction: a stage index, a stage name or an image."""

    source: str
    sources: list[str] = field(default_factory=list)
    dest: str = ""

    def __str__(self) -> str:
        return " ".join(["COPY", f"--from={self.source}", *self.sources, self.dest])


@dataclass
class Stage:
    """A build stage: its optional name and its instructions."""

    name: str = ""
    commands: list[Any] = field(default_factory=list)

    @property
    def copies(self) -> list[CopyFrom]:
        """The instructions that copy from another stage or image."""
        return [c for c in self.commands if isinstance(c, CopyFrom) and c.source]


def _has_magic(part: str) -> bool:
    return any(ch in _MAGIC for ch in part)


def _glob(pattern: str) -> list[str]:
    """Match an absolute pattern one path component at a time; ``*`` never crosses ``/``."""
    if not _has_magic(pattern):
        return [pattern] if os.path.lexists(pattern) else []
    anchor = os.sep if pattern.startswith(os.sep) else ""
    parts = [p for p in pattern.split(os.sep) if p]
    matches = [anchor or os.curdir]
    for part in parts:
        found: list[str] = []
        for base in matches:
            if not _has_magic(part):
                candidate = os.path.join(base, part)
                if os.path.lexists(candidate):
                    found.append(candidate)
                continue
            try:
                names = sorted(os.listdir(base))
            except (NotADirectoryError, FileNotFoundError, PermissionError):
                continue
            found.extend(os.path.join(base, n) for n in names if fnmatch.fnmatchcase(n, part))
        matches = found
        if not matches:
            break
    return matches


def _dedupe(items: Iterable[str]) -> Iterator[str]:
    seen: set[str] = set()
    for item in items:
        if item not in seen:
            seen.add(item)
            yield item


def files_to_save(deps: Iterable[str], root_dir: str) -> list[str]:
    """Paths under ``root_dir`` matching the patterns in ``deps``, relative to it.

    A matched symlink contributes its target as well. Duplicates are removed,
    keeping the first occurrence.
    """
    real_root = os.path.realpath(root_dir)
    found: list[str] = []
    for src in deps:
        pattern = os.path.join(root_dir, src.lstrip(os.sep))
        for match in _glob(pattern):
            if os.path.islink(match):
                try:
                    target = os.path.realpath(match, strict=True)
                except OSError:
                    target = None
                if target is not None:
                    found.append(os.path.relpath(target, real_root))
            found.append(os.path.relpath(match, root_dir))
    return list(_dedupe(found))


def from_previous_stage(copy_from: CopyFrom, previous_names: Iterable[str]) -> bool:
    """Whether the copy's source is the name of an earlier stage."""
    return any(name == copy_from.source for name in previous_names)


def _as_index(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def extra_stage_images(stages: Sequence[Stage]) -> list[str]:
    """Image names that ``COPY --from`` refers to which are not earlier stages.

    Names are returned in order of appearance, once per instruction.
    """
    images: list[str] = []
    names: list[str] = []
    for stage_index, stage in enumerate(stages):
        for copy in stage.copies:
            from_index = _as_index(copy.source)
            if from_index is not None and stage_index > from_index >= 0:
                continue
            if from_previous_stage(copy, names):
                continue
            logger.debug("Found extra base image stage %s", copy.source)
            images.append(copy.source)
        if stage.name:
            names.append(stage.name)
    return images


def resolve_cross_stage_instructions(stages: Sequence[Stage]) -> dict[str, str]:
    """Rewrite ``COPY --from=<name>`` to stage indexes and return the name-to-index map.

    Stage names match case-insensitively; a stage may refer to itself by name.
    """
    name_to_index: dict[str, str] = {}
    for i, stage in enumerate(stages):
        if stage.name:
            name_to_index[stage.name.lower()] = str(i)
        for copy in stage.copies:
            resolved = name_to_index.get(copy.source.lower())
            if resolved is not None:
                copy.source = resolved
    logger.debug("Built stage name to index map: %s", name_to_index)
    return name_to_index