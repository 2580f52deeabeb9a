"""Per-stage image configuration rules: snapshots, CMD review, defaults and labels."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, MutableMapping, Optional

from kanibuild.reference import Platform, current_platform

SCRATCH_ENV_VARS = ["PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"]
CMD = "cmd"
ENTRYPOINT = "entrypoint"


class SnapshotMode(str, Enum):
    """How changed files are detected when snapshotting the filesystem."""

    TIME = "time"
    FULL = "full"
    REDO = "redo"

    @classmethod
    def parse(cls, value: str) -> "SnapshotMode":
        """Return the mode named ``value``, raising ValueError for unknown names."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"{value} is not a valid snapshot mode") from None


def should_take_snapshot(
    index: int,
    command_count: int,
    metadata_only: bool,
    single_snapshot: bool = False,
    cache: bool = False,
) -> bool:
    """Whether a snapshot is taken after the command at ``index``."""
    is_last_command = index == command_count - 1
    if single_snapshot:
        return is_last_command
    if cache:
        return True
    return not metadata_only


def review_config(command_names: Iterable[str], config: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Clear ``Cmd`` when the stage set ENTRYPOINT but not CMD; return the config."""
    names = {name.lower() for name in command_names}
    if ENTRYPOINT in names and CMD not in names:
        config["Cmd"] = None
    return config


def init_config(
    config: Optional[MutableMapping[str, Any]] = None,
    labels: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """Return a copy of an image config with default ``Env`` and extra ``key=value`` labels."""
    result: dict[str, Any] = dict(config or {})
    if result.get("Env") is None:
        result["Env"] = list(SCRATCH_ENV_VARS)

    label_list = list(labels or ())
    if label_list:
        merged = dict(result.get("Labels") or {})
        for label in label_list:
            key, sep, value = label.partition("=")
            if not sep:
                raise ValueError(f"labels must be of the form key=value, got {label}")
            merged[key] = value
        result["Labels"] = merged
    return result


def parse_custom_platform(custom_platform: str = "") -> Platform:
    """The platform recorded in a built image: ``os/arch`` if given, else the running one."""
    return current_platform(custom_platform)