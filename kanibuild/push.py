"""Push-side helpers: credential checks, digest files and build outputs."""

from __future__ import annotations

import json
import logging
import os
import stat
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence, Union

from kanibuild.reference import BadReferenceError, Reference, parse_reference

logger = logging.getLogger(__name__)

UPSTREAM_CLIENT_UA_KEY = "UPSTREAM_CLIENT_TYPE"
BUILDER_OUTPUT_KEY = "BUILDER_OUTPUT"
DOCKER_CONFIG_KEY = "DOCKER_CONFIG"
CONFIG_FILE_NAME = "config.json"
DEFAULT_DOCKER_CONFIG = os.sep + os.path.join("kaniko", ".docker", CONFIG_FILE_NAME)
GCR_HELPER = "docker-credential-gcr"


class PushError(Exception):
    """Checking or preparing a push failed."""


@dataclass
class PushOptions:
    """The options that govern pushing an image."""

    destinations: list[str] = field(default_factory=list)
    no_push: bool = False
    cache_repo: str = ""
    insecure: bool = False
    insecure_registries: list[str] = field(default_factory=list)
    digest_file: str = ""
    image_name_digest_file: str = ""
    image_name_tag_digest_file: str = ""

    def is_insecure(self, registry: str) -> bool:
        return self.insecure or registry in self.insecure_registries

    def push_targets(self) -> list[str]:
        """The repositories to check: the cache repository when not pushing."""
        return [self.cache_repo] if self.no_push else list(self.destinations)


def _parse_tag(destination: str) -> Reference:
    ref = parse_reference(destination)
    if ref.digest:
        raise BadReferenceError(f"getting tag for destination: not a tag: {destination}")
    return ref


def docker_conf_location() -> str:
    """Location of the Docker configuration file, honouring ``DOCKER_CONFIG``."""
    docker_config = os.environ.get(DOCKER_CONFIG_KEY, "")
    if not docker_config:
        return DEFAULT_DOCKER_CONFIG
    try:
        st = os.stat(docker_config)
    except FileNotFoundError:
        return DEFAULT_DOCKER_CONFIG
    except OSError:
        return os.path.normpath(docker_config)
    if stat.S_ISDIR(st.st_mode):
        return os.path.normpath(os.path.join(docker_config, CONFIG_FILE_NAME))
    return os.path.normpath(docker_config)


def user_agent(version: str) -> str:
    """The User-Agent header value, including any upstream client type."""
    parts = [f"kaniko/{version}"]
    upstream = os.environ.get(UPSTREAM_CLIENT_UA_KEY, "")
    if upstream:
        parts.append(upstream)
    return ",".join(parts)


def image_name_digest_lines(destinations: Iterable[str], digest: str, with_tag: bool = False) -> str:
    """One ``repository[:tag]@digest`` line per destination."""
    lines = []
    for destination in destinations:
        ref = _parse_tag(destination)
        tag = f":{ref.tag}" if with_tag and ref.tag else ""
        lines.append(f"{ref.context()}{tag}@{digest}\n")
    return "".join(lines)


def write_digest_files(digest: str, options: PushOptions) -> list[str]:
    """Write the digest and image-name files the options ask for; return their paths."""
    written = []
    if options.digest_file:
        with open(options.digest_file, "w", encoding="utf-8") as fh:
            fh.write(digest)
        written.append(options.digest_file)

    if options.image_name_digest_file or options.image_name_tag_digest_file:
        content = image_name_digest_lines(
            options.destinations, digest, with_tag=bool(options.image_name_tag_digest_file)
        )
        for path in (options.image_name_digest_file, options.image_name_tag_digest_file):
            if path:
                with open(path, "w", encoding="utf-8") as fh:
                    fh.write(content)
                written.append(path)
    return written


def write_image_outputs(digest: str, destinations: Sequence[Union[str, Reference]]) -> Optional[str]:
    """Record pushed images as JSON lines under ``$BUILDER_OUTPUT/images``.

    Returns the file written, or None when ``BUILDER_OUTPUT`` is not set.
    """
    directory = os.environ.get(BUILDER_OUTPUT_KEY, "")
    if not directory:
        return None
    path = os.path.join(directory, "images")
    with open(path, "w", encoding="utf-8") as fh:
        for destination in destinations:
            ref = destination if isinstance(destination, Reference) else _parse_tag(destination)
            fh.write(json.dumps({"name": ref.name, "digest": digest}, separators=(",", ":")) + "\n")
    return path


def needs_gcr_helper(registry_name: str) -> bool:
    """Whether pushes to this registry are set up with the GCR credential helper."""
    return (
        registry_name == "gcr.io"
        or registry_name.endswith(".gcr.io")
        or registry_name.endswith(".pkg.dev")
    )


def _run_command(args: list[str]) -> None:
    subprocess.run(args, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)


def check_push_permissions(
    options: PushOptions,
    check_permission: Callable[[Reference], None],
    run_command: Optional[Callable[[list[str]], None]] = None,
) -> None:
    """Check that every target repository can be pushed to.

    ``check_permission`` raises when a push to the given reference is refused.
    ``run_command`` runs the credential helper and raises on failure.
    """
    run = run_command or _run_command
    conf_missing = not os.path.exists(docker_conf_location())
    checked: set[str] = set()

    for destination in options.push_targets():
        ref = _parse_tag(destination)
        if ref.context() in checked:
            continue

        registry = ref.registry
        if needs_gcr_helper(registry):
            if conf_missing:
                args = [GCR_HELPER, "configure-docker", f"--registries={registry}"]
                try:
                    run(args)
                except subprocess.CalledProcessError as err:
                    raise PushError(
                        f"error while configuring {GCR_HELPER} helper: {' '.join(args)} : {err.stderr or ''}"
                    ) from err
                except OSError as err:
                    raise PushError(
                        f"error while configuring {GCR_HELPER} helper: {' '.join(args)} : {err}"
                    ) from err
            else:
                logger.warning(
                    "Skip running %s as user provided docker configuration exists at %s",
                    GCR_HELPER,
                    docker_conf_location(),
                )

        if options.is_insecure(registry):
            ref = ref.with_registry(registry, insecure=True)

        try:
            check_permission(ref)
        except Exception as err:
            raise PushError(f'checking push permission for "{ref}": {err}') from err
        checked.add(ref.context())