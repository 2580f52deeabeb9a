"""Image references, platforms and remote image retrieval with registry mirrors."""

from __future__ import annotations

import dataclasses
import logging
import platform as _platform
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_REPO_RE = re.compile(r"^[a-z0-9_.\-/]+$")
_TAG_RE = re.compile(r"^\w[\w.\-]{0,127}$")
_DIGEST_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.\-]+(?::[0-9]+)?$|^\[[0-9A-Fa-f:]+\](?::[0-9]+)?$")


class BadReferenceError(ValueError):
    """An image reference or registry name could not be parsed."""


def _validate_registry(name: str, strict: bool = False) -> str:
    if not name:
        if strict:
            raise BadReferenceError("strict validation requires the registry to be explicitly defined")
        return DEFAULT_REGISTRY
    if not _REGISTRY_RE.match(name):
        raise BadReferenceError(f"registries must be valid RFC 3986 URI authorities: {name}")
    return DEFAULT_REGISTRY if name == "docker.io" else name


@dataclass(frozen=True)
class Reference:
    """A parsed image reference: registry, repository and a tag or digest."""

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    insecure: bool = False

    @property
    def repository_str(self) -> str:
        if self.registry == DEFAULT_REGISTRY and "/" not in self.repository:
            return f"library/{self.repository}"
        return self.repository

    def context(self) -> str:
        """The repository part, ``registry/repository``."""
        return f"{self.registry}/{self.repository_str}"

    @property
    def identifier(self) -> str:
        return self.digest if self.digest else (self.tag or DEFAULT_TAG)

    @property
    def name(self) -> str:
        if self.digest:
            return f"{self.context()}@{self.digest}"
        return f"{self.context()}:{self.tag or DEFAULT_TAG}"

    @property
    def scheme(self) -> str:
        host = self.registry.split(":", 1)[0]
        local = host in ("localhost", "127.0.0.1") or host.endswith(".local")
        return "http" if self.insecure or local else "https"

    def with_registry(self, registry: str, insecure: bool = False) -> "Reference":
        """Return a copy pointing at another registry."""
        return dataclasses.replace(self, registry=_validate_registry(registry), insecure=insecure)

    def __str__(self) -> str:
        return self.name


def _split_tag(base: str) -> tuple[str, Optional[str]]:
    colon = base.rfind(":")
    if colon != -1 and "/" not in base[colon + 1:]:
        return base[:colon], base[colon + 1:]
    return base, None


def _split_registry(base: str) -> tuple[str, str]:
    parts = base.split("/", 1)
    if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        return _validate_registry(parts[0]), parts[1]
    return DEFAULT_REGISTRY, base


def parse_reference(image: str) -> Reference:
    """Parse an image name such as ``gcr.io/foo/bar:tag`` or ``repo@sha256:...``."""
    digest = None
    if "@" in image:
        base, digest = image.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise BadReferenceError(f"invalid digest in reference: {image}")
        base, tag = _split_tag(base)
    else:
        base, tag = _split_tag(image)
    if tag is not None and not _TAG_RE.match(tag):
        raise BadReferenceError(f"tag can only contain word characters, '.' and '-': {image}")
    registry, repository = _split_registry(base)
    if not repository or len(repository) > 255 or not _REPO_RE.match(repository):
        raise BadReferenceError(
            f"repository can only contain the characters `abcdefghijklmnopqrstuvwxyz0123456789_-./`: {image}"
        )
    if digest:
        return Reference(registry, repository, digest=digest)
    return Reference(registry, repository, tag=tag or DEFAULT_TAG)


def normalize_reference(ref: Reference, image: str) -> Reference:
    """Add the ``library/`` prefix to images that have no repository path."""
    if "/" not in image:
        return parse_reference(f"library/{image}")
    return ref


@dataclass(frozen=True)
class Platform:
    os: str
    architecture: str


_ARCH = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64", "i386": "386", "i686": "386"}


def current_platform(custom_platform: str = "") -> Platform:
    """The platform to pull images for: ``os/arch`` if given, else the running one."""
    if custom_platform:
        parts = custom_platform.split("/")
        if len(parts) < 2:
            raise ValueError(f"custom platform must be of the form os/arch, got {custom_platform}")
        return Platform(os=parts[0], architecture=parts[1])
    if sys.platform.startswith("win"):
        os_name = "windows"
    elif sys.platform.startswith("linux"):
        os_name = "linux"
    else:
        os_name = sys.platform
    machine = _platform.machine().lower()
    return Platform(os=os_name, architecture=_ARCH.get(machine, machine))


@dataclass
class RegistryOptions:
    registry_mirrors: list[str] = field(default_factory=list)
    insecure_pull: bool = False
    insecure_registries: list[str] = field(default_factory=list)

    def is_insecure(self, registry: str) -> bool:
        return self.insecure_pull or registry in self.insecure_registries


ImageFetcher = Callable[[Reference, Platform], Any]


class RemoteImageRetriever:
    """Retrieves images through a fetcher, trying mirrors first and caching results."""

    def __init__(self, fetch: ImageFetcher) -> None:
        self._fetch = fetch
        self.manifest_cache: dict[str, Any] = {}

    def retrieve(self, image: str, options: Optional[RegistryOptions] = None, custom_platform: str = "") -> Any:
        """Return the image named ``image``, raising if it cannot be fetched."""
        options = options or RegistryOptions()
        logger.info("Retrieving image manifest %s", image)

        cached = self.manifest_cache.get(image)
        if cached is not None:
            logger.info("Returning cached image manifest")
            return cached

        ref = parse_reference(image)
        target = current_platform(custom_platform)

        if ref.registry == DEFAULT_REGISTRY:
            normalized = normalize_reference(ref, image)
            for mirror in options.registry_mirrors:
                if options.is_insecure(mirror):
                    mirror_ref = normalized.with_registry(mirror, insecure=True)
                else:
                    mirror_ref = normalized.with_registry(_validate_registry(mirror, strict=True))
                logger.info("Retrieving image %s from registry mirror %s", mirror_ref, mirror)
                try:
                    remote_image = self._fetch(mirror_ref, target)
                except Exception as err:  # any mirror failure falls through to the next
                    logger.warning(
                        "Failed to retrieve image %s from registry mirror %s: %s. "
                        "Will try with the next mirror, or fallback to the default registry.",
                        mirror_ref, mirror, err,
                    )
                    continue
                self.manifest_cache[image] = remote_image
                return remote_image

        registry_name = ref.registry
        if options.is_insecure(registry_name):
            ref = ref.with_registry(registry_name, insecure=True)

        logger.info("Retrieving image %s from registry %s", ref, registry_name)
        remote_image = self._fetch(ref, target)
        if remote_image is not None:
            self.manifest_cache[image] = remote_image
        return remote_image