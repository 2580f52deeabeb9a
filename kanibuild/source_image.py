"""Selection of the base image a build stage starts from."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from kanibuild.reference import RegistryOptions, parse_reference

logger = logging.getLogger(__name__)

NO_BASE_IMAGE = "scratch"
DEFAULT_STAGES_DIR = "/kaniko/stages"

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_TOKEN_RE = re.compile(
    r"\\(?P<escaped>.)"
    rf"|\$\{{(?P<braced>{_NAME})(?:(?P<op>:[-+])(?P<word>[^}}]*))?\}}"
    rf"|\$(?P<plain>{_NAME})"
    r"|(?P<bad>\$\{)",
    re.DOTALL,
)


class CacheMissError(LookupError):
    """The image is not in the local cache."""


class CacheExpiredError(LookupError):
    """The image is in the local cache but has expired."""


@dataclass(frozen=True)
class EmptyImage:
    """An image with no layers, used for ``FROM scratch``."""


EMPTY_IMAGE = EmptyImage()


@dataclass(frozen=True)
class TarballImage:
    """An image saved by an earlier stage as a tarball."""

    path: str


@dataclass
class SourceStage:
    """What a stage needs to find its base image."""

    base_name: str
    meta_args: Mapping[str, Optional[str]] = field(default_factory=dict)
    base_image_stored_locally: bool = False
    base_image_index: int = 0


def _expand(word: str, env: Mapping[str, str]) -> str:
    def replace(match: re.Match) -> str:
        if match.group("escaped") is not None:
            return match.group("escaped")
        if match.group("bad") is not None:
            raise ValueError(f"missing '}}' or invalid variable name in: {word}")
        name = match.group("braced") or match.group("plain")
        value = env.get(name, "")
        op = match.group("op")
        if op == ":-":
            return value if value else _expand(match.group("word"), env)
        if op == ":+":
            return _expand(match.group("word"), env) if value else ""
        return value

    return _TOKEN_RE.sub(replace, word)


def resolve_base_name(base_name: str, build_args: Iterable[str]) -> str:
    """Expand ``$VAR`` and ``${VAR}`` in a base image name from ``KEY=value`` args.

    The first definition of a key wins; unknown variables expand to nothing.
    """
    env: dict[str, str] = {}
    for arg in build_args:
        key, sep, value = arg.partition("=")
        if sep:
            env.setdefault(key, value)
    return _expand(base_name, env)


def intermediate_tar_path(stages_dir: str, index: int) -> str:
    """Where the image of stage ``index`` is saved as a tarball."""
    return os.path.join(stages_dir, str(index))


def _default_digest(image: Any) -> str:
    digest = getattr(image, "digest")
    return str(digest() if callable(digest) else digest)


class SourceImageResolver:
    """Finds the base image of a stage: scratch, an earlier stage, the cache or a registry."""

    def __init__(
        self,
        retrieve_remote: Callable[[str, RegistryOptions, str], Any],
        *,
        registry_options: Optional[RegistryOptions] = None,
        custom_platform: str = "",
        cache: bool = False,
        cache_dir: str = "",
        stages_dir: str = DEFAULT_STAGES_DIR,
        load_tarball: Optional[Callable[[int], Any]] = None,
        local_cache: Optional[Callable[[str], Any]] = None,
        image_digest: Callable[[Any], str] = _default_digest,
    ) -> None:
        self._retrieve_remote = retrieve_remote
        self.registry_options = registry_options or RegistryOptions()
        self.custom_platform = custom_platform
        self.cache = cache
        self.cache_dir = cache_dir
        self.stages_dir = stages_dir
        self._load_tarball = load_tarball or self._tarball_image
        self._local_cache = local_cache
        self._image_digest = image_digest

    def _tarball_image(self, index: int) -> TarballImage:
        path = intermediate_tar_path(self.stages_dir, index)
        logger.info("Base image from previous stage %d found, using saved tar at path %s", index, path)
        if not os.path.isfile(path):
            raise FileNotFoundError(f"no saved image for stage {index} at {path}")
        return TarballImage(path)

    def _cached_image(self, image: str) -> Any:
        ref = parse_reference(image)
        if ref.digest:
            cache_key = ref.digest
        else:
            remote = self._retrieve_remote(image, self.registry_options, self.custom_platform)
            cache_key = self._image_digest(remote)
        return self._local_cache(cache_key)

    def retrieve(self, stage: SourceStage, build_args: Iterable[str] = ()) -> Any:
        """Return the base image of ``stage``."""
        args = [f"{key}={'' if value is None else value}" for key, value in stage.meta_args.items()]
        args.extend(build_args)
        base_name = resolve_base_name(stage.base_name, args)

        if base_name == NO_BASE_IMAGE:
            logger.info("No base image, nothing to extract")
            return EMPTY_IMAGE

        if stage.base_image_stored_locally:
            return self._load_tarball(stage.base_image_index)

        if self.cache and self.cache_dir and self._local_cache is not None:
            try:
                cached = self._cached_image(base_name)
            except CacheMissError:
                logger.debug("Image %s not found in cache", base_name)
            except CacheExpiredError:
                logger.debug("Image %s found in cache but was expired", base_name)
            except Exception as err:  # a broken cache must not stop the build
                logger.error("Error while retrieving image from cache: %s %s", base_name, err)
            else:
                if cached is not None:
                    return cached

        return self._retrieve_remote(base_name, self.registry_options, self.custom_platform)