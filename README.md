# kanibuild

Building blocks for a container image builder that runs without a daemon.
The package holds the decision logic of a multi-stage build: layer cache
keys, cross-stage file dependencies, snapshot decisions, base image
selection, image references and the files written after a push.

## Install

```
pip install kanibuild
pip install "kanibuild[test]"   # with the test tools
```

## What is inside

- `kanibuild.logsetup`: `configure(level, log_format, log_timestamp=False)`
  sets the level of the `kanibuild` logger and installs a handler on stderr in
  the `text`, `color` or `json` format (`LogFormat`); it returns the logger.
  `parse_level` maps names such as `info`, `debug` or `trace` to levels.
  Unknown levels or formats raise `ValueError`.
- `kanibuild.composite_cache`: `CompositeCache` builds a layer cache key from
  a sequence of keys and the contents of files and directories
  (`add_key`, `add_path`, `key`, `hash`, `copy`). `add_path` takes an optional
  `excludes(path) -> bool` callable to leave files out. `hash_file` hashes a
  file's mode, owner and content, or a symlink's target, without following
  links.
- `kanibuild.reference`: `parse_reference` and `normalize_reference` for image
  names, the `Reference` value (`context()`, `name`, `with_registry`),
  `Platform` and `current_platform`, `RegistryOptions`, and
  `RemoteImageRetriever`, which calls a fetcher you supply, tries registry
  mirrors first for images on the default registry, and remembers images it
  has already fetched. Bad names raise `BadReferenceError`.
- `kanibuild.push`: `PushOptions`, `docker_conf_location` (honours
  `DOCKER_CONFIG`), `user_agent` (adds `UPSTREAM_CLIENT_TYPE`),
  `image_name_digest_lines`, `write_digest_files`, `write_image_outputs`
  (JSON lines under `$BUILDER_OUTPUT/images`), `needs_gcr_helper` and
  `check_push_permissions`, which runs `docker-credential-gcr
  configure-docker` for GCR and `pkg.dev` registries when no Docker
  configuration exists, then calls a permission check you supply. Failures
  raise `PushError`.
- `kanibuild.source_image`: `SourceStage`, `SourceImageResolver`,
  `resolve_base_name` and `intermediate_tar_path` for finding a stage's base
  image: `scratch` gives `EMPTY_IMAGE`, an earlier stage gives its saved
  tarball (`TarballImage`), then an optional local cache
  (`CacheMissError`, `CacheExpiredError`), then the remote retriever.
- `kanibuild.stage_config`: `SnapshotMode`, `should_take_snapshot`,
  `review_config`, `init_config` (default `Env`, `key=value` labels) and
  `parse_custom_platform`.
- `kanibuild.stage_deps`: `Stage`, `CopyFrom`, `files_to_save`,
  `from_previous_stage`, `extra_stage_images` and
  `resolve_cross_stage_instructions`.

## Example

```python
from kanibuild.composite_cache import CompositeCache

cache = CompositeCache("meow", "purr")
print(cache.key())   # meow-purr
print(cache.hash())  # b4fd5a11af812a11a79d794007c842794cc668c8e7ebaba6d1e6d021b8e06c71
```

```python
from kanibuild.reference import parse_reference

ref = parse_reference("debian")
print(ref.name)  # index.docker.io/library/debian:latest
```

## What it does not do

The package has no command line and does not run a build. It does not parse
Dockerfiles, execute instructions, take filesystem snapshots, or decide which
paths go into a snapshot. It has no registry client: pulling images and
checking push permission are done by callables you pass in, and nothing is
uploaded.

## Running the tests

```
pytest
```