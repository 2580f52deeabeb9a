import pytest

from kanibuild.reference import RegistryOptions
from kanibuild.source_image import (
    EMPTY_IMAGE,
    CacheMissError,
    SourceImageResolver,
    SourceStage,
    TarballImage,
    intermediate_tar_path,
    resolve_base_name,
)

DIGEST = "sha256:" + "cd" * 32

STAGES = [
    SourceStage(base_name="gcr.io/distroless/base:latest"),
    SourceStage(base_name="scratch"),
    SourceStage(base_name="base"),
]


class Recorder:
    def __init__(self, result=None):
        self.calls = []
        self.result = result

    def __call__(self, *args):
        self.calls.append(args)
        return self.result


def test_standard_image():
    remote = Recorder(None)
    resolver = SourceImageResolver(remote)
    assert resolver.retrieve(STAGES[0]) is None
    assert remote.calls[0][0] == "gcr.io/distroless/base:latest"


def test_scratch_image():
    remote = Recorder("unused")
    assert SourceImageResolver(remote).retrieve(STAGES[1]) == EMPTY_IMAGE
    assert remote.calls == []


def test_tar_image():
    tar = Recorder(None)
    remote = Recorder("unused")
    resolver = SourceImageResolver(remote, load_tarball=tar)
    stage = SourceStage(base_name="base", base_image_stored_locally=True, base_image_index=0)
    assert resolver.retrieve(stage) is None
    assert tar.calls == [(0,)]
    assert remote.calls == []


def test_scratch_image_from_mirror():
    remote = Recorder("unused")
    resolver = SourceImageResolver(remote, registry_options=RegistryOptions(registry_mirrors=["mirror.gcr.io"]))
    assert resolver.retrieve(STAGES[1]) == EMPTY_IMAGE


def test_meta_arg_resolves_base_name():
    remote = Recorder("unused")
    stage = SourceStage(base_name="$BASE", meta_args={"BASE": "scratch"})
    assert SourceImageResolver(remote).retrieve(stage) == EMPTY_IMAGE


def test_meta_args_come_before_build_args():
    remote = Recorder("image")
    stage = SourceStage(base_name="${BASE}:3", meta_args={"BASE": "alpine"})
    assert SourceImageResolver(remote).retrieve(stage, ["BASE=debian"]) == "image"
    assert remote.calls[0][0] == "alpine:3"


def test_build_args_resolve_base_name():
    remote = Recorder("image")
    SourceImageResolver(remote, custom_platform="linux/arm64").retrieve(
        SourceStage(base_name="$IMG"), ["IMG=busybox"]
    )
    assert remote.calls[0][0] == "busybox"
    assert remote.calls[0][2] == "linux/arm64"


@pytest.mark.parametrize(
    "name, args, expected",
    [
        ("$IMG:${TAG}", ["IMG=alpine", "TAG=3"], "alpine:3"),
        ("$IMG", ["IMG=first", "IMG=second"], "first"),
        ("${IMG:-ubuntu}", [], "ubuntu"),
        ("${IMG:+set}", ["IMG=x"], "set"),
        ("${IMG:+set}", [], ""),
        ("pre$MISSING", [], "pre"),
        (r"\$IMG", ["IMG=alpine"], "$IMG"),
        ("plain", ["IMG=x"], "plain"),
    ],
)
def test_resolve_base_name(name, args, expected):
    assert resolve_base_name(name, args) == expected


def test_resolve_base_name_unclosed_brace():
    with pytest.raises(ValueError):
        resolve_base_name("${IMG", ["IMG=x"])


def test_intermediate_tar_path():
    assert intermediate_tar_path("/kaniko/stages", 2) == "/kaniko/stages/2"


def test_default_tarball_loader(tmp_path):
    (tmp_path / "1").write_bytes(b"tar")
    resolver = SourceImageResolver(Recorder(), stages_dir=str(tmp_path))
    stage = SourceStage(base_name="base", base_image_stored_locally=True, base_image_index=1)
    assert resolver.retrieve(stage) == TarballImage(str(tmp_path / "1"))


def test_default_tarball_loader_missing(tmp_path):
    resolver = SourceImageResolver(Recorder(), stages_dir=str(tmp_path))
    stage = SourceStage(base_name="base", base_image_stored_locally=True, base_image_index=4)
    with pytest.raises(FileNotFoundError):
        resolver.retrieve(stage)


def test_cache_hit_by_digest():
    remote = Recorder("remote")
    local = Recorder("cached")
    resolver = SourceImageResolver(remote, cache=True, cache_dir="/cache", local_cache=local)
    assert resolver.retrieve(SourceStage(base_name=f"alpine@{DIGEST}")) == "cached"
    assert local.calls == [(DIGEST,)]
    assert remote.calls == []


def test_cache_lookup_by_remote_digest():
    class Image:
        digest = DIGEST

    remote = Recorder(Image())
    local = Recorder("cached")
    resolver = SourceImageResolver(remote, cache=True, cache_dir="/cache", local_cache=local)
    assert resolver.retrieve(SourceStage(base_name="alpine:3")) == "cached"
    assert local.calls == [(DIGEST,)]


def test_cache_miss_falls_back_to_remote():
    def missing(key):
        raise CacheMissError(key)

    remote = Recorder("remote")
    resolver = SourceImageResolver(remote, cache=True, cache_dir="/cache", local_cache=missing)
    assert resolver.retrieve(SourceStage(base_name=f"alpine@{DIGEST}")) == "remote"


def test_cache_not_used_without_cache_dir():
    remote = Recorder("remote")
    local = Recorder("cached")
    resolver = SourceImageResolver(remote, cache=True, local_cache=local)
    assert resolver.retrieve(SourceStage(base_name=f"alpine@{DIGEST}")) == "remote"
    assert local.calls == []