import os

import pytest

from kanibuild.stage_deps import (
    CopyFrom,
    Stage,
    extra_stage_images,
    files_to_save,
    from_previous_stage,
    resolve_cross_stage_instructions,
)


def _make_files(root, files):
    for f in files:
        p = os.path.join(root, f)
        os.makedirs(os.path.dirname(p), exist_ok=True)
        with open(p, "w"):
            pass


@pytest.mark.parametrize(
    "args, files, want",
    [
        (["foo"], ["foo"], ["foo"]),
        (["foo*"], ["foo", "foo2", "fooooo", "bar"], ["foo", "foo2", "fooooo"]),
        (
            ["foo*", "bar?"],
            ["foo", "foo2", "fooooo", "bar", "bar1", "bar2", "bar33"],
            ["foo", "foo2", "fooooo", "bar1", "bar2"],
        ),
        (["foo"], ["foo/bar", "foo/baz", "foo/bat/baz"], ["foo"]),
    ],
    ids=["simple", "glob", "complex glob", "dir"],
)
def test_files_to_save(tmp_path, args, files, want):
    _make_files(str(tmp_path), files)
    got = files_to_save(args, str(tmp_path))
    assert sorted(got) == sorted(want)


def test_files_to_save_absolute_pattern(tmp_path):
    _make_files(str(tmp_path), ["tmp/foo.txt"])
    assert files_to_save(["/tmp/foo.txt"], str(tmp_path)) == [os.path.join("tmp", "foo.txt")]


def test_files_to_save_includes_symlink_target(tmp_path):
    _make_files(str(tmp_path), ["target.txt"])
    os.symlink(os.path.join(str(tmp_path), "target.txt"), os.path.join(str(tmp_path), "link.txt"))
    got = files_to_save(["link.txt"], str(tmp_path))
    assert sorted(got) == ["link.txt", "target.txt"]


def test_files_to_save_dedupes(tmp_path):
    _make_files(str(tmp_path), ["foo", "foo2"])
    got = files_to_save(["foo*", "foo"], str(tmp_path))
    assert sorted(got) == ["foo", "foo2"]
    assert len(got) == len(set(got))


def test_files_to_save_missing(tmp_path):
    assert files_to_save(["nothing*", "absent"], str(tmp_path)) == []


def test_from_previous_stage():
    copy = CopyFrom("builder", ["/a"], "/b")
    assert from_previous_stage(copy, ["first", "builder"]) is True
    assert from_previous_stage(copy, ["first"]) is False
    assert from_previous_stage(copy, []) is False


def test_resolve_cross_stage_instructions():
    stages = [
        Stage("", ["RUN echo hi > /hi"]),
        Stage("second", [CopyFrom("0", ["/hi"], "/hi2")]),
        Stage("tHiRd", [CopyFrom("second", ["/hi2"], "/hi3"), CopyFrom("1", ["/hi2"], "/hi3")]),
        Stage(
            "",
            [
                CopyFrom("thIrD", ["/hi3"], "/hi4"),
                CopyFrom("third", ["/hi3"], "/hi4"),
                CopyFrom("2", ["/hi3"], "/hi4"),
            ],
        ),
    ]
    mapping = resolve_cross_stage_instructions(stages)
    assert mapping == {"second": "1", "third": "2"}
    for index, stage in enumerate(stages[1:], start=1):
        for command in stage.commands:
            assert command.source == str(index - 1)


def test_resolve_leaves_image_names():
    stages = [Stage("a", [CopyFrom("alpine", ["/x"], "/y")])]
    assert resolve_cross_stage_instructions(stages) == {"a": "0"}
    assert stages[0].commands[0].source == "alpine"


def test_extra_stage_images():
    stages = [
        Stage("first", [CopyFrom("gcr.io/foo/bar", ["/a"], "/b")]),
        Stage(
            "second",
            [
                CopyFrom("0", ["/a"], "/b"),
                CopyFrom("first", ["/a"], "/b"),
                CopyFrom("5", ["/a"], "/b"),
                CopyFrom("second", ["/a"], "/b"),
            ],
        ),
        Stage("", [CopyFrom("second", ["/a"], "/b"), CopyFrom("1", ["/a"], "/b")]),
    ]
    assert extra_stage_images(stages) == ["gcr.io/foo/bar", "5", "second"]


def test_extra_stage_images_ignores_plain_commands():
    stages = [Stage("", ["RUN foo", CopyFrom("", ["a"], "b")])]
    assert extra_stage_images(stages) == []


def test_copy_from_str():
    assert str(CopyFrom("0", ["/a", "/b"], "/c")) == "COPY --from=0 /a /b /c"


def test_stage_copies_filters():
    copy = CopyFrom("x", ["/a"], "/b")
    stage = Stage("s", ["RUN foo", copy, CopyFrom("", ["a"], "b")])
    assert stage.copies == [copy]