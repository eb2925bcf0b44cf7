import threading
import time
from datetime import timedelta

import pytest

import micopy.core as core
from micopy.core import (
    DEFAULT_PARALLELISM,
    CopyError,
    CopyPlan,
    FolderConfiguration,
    IgnorePatternConfiguration,
    MicopyConfiguration,
    build_plan,
    copy_directory,
    copy_file,
    copy_folders,
    execute_plan,
    resolve_parallelism,
    scan_files,
)

from conftest import write_tree


def _many_files(root, count):
    return write_tree(root, {f"d{i % 5}/f{i:03d}.txt": f"content {i}" for i in range(count)})


def _snapshot(root):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def test_resolve_parallelism():
    assert resolve_parallelism(None) == DEFAULT_PARALLELISM == 8
    assert resolve_parallelism(0) == 0
    assert resolve_parallelism(3) == 3
    with pytest.raises(ValueError):
        resolve_parallelism(-1)


def test_copy_file_creates_missing_folders(tmp_path):
    src = write_tree(tmp_path / "src", {"a/b/c.txt": "deep"})
    [item] = scan_files(src, tmp_path / "dst")
    copied = copy_file(item)
    assert copied == (tmp_path / "dst" / "a" / "b" / "c.txt").resolve()
    assert copied.read_text() == "deep"


def test_copy_file_overwrites(tmp_path):
    src = write_tree(tmp_path / "src", {"a.txt": "new"})
    dst = write_tree(tmp_path / "dst", {"a.txt": "old content"})
    [item] = scan_files(src, dst)
    copy_file(item)
    assert (dst / "a.txt").read_text() == "new"


def test_copy_file_existing_folder_is_fine(tmp_path):
    src = write_tree(tmp_path / "src", {"a.txt": "x"})
    (tmp_path / "dst").mkdir()
    [item] = scan_files(src, tmp_path / "dst")
    copy_file(item)
    copy_file(item)
    assert (tmp_path / "dst" / "a.txt").read_text() == "x"


@pytest.mark.parametrize("parallelism", [0, 1, 3, None])
def test_mirrors_tree_and_counts_once(tmp_path, reporter, parallelism):
    src = _many_files(tmp_path / "src", 40)
    plan = build_plan([FolderConfiguration(str(src), str(tmp_path / "dst"))])

    copied = execute_plan(plan, parallelism, reporter)

    assert copied == len(plan) == 40
    assert _snapshot(tmp_path / "dst") == _snapshot(src)
    assert [c for c, _ in reporter.updates] == list(range(1, 41))
    assert {t for _, t in reporter.updates} == {40}
    [(total, elapsed)] = reporter.summaries
    assert total == 40
    assert isinstance(elapsed, timedelta)


def test_sequential_copies_in_plan_order(tmp_path, reporter, monkeypatch):
    src = write_tree(tmp_path / "src", {f"f{i:03d}.txt": str(i) for i in range(100)})
    plan = build_plan([FolderConfiguration(str(src), str(tmp_path / "dst"))])

    seen = []
    original = core.copy_file

    def recording(item):
        seen.append((threading.current_thread(), item))
        return original(item)

    monkeypatch.setattr(core, "copy_file", recording)
    assert execute_plan(plan, 0, reporter) == 100

    assert [item for _, item in seen] == list(plan.items)
    assert {thread for thread, _ in seen} == {threading.current_thread()}
    assert reporter.summaries[0][0] == 100


def test_pool_never_exceeds_parallelism(tmp_path, monkeypatch):
    src = _many_files(tmp_path / "src", 30)
    plan = build_plan([FolderConfiguration(str(src), str(tmp_path / "dst"))])

    lock = threading.Lock()
    active = {"now": 0, "peak": 0}
    original = core.copy_file

    def slow(item):
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        time.sleep(0.01)
        try:
            return original(item)
        finally:
            with lock:
                active["now"] -= 1

    monkeypatch.setattr(core, "copy_file", slow)
    assert execute_plan(plan, 3) == 30
    assert 1 <= active["peak"] <= 3


def test_copy_twice_is_idempotent(tmp_path):
    src = _many_files(tmp_path / "src", 12)
    dst = tmp_path / "dst"

    copy_directory(src, dst, parallelism=4)
    first = _snapshot(dst)
    copy_directory(src, dst, parallelism=4)

    assert _snapshot(dst) == first == _snapshot(src)


def test_copy_directory_honours_excludes(tmp_path):
    src = write_tree(tmp_path / "src", {"keep/a.txt": "a", "skip/b.txt": "b"})
    assert copy_directory(src, tmp_path / "dst", 0, excludes=["skip/**"]) == 1
    assert (tmp_path / "dst" / "keep" / "a.txt").exists()
    assert not (tmp_path / "dst" / "skip").exists()


def test_copy_folders_uses_configuration(tmp_path, reporter):
    src = write_tree(tmp_path / "src", {"docs/readme.txt": "hi", "build/out.bin": "x"})
    configuration = MicopyConfiguration(
        folders=(FolderConfiguration(str(src), str(tmp_path / "dst"), "skip-build"),),
        ignore_patterns=(IgnorePatternConfiguration("skip-build", ("build/**",)),),
        parallelism=2,
    )
    assert copy_folders(configuration, reporter) == 1
    assert reporter.summaries[0][0] == 1
    assert (tmp_path / "dst" / "docs" / "readme.txt").read_text() == "hi"
    assert not (tmp_path / "dst" / "build").exists()


def test_empty_plan(tmp_path, reporter):
    assert execute_plan(CopyPlan(), 4, reporter) == 0
    assert reporter.updates == []
    assert reporter.summaries[0][0] == 0


def test_vanished_source_fails_fast_sequential(tmp_path, reporter):
    src = write_tree(tmp_path / "src", {f"f{i}.txt": str(i) for i in range(5)})
    dst = tmp_path / "dst"
    plan = build_plan([FolderConfiguration(str(src), str(dst))])
    (src / "f2.txt").unlink()

    with pytest.raises(CopyError) as exc:
        execute_plan(plan, 0, reporter)

    err = exc.value
    assert err.item.file_name == "f2.txt"
    assert err.source == src.resolve() / "f2.txt"
    assert err.destination == dst.resolve() / "f2.txt"
    assert isinstance(err.__cause__, FileNotFoundError)
    assert (err.completed, err.total) == (2, 5)
    assert sorted(p.name for p in dst.iterdir()) == ["f0.txt", "f1.txt"]
    assert reporter.updates == [(1, 5), (2, 5)]
    assert reporter.summaries == []


def test_vanished_source_fails_fast_pooled(tmp_path, reporter, monkeypatch):
    src = write_tree(tmp_path / "src", {f"f{i:02d}.txt": str(i) for i in range(20)})
    dst = tmp_path / "dst"
    plan = build_plan([FolderConfiguration(str(src), str(dst))])
    (src / "f00.txt").unlink()

    original = core.copy_file

    def slow_unless_missing(item):
        if item.file_name != "f00.txt":
            time.sleep(0.2)
        return original(item)

    monkeypatch.setattr(core, "copy_file", slow_unless_missing)

    with pytest.raises(CopyError) as exc:
        execute_plan(plan, 2, reporter)

    assert exc.value.item.file_name == "f00.txt"
    # the in-flight neighbour finishes, nothing new is started
    assert exc.value.completed == 1
    assert [p.name for p in dst.iterdir()] == ["f01.txt"]
    assert reporter.updates == [(1, 20)]
    assert reporter.summaries == []


def test_unwritable_destination_raises_copy_error(tmp_path):
    src = write_tree(tmp_path / "src", {"sub/a.txt": "a"})
    dst = tmp_path / "dst"
    dst.mkdir()
    (dst / "sub").write_text("a file where a folder should be")

    with pytest.raises(CopyError) as exc:
        copy_directory(src, dst, 0)
    assert exc.value.item.file_name == "a.txt"
