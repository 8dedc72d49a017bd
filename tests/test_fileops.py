from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import write
from savekeeper.errors import Cancelled, DeleteResult, IoFailure
from savekeeper.io.fileops import FileOps


@pytest.fixture()
def ops():
    return FileOps()


def test_list_dir_skips_hidden_and_sorts(ops, tmp_path: Path):
    write(tmp_path / "b.sl2")
    write(tmp_path / "a.sl2")
    write(tmp_path / ".a.sl2.x.partial")
    (tmp_path / "sub").mkdir()
    entries = ops.list_dir(tmp_path)
    assert [(e.path.name, e.is_dir) for e in entries] == [("a.sl2", False), ("b.sl2", False), ("sub", True)]


def test_list_dir_failure_is_io_failure(ops, tmp_path: Path):
    with pytest.raises(IoFailure) as info:
        ops.list_dir(tmp_path / "missing")
    assert info.value.path == tmp_path / "missing"


def test_copy_replaces_destination_atomically(ops, tmp_path: Path):
    src = write(tmp_path / "src.sl2", "new")
    dest = write(tmp_path / "out" / "dest.sl2", "old")
    ops.copy_file(src, dest)
    assert dest.read_text() == "new"
    assert sorted(p.name for p in dest.parent.iterdir()) == ["dest.sl2"]


def test_cancelled_copy_leaves_destination_untouched(ops, tmp_path: Path):
    src = write(tmp_path / "src.sl2", "new")
    dest = write(tmp_path / "out" / "dest.sl2", "old")
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(Cancelled):
        ops.copy_file(src, dest, cancel)
    assert dest.read_text() == "old"
    assert sorted(p.name for p in dest.parent.iterdir()) == ["dest.sl2"]


def test_rename_refuses_to_overwrite(ops, tmp_path: Path):
    a = write(tmp_path / "a")
    b = write(tmp_path / "b")
    with pytest.raises(IoFailure):
        ops.rename(a, b)
    ops.rename(a, tmp_path / "c")
    assert (tmp_path / "c").exists() and not a.exists()


def test_remove_tree_collects_everything(ops, tmp_path: Path):
    root = tmp_path / "G"
    write(root / "p" / "a.sl2")
    write(root / "q" / "b.sl2")
    result = DeleteResult()
    assert ops.remove_tree(root, result) is True
    assert result.ok
    assert not root.exists()
    assert root in result.removed and root / "p" / "a.sl2" in result.removed
