import sys
from pathlib import Path

import pytest

# Ensure 'src' is on sys.path for test imports without installing the package
ROOT = Path(__file__).resolve().parents[1]
src = ROOT / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from savekeeper.errors import IoFailure  # noqa: E402
from savekeeper.io.fileops import FileOps  # noqa: E402


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class LockedFileOps(FileOps):
    """FileOps that refuses to unlink or list selected paths, like a file held open elsewhere."""

    def __init__(self, locked=(), unlistable=()) -> None:
        self.locked = {Path(p) for p in locked}
        self.unlistable = {Path(p) for p in unlistable}
        self.copies = []

    def remove_file(self, path):
        if Path(path) in self.locked:
            raise IoFailure(path, PermissionError(13, "file is locked", str(path)))
        super().remove_file(path)

    def list_dir(self, path):
        if Path(path) in self.unlistable:
            raise IoFailure(path, PermissionError(13, "permission denied", str(path)))
        return super().list_dir(path)

    def copy_file(self, src, dest, cancel=None):
        self.copies.append((Path(src), Path(dest)))
        super().copy_file(src, dest, cancel)


def write(path: Path, content: str = "save") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def library(tmp_path: Path) -> Path:
    lib = tmp_path / "games"
    lib.mkdir()
    return lib
