from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..errors import Cancelled, DeleteResult, IoFailure
from .paths import is_hidden

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class DirEntryInfo:
    """One immediate child of a scanned directory."""

    name: str
    path: Path
    is_dir: bool
    modified: datetime
    size: int


def _mtime(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


class FileOps:
    """Filesystem capability used by the executor, scanner and reconciler.

    Every method reports failures for the path it touched (``IoFailure``) instead of
    aborting a whole batch. Tests substitute a subclass to simulate locked files.
    """

    def list_dir(self, path: Path) -> List[DirEntryInfo]:
        """Enumerate immediate, non-hidden children sorted by name."""
        entries: List[DirEntryInfo] = []
        try:
            with os.scandir(path) as it:
                for de in it:
                    if de.name.startswith("."):
                        continue
                    try:
                        st = de.stat()
                        is_dir = de.is_dir()
                    except OSError:
                        # Vanished between listing and stat
                        logger.debug("Skipping unreadable entry %s", de.path)
                        continue
                    entries.append(
                        DirEntryInfo(
                            name=de.name,
                            path=Path(de.path),
                            is_dir=is_dir,
                            modified=_mtime(st),
                            size=0 if is_dir else st.st_size,
                        )
                    )
        except OSError as exc:
            raise IoFailure(path, exc) from exc
        entries.sort(key=lambda e: e.name)
        return entries

    def stat(self, path: Path) -> Optional[DirEntryInfo]:
        """Return metadata for ``path`` or None when it does not exist."""
        path = Path(path)
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IoFailure(path, exc) from exc
        is_dir = path.is_dir()
        return DirEntryInfo(
            name=path.name,
            path=path,
            is_dir=is_dir,
            modified=_mtime(st),
            size=0 if is_dir else st.st_size,
        )

    def make_dir(self, path: Path) -> None:
        try:
            Path(path).mkdir(parents=False, exist_ok=False)
        except OSError as exc:
            raise IoFailure(path, exc) from exc

    def rename(self, src: Path, dest: Path) -> None:
        """Rename/move ``src`` to ``dest``; refuses to overwrite an existing target."""
        if Path(dest).exists():
            raise IoFailure(dest, FileExistsError(str(dest)))
        try:
            Path(dest).parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dest))
        except OSError as exc:
            raise IoFailure(src, exc) from exc

    def remove_file(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise IoFailure(path, exc) from exc

    def remove_dir(self, path: Path) -> None:
        """Remove an empty directory."""
        try:
            Path(path).rmdir()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise IoFailure(path, exc) from exc

    def remove_tree(self, path: Path, result: DeleteResult) -> bool:
        """Remove ``path`` recursively, recording each failure in ``result``.

        Returns True when ``path`` is gone afterwards.
        """
        path = Path(path)
        if path.is_dir() and not path.is_symlink():
            try:
                children = sorted(path.iterdir())
            except OSError as exc:
                result.fail(path, exc)
                return False
            clean = True
            for child in children:
                clean = self.remove_tree(child, result) and clean
            if not clean:
                # the failing descendants are already recorded
                return False
            try:
                self.remove_dir(path)
            except IoFailure as exc:
                result.failures[path] = exc
                return False
        else:
            try:
                self.remove_file(path)
            except IoFailure as exc:
                result.failures[path] = exc
                return False
        result.removed.append(path)
        return True

    def copy_file(self, src: Path, dest: Path, cancel: Optional[threading.Event] = None) -> None:
        """Copy ``src`` onto ``dest`` through a hidden temp file in the target directory.

        The temp file is renamed over ``dest`` only after the full copy; on failure or
        cancellation it is removed so no partially-written destination remains.
        """
        src, dest = Path(src), Path(dest)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".partial", dir=dest.parent)
        except OSError as exc:
            raise IoFailure(dest, exc) from exc
        try:
            with os.fdopen(fd, "wb") as fdst, open(src, "rb") as fsrc:
                while True:
                    if cancel is not None and cancel.is_set():
                        raise Cancelled(f"Copy to {dest} cancelled")
                    chunk = fsrc.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    fdst.write(chunk)
                fdst.flush()
                os.fsync(fdst.fileno())
            shutil.copystat(src, tmp_name)
            os.replace(tmp_name, dest)
        except OSError as exc:
            raise IoFailure(dest, exc) from exc
        finally:
            if os.path.exists(tmp_name):
                try:
                    os.remove(tmp_name)
                except OSError:
                    logger.warning("Could not remove partial copy %s", tmp_name)


def readable_file(path: Path) -> bool:
    path = Path(path)
    return path.is_file() and os.access(path, os.R_OK) and not is_hidden(path)
