from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..errors import StateError
from .models import SCHEMA_VERSION, AppState

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write bytes to a path using a temporary file and replace.

    Either the old file remains or the new file fully replaces it. The temp file is
    hidden so the library watcher never mistakes it for an entity.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    finally:
        try:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
        except OSError:
            logger.debug("Could not remove temp file %s", tmp_name, exc_info=True)


class StateStore:
    """Read and write the persisted application state (JSON).

    Loading never fails: a missing file gives defaults, a corrupt one is logged and
    the ``.bak`` copy of the previous good state is tried before falling back to
    defaults. Each successful write keeps the previous file as ``.bak``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.backup_path = self.path.with_suffix(self.path.suffix + ".bak")

    def load(self) -> AppState:
        if not self.path.exists():
            logger.debug("No state file at %s, starting fresh", self.path)
            return AppState()
        try:
            return self._read(self.path)
        except StateError as exc:
            logger.warning("Ignoring corrupt state file %s: %s", self.path, exc)
        if self.backup_path.exists():
            try:
                state = self._read(self.backup_path)
            except StateError as exc:
                logger.warning("Backup state %s is unusable too: %s", self.backup_path, exc)
            else:
                logger.info("Recovered state from %s", self.backup_path)
                return state
        return AppState()

    def _read(self, path: Path) -> AppState:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateError(f"Cannot read {path}: {exc}") from exc
        try:
            state = AppState.model_validate_json(text)
        except ValidationError as exc:
            raise StateError(str(exc)) from exc
        if state.schema_version > SCHEMA_VERSION:
            raise StateError(f"State schema version {state.schema_version} is newer than supported {SCHEMA_VERSION}")
        return state

    def save(self, state: AppState) -> None:
        data = state.model_dump_json(indent=2).encode("utf-8")
        try:
            if self.path.exists():
                shutil.copy2(self.path, self.backup_path)
            atomic_write_bytes(self.path, data)
        except OSError as exc:
            raise StateError(f"Cannot write state to {self.path}: {exc}") from exc
        logger.debug("State written to %s", self.path)
