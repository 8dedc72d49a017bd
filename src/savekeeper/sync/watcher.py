from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..io.paths import is_hidden
from .classify import RootKind
from .events import RawEvent, RawKind

logger = logging.getLogger(__name__)

Sink = Callable[[RawEvent], None]


class WatchEventHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into ``RawEvent``s for the sink.

    Runs on the observer thread; it only converts and forwards.
    """

    def __init__(self, sink: Sink) -> None:
        super().__init__()
        self.sink = sink

    def _post(self, event: RawEvent) -> None:
        try:
            self.sink(event)
        except Exception:
            logger.exception("Failed to forward %s for %s", event.kind.value, event.path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not is_hidden(Path(event.src_path)):
            self._post(RawEvent(RawKind.CREATE, Path(event.src_path), is_directory=event.is_directory))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not is_hidden(Path(event.src_path)):
            self._post(RawEvent(RawKind.REMOVE, Path(event.src_path), is_directory=event.is_directory))

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory modifications only mean "a child changed"; the child has its own event
        if event.is_directory or is_hidden(Path(event.src_path)):
            return
        self._post(RawEvent(RawKind.MODIFY, Path(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        src, dest = Path(event.src_path), Path(event.dest_path)
        if is_hidden(src) and is_hidden(dest):
            return
        self._post(RawEvent(RawKind.MOVE, src, dest, is_directory=event.is_directory))


class FsWatcher:
    """Own the watchdog observer and one schedule per watch root.

    The library root is watched non-recursively (its children are games); game roots
    recursively. ``schedule``/``unschedule`` may be called while running.
    """

    def __init__(self, sink: Sink) -> None:
        self.handler = WatchEventHandler(sink)
        self._observer = Observer()
        self._watches: Dict[Path, object] = {}
        self._lock = threading.Lock()
        self._started = False

    def schedule(self, path: Path, kind: RootKind) -> None:
        path = Path(path)
        with self._lock:
            if path in self._watches:
                return
            if not path.is_dir():
                logger.warning("Cannot watch %s: not a directory", path)
                return
            recursive = kind is RootKind.GAME
            try:
                self._watches[path] = self._observer.schedule(self.handler, str(path), recursive=recursive)
            except OSError as exc:
                logger.warning("Cannot watch %s: %s", path, exc)
                return
        logger.debug("Scheduled %s watch on %s (recursive=%s)", kind.value, path, recursive)

    def unschedule(self, path: Path, kind: RootKind = RootKind.GAME) -> None:
        with self._lock:
            watch = self._watches.pop(Path(path), None)
            if watch is None:
                return
            try:
                self._observer.unschedule(watch)
            except KeyError:
                # already gone with its directory
                pass
        logger.debug("Unscheduled watch on %s", path)

    @property
    def watched(self):
        return sorted(self._watches)

    def start(self) -> None:
        if not self._started:
            self._observer.start()
            self._started = True

    def stop(self) -> None:
        if self._started:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._started = False
