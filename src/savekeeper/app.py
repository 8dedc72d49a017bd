from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .commands import CommandExecutor, CopyTask
from .config import AppConfig
from .errors import Conflict, NotFound, StateError
from .io.fileops import FileOps
from .io.paths import AppPaths
from .persistence import StateStore, apply_state, seed_tree, snapshot_state
from .selection import Selection
from .sync.events import RawEvent
from .sync.reconciler import Reconciler
from .sync.suppression import SuppressionTable
from .sync.watcher import FsWatcher
from .tree import EntityRef, EntityTree

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Session:
    """Everything that owns state: tree, reconciler, executor, selection and the state file.

    ``open`` seeds the tree from persisted state, scans the watch roots, then
    restores orderings and active markers.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        paths: Optional[AppPaths] = None,
        fileops: Optional[FileOps] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.paths = paths or config.paths()
        self.clock = clock
        self.fileops = fileops or FileOps()
        self.store = StateStore(self.paths.state_file)
        self.tree = EntityTree()
        sync = config.sync
        self.reconciler = Reconciler(
            self.tree,
            self.paths.library_root,
            fileops=self.fileops,
            suppression=SuppressionTable(sync.suppression_timeout, clock=clock),
            debounce=sync.debounce,
            rename_pair_timeout=sync.rename_pair_timeout,
            storm_threshold=sync.storm_threshold,
        )
        self.selection = Selection(self.tree, config.viewport_height)
        self.executor = CommandExecutor(
            self.tree,
            self.reconciler,
            fileops=self.fileops,
            selection=self.selection,
            persist=self.save_state,
        )

    @classmethod
    def open(cls, config: AppConfig, **kwargs) -> "Session":
        session = cls(config, **kwargs)
        session.load()
        return session

    def load(self) -> None:
        self.paths.ensure_dirs()
        state = self.store.load()
        seed_tree(self.tree, state, self.paths.library_root)
        self._apply_config_roots()
        self.reconciler.rescan()
        apply_state(self.tree, state)
        self._apply_config_slots()
        logger.info(
            "Loaded %d games from %s",
            len(self.tree.games()),
            self.paths.library_root,
        )

    def _apply_config_roots(self) -> None:
        for name, gc in self.config.games.items():
            if gc.root is None or self.tree.find_game(name) is not None:
                continue
            try:
                self.tree.insert_game(name, gc.root)
            except Conflict as exc:
                logger.warning("Ignoring configured root for %s: %s", name, exc)

    def _apply_config_slots(self) -> None:
        for name, gc in self.config.games.items():
            game = self.tree.find_game(name)
            if game is not None and gc.savefile_path is not None:
                game.savefile_path = gc.savefile_path

    def save_state(self) -> None:
        self.store.save(snapshot_state(self.tree, self.paths.library_root))

    # Convenience name resolution used by the CLI

    def resolve_game(self, name: Optional[str] = None) -> EntityRef:
        if name is None:
            game = self.tree.active_game
            if game is None:
                raise NotFound("No active game; pass --game or run `savekeeper game set`")
            return game.ref
        game = self.tree.find_game(name)
        if game is None:
            raise NotFound(f"No game named {name!r}")
        return game.ref

    def resolve_profile(self, name: Optional[str] = None, game: Optional[str] = None) -> EntityRef:
        game_ref = self.resolve_game(game)
        if name is None:
            profile = self.tree.active_profile(game_ref)
            if profile is None:
                raise NotFound("No active profile; pass --profile or run `savekeeper profile set`")
            return profile.ref
        profile = self.tree.find_profile(game_ref, name)
        if profile is None:
            raise NotFound(f"No profile named {name!r}")
        return profile.ref

    def resolve_save(self, name: str, profile: Optional[str] = None, game: Optional[str] = None) -> EntityRef:
        profile_ref = self.resolve_profile(profile, game)
        save = self.tree.find_save(profile_ref, name)
        if save is None:
            raise NotFound(f"No save named {name!r}")
        return save.ref


@dataclass(frozen=True)
class FsEvent:
    event: RawEvent


@dataclass(frozen=True)
class TaskDone:
    task: CopyTask
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Stop:
    pass


Message = Union[FsEvent, TaskDone, Stop]


class SyncLoop:
    """Single-threaded event loop owning the session's mutable state.

    The watchdog observer thread and the copy workers only ever talk to the loop
    through ``self.queue``. The loop waits on the queue until the next
    debounce/pairing deadline, then lets the reconciler apply what is ready.
    """

    def __init__(
        self,
        session: Session,
        *,
        workers: int = 2,
        put_timeout: float = 1.0,
        watcher: Optional[FsWatcher] = None,
    ) -> None:
        self.session = session
        self.clock = session.clock
        self.queue: "queue.Queue[Message]" = queue.Queue(maxsize=session.config.sync.channel_capacity)
        self.put_timeout = put_timeout
        self.overflowed = threading.Event()
        self.pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="savekeeper-copy")
        self.watcher = watcher or FsWatcher(self.post_fs)
        self._running = False
        reconciler = session.reconciler
        reconciler.on_root_added(self.watcher.schedule)
        reconciler.on_root_removed(self.watcher.unschedule)

    # ------------------------------------------------------------------ producers (any thread)

    def post_fs(self, event: RawEvent) -> None:
        try:
            self.queue.put(FsEvent(event), timeout=self.put_timeout)
        except queue.Full:
            if not self.overflowed.is_set():
                logger.warning("Event channel full, dropping events until the next rescan")
            self.overflowed.set()

    def stop(self) -> None:
        self.queue.put(Stop())

    # ------------------------------------------------------------------ copies

    def start_import(
        self,
        profile: EntityRef,
        source: Optional[Path] = None,
        name: Optional[str] = None,
        auto_rename: bool = False,
    ) -> CopyTask:
        task = self.session.executor.begin_import(profile, source, name, auto_rename)
        self.pool.submit(self._copy, task)
        return task

    def _copy(self, task: CopyTask) -> None:
        error: Optional[BaseException] = None
        try:
            self.session.executor.run_copy(task)
        except Exception as exc:
            error = exc
        # never dropped: a full channel only delays completion
        self.queue.put(TaskDone(task, error))

    # ------------------------------------------------------------------ loop

    def _handle(self, msg: Message, now: float) -> bool:
        if isinstance(msg, Stop):
            return False
        if isinstance(msg, FsEvent):
            self.session.reconciler.push(msg.event, now)
        elif isinstance(msg, TaskDone):
            self.session.executor.finish_import(msg.task, msg.error)
        return True

    def pump(self, now: Optional[float] = None, timeout: Optional[float] = 0.0) -> bool:
        """Handle queued messages, then apply ready events. Returns False on ``Stop``.

        ``timeout`` is how long to wait for the first message (None waits forever).
        """
        alive = True
        try:
            first = self.queue.get(timeout=timeout) if timeout != 0.0 else self.queue.get_nowait()
        except queue.Empty:
            first = None
        now = self.clock() if now is None else now
        if first is not None:
            alive = self._handle(first, now)
            while alive:
                try:
                    msg = self.queue.get_nowait()
                except queue.Empty:
                    break
                alive = self._handle(msg, now)
        overflowed = self.overflowed.is_set()
        if overflowed:
            self.overflowed.clear()
        self.session.reconciler.process(now, overflowed=overflowed)
        return alive

    def _wait_time(self) -> Optional[float]:
        deadline = self.session.reconciler.next_deadline()
        if deadline is None:
            return None
        return max(0.001, deadline - self.clock())

    def start(self) -> None:
        watcher = self.watcher
        for root in self.session.reconciler.roots:
            watcher.schedule(root.path, root.kind)
        watcher.start()
        self._running = True
        logger.info("Watching %d roots", len(self.session.reconciler.roots))

    def run(self) -> None:
        """Block until ``stop`` is called (from any thread)."""
        if not self._running:
            self.start()
        try:
            while self.pump(timeout=self._wait_time()):
                pass
        finally:
            self.close()

    def close(self) -> None:
        executor = self.session.executor
        for task in list(executor.tasks.values()):
            task.cancel.set()
        self.watcher.stop()
        self.pool.shutdown(wait=False)
        self._running = False
        # workers may be blocked on a full channel; keep draining until every copy reported
        while executor.tasks:
            try:
                msg = self.queue.get(timeout=5.0)
            except queue.Empty:
                logger.warning("%d copies did not finish before shutdown", len(executor.tasks))
                break
            if isinstance(msg, TaskDone):
                executor.finish_import(msg.task, msg.error)
        self.pool.shutdown(wait=True)
        self.session.reconciler.flush()
        try:
            self.session.save_state()
        except StateError as exc:
            logger.error("Could not save state on shutdown: %s", exc)
