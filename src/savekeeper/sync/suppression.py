from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Optional

from .events import ClassifiedEvent, Op

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

WRITE_OPS: FrozenSet[Op] = frozenset({Op.CREATED, Op.MODIFIED})


@dataclass(eq=False)
class Suppression:
    """One expected notification caused by our own command.

    A plain entry matches events on ``path`` whose op is in ``ops``. A move entry
    (``dest`` set) matches the paired move, or its removal and creation halves
    independently when the watcher reported them split.
    """

    path: Path
    ops: FrozenSet[Op]
    expires: float
    dest: Optional[Path] = None
    src_pending: bool = field(default=True)
    dest_pending: bool = field(default=True)

    @property
    def spent(self) -> bool:
        return not (self.src_pending or self.dest_pending)


class SuppressionTable:
    """Expected-event registry consulted by the reconciler before applying changes.

    Entries are consumed by their first match and expire after ``timeout`` seconds
    even when nothing matched, so a lost notification never hides a later
    external change for long.
    """

    def __init__(self, timeout: float = 2.0, clock: Clock = time.monotonic) -> None:
        self.timeout = timeout
        self._clock = clock
        self._entries: List[Suppression] = []

    def register(self, path: Path, ops: Iterable[Op]) -> Suppression:
        entry = Suppression(Path(path), frozenset(ops), self._clock() + self.timeout, dest_pending=False)
        self._entries.append(entry)
        return entry

    def register_move(self, src: Path, dest: Path) -> Suppression:
        entry = Suppression(Path(src), frozenset({Op.MOVED}), self._clock() + self.timeout, dest=Path(dest))
        self._entries.append(entry)
        return entry

    def discard(self, entries: Iterable[Suppression]) -> None:
        doomed = set(map(id, entries))
        self._entries = [e for e in self._entries if id(e) not in doomed]

    def _expire(self) -> None:
        now = self._clock()
        live = []
        for e in self._entries:
            if e.expires <= now:
                logger.debug("Suppression for %s expired unmatched", e.path)
            else:
                live.append(e)
        self._entries = live

    def consume(self, event: ClassifiedEvent) -> bool:
        """Return True (and consume the entry) when ``event`` was expected."""
        self._expire()
        for entry in self._entries:
            if self._matches(entry, event):
                if entry.spent:
                    self._entries.remove(entry)
                return True
        return False

    @staticmethod
    def _matches(entry: Suppression, event: ClassifiedEvent) -> bool:
        if entry.dest is None:
            if event.path == entry.path and event.op in entry.ops and entry.src_pending:
                entry.src_pending = False
                return True
            return False
        if event.op is Op.MOVED:
            if entry.src_pending and entry.dest_pending and event.path == entry.path and event.dest_path == entry.dest:
                entry.src_pending = entry.dest_pending = False
                return True
            return False
        if event.op is Op.REMOVED and entry.src_pending and event.path == entry.path:
            entry.src_pending = False
            return True
        if event.op in WRITE_OPS and entry.dest_pending and event.path == entry.dest:
            entry.dest_pending = False
            return True
        return False

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)
