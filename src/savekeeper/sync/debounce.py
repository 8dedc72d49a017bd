from __future__ import annotations

import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Hashable, List, Optional

from .events import RawEvent, RawKind

logger = logging.getLogger(__name__)


@dataclass
class _PendingRename:
    event: RawEvent
    deadline: float


class RenamePairer:
    """Join ``RENAME_FROM``/``RENAME_TO`` halves into ``MOVE`` events.

    A source half waits up to ``timeout`` seconds for its destination. Halves with a
    cookie pair only with the same cookie; halves without one pair with the next
    unmatched half that has none. All times are caller-supplied monotonic seconds.
    """

    def __init__(self, timeout: float = 0.1) -> None:
        self.timeout = timeout
        self._pending: List[_PendingRename] = []

    def push(self, event: RawEvent, now: float) -> List[RawEvent]:
        if event.kind is RawKind.RENAME_FROM:
            self._pending.append(_PendingRename(event, now + self.timeout))
            return []
        if event.kind is RawKind.RENAME_TO:
            for i, pending in enumerate(self._pending):
                if pending.event.cookie == event.cookie:
                    del self._pending[i]
                    src = pending.event
                    return [RawEvent(RawKind.MOVE, src.path, event.path, src.is_directory or event.is_directory)]
            logger.debug("Unpaired rename target %s treated as create", event.path)
            return [RawEvent(RawKind.CREATE, event.path, is_directory=event.is_directory)]
        return [event]

    def expire(self, now: float) -> List[RawEvent]:
        """Turn rename sources whose window has elapsed into removals."""
        out: List[RawEvent] = []
        keep: List[_PendingRename] = []
        for pending in self._pending:
            if pending.deadline <= now:
                logger.debug("Unpaired rename source %s treated as removal", pending.event.path)
                out.append(RawEvent(RawKind.REMOVE, pending.event.path, is_directory=pending.event.is_directory))
            else:
                keep.append(pending)
        self._pending = keep
        return out

    def flush(self) -> List[RawEvent]:
        out = [RawEvent(RawKind.REMOVE, p.event.path, is_directory=p.event.is_directory) for p in self._pending]
        self._pending = []
        return out

    def next_deadline(self) -> Optional[float]:
        return min((p.deadline for p in self._pending), default=None)

    def __len__(self) -> int:
        return len(self._pending)


@dataclass
class _PendingEvent:
    event: RawEvent
    deadline: float


class Debouncer:
    """Collapse bursts of events on the same path.

    The window starts at the first event for a path; later events within it replace
    the pending one, except that a ``MODIFY`` never downgrades a pending ``CREATE``.
    Ready events come out in first-arrival order.

    A ``MOVE`` is never collapsed: it keeps an entry of its own, and events on its
    source or destination that arrive after it start a fresh entry queued behind it.
    """

    def __init__(self, window: float = 0.05) -> None:
        self.window = window
        self._pending: "OrderedDict[Hashable, _PendingEvent]" = OrderedDict()
        # path -> sequence of the latest move touching it
        self._barriers: Dict[Path, int] = {}
        self._seq = itertools.count(1)

    def push(self, event: RawEvent, now: float) -> None:
        if event.kind is RawKind.MOVE:
            seq = next(self._seq)
            self._pending[("move", seq)] = _PendingEvent(event, now + self.window)
            self._barriers[event.path] = seq
            if event.dest_path is not None:
                self._barriers[event.dest_path] = seq
            return
        key = (event.path, self._barriers.get(event.path, 0))
        current = self._pending.get(key)
        if current is None:
            self._pending[key] = _PendingEvent(event, now + self.window)
            return
        if current.event.kind is RawKind.CREATE and event.kind is RawKind.MODIFY:
            return
        current.event = event

    def drain(self, now: float) -> List[RawEvent]:
        ready: List[RawEvent] = []
        while self._pending:
            key, pending = next(iter(self._pending.items()))
            if pending.deadline > now:
                break
            del self._pending[key]
            ready.append(pending.event)
        if not self._pending:
            self._barriers.clear()
        return ready

    def flush(self) -> List[RawEvent]:
        out = [p.event for p in self._pending.values()]
        self._pending.clear()
        self._barriers.clear()
        return out

    def next_deadline(self) -> Optional[float]:
        for pending in self._pending.values():
            return pending.deadline
        return None

    def __len__(self) -> int:
        return len(self._pending)
