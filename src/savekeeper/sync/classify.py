from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import OutsideWatchRoot
from .events import ClassifiedEvent, NodeKind, Op, RawEvent, RawKind

logger = logging.getLogger(__name__)


class RootKind(str, Enum):
    LIBRARY = "library"
    GAME = "game"


@dataclass(frozen=True)
class WatchRoot:
    path: Path
    kind: RootKind


# Relative depth -> node kind, per root kind
_DEPTHS: Dict[RootKind, Tuple[NodeKind, ...]] = {
    RootKind.LIBRARY: (NodeKind.GAME, NodeKind.PROFILE, NodeKind.SAVE),
    RootKind.GAME: (NodeKind.PROFILE, NodeKind.SAVE),
}


class WatchRoots:
    """The set of directories being monitored."""

    def __init__(self) -> None:
        self._roots: Dict[Path, WatchRoot] = {}

    def add(self, path: Path, kind: RootKind) -> WatchRoot:
        root = WatchRoot(Path(path), kind)
        self._roots[root.path] = root
        return root

    def remove(self, path: Path) -> Optional[WatchRoot]:
        return self._roots.pop(Path(path), None)

    def get(self, path: Path) -> Optional[WatchRoot]:
        return self._roots.get(Path(path))

    def __contains__(self, path) -> bool:
        return Path(path) in self._roots

    def __iter__(self):
        return iter(sorted(self._roots.values(), key=lambda r: (len(r.path.parts), str(r.path))))

    def __len__(self) -> int:
        return len(self._roots)

    def resolve(self, path: Path) -> Tuple[WatchRoot, Tuple[str, ...]]:
        """Return the most specific root strictly containing ``path`` and the relative parts.

        A root directory itself is described by its enclosing root (a game root is a
        child of the library), so only strict containment counts.
        """
        path = Path(path)
        best: Optional[WatchRoot] = None
        best_parts: Tuple[str, ...] = ()
        for root in self._roots.values():
            try:
                rel = path.relative_to(root.path)
            except ValueError:
                continue
            if not rel.parts:
                continue
            if best is None or len(root.path.parts) > len(best.path.parts):
                best, best_parts = root, rel.parts
        if best is None:
            raise OutsideWatchRoot(path)
        return best, best_parts


class Classifier:
    """Map raw (already paired and debounced) events onto the entity hierarchy."""

    def __init__(self, roots: WatchRoots) -> None:
        self.roots = roots

    def node_of(self, path: Path) -> Tuple[NodeKind, WatchRoot]:
        root, parts = self.roots.resolve(path)
        if any(part.startswith(".") for part in parts):
            return NodeKind.UNRELATED, root
        kinds = _DEPTHS[root.kind]
        if len(parts) > len(kinds):
            return NodeKind.UNRELATED, root
        return kinds[len(parts) - 1], root

    def _try_node(self, path: Path) -> Optional[Tuple[NodeKind, WatchRoot]]:
        try:
            return self.node_of(path)
        except OutsideWatchRoot:
            return None

    def classify(self, event: RawEvent) -> List[ClassifiedEvent]:
        """Classify one raw event.

        Raises ``OutsideWatchRoot`` for a non-move path outside every root, or for a
        move whose both ends are outside. Events on unrelated paths produce nothing.
        """
        if event.kind is RawKind.MOVE:
            return self._classify_move(event)
        node, _ = self.node_of(event.path)
        if node is NodeKind.UNRELATED:
            return []
        op = {
            RawKind.CREATE: Op.CREATED,
            RawKind.MODIFY: Op.MODIFIED,
            RawKind.REMOVE: Op.REMOVED,
            RawKind.RENAME_TO: Op.CREATED,
            RawKind.RENAME_FROM: Op.REMOVED,
        }[event.kind]
        return [ClassifiedEvent(op, node, event.path)]

    def _classify_move(self, event: RawEvent) -> List[ClassifiedEvent]:
        assert event.dest_path is not None
        src = self._try_node(event.path)
        dest = self._try_node(event.dest_path)
        if src is None and dest is None:
            raise OutsideWatchRoot(event.path, f"Both ends of move are outside every watch root: {event.path} -> {event.dest_path}")
        src_known = src is not None and src[0] is not NodeKind.UNRELATED
        dest_known = dest is not None and dest[0] is not NodeKind.UNRELATED
        if src_known and dest_known:
            if src[1] == dest[1] and src[0] is dest[0]:
                return [ClassifiedEvent(Op.MOVED, src[0], event.path, event.dest_path, dest[0])]
            return [
                ClassifiedEvent(Op.REMOVED, src[0], event.path),
                ClassifiedEvent(Op.CREATED, dest[0], event.dest_path),
            ]
        if src_known:
            return [ClassifiedEvent(Op.REMOVED, src[0], event.path)]
        if dest_known:
            return [ClassifiedEvent(Op.CREATED, dest[0], event.dest_path)]
        return []
