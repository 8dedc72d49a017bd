from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidTransition
from .tree import EntityKind, EntityRef, EntityTree, TreeChange

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    GAMES = "games"
    PROFILES = "profiles"
    SAVES = "saves"
    INPUT = "input"
    CONFIRM = "confirm"


PANES = (Mode.GAMES, Mode.PROFILES, Mode.SAVES)
PANE_OF_KIND = {EntityKind.GAME: Mode.GAMES, EntityKind.PROFILE: Mode.PROFILES, EntityKind.SAVE: Mode.SAVES}
PARENT_PANE = {Mode.SAVES: Mode.PROFILES, Mode.PROFILES: Mode.GAMES, Mode.GAMES: Mode.GAMES}


@dataclass
class Cursor:
    ref: Optional[EntityRef] = None
    index: int = 0
    offset: int = 0


@dataclass
class Pending:
    """What an INPUT or CONFIRM state is waiting for."""

    action: str
    target: Optional[EntityRef] = None
    data: Dict[str, Any] = field(default_factory=dict)


class Selection:
    """Cursor and focus state for the three list panes.

    Cursors are anchored on ``EntityRef``s, not indices, and re-resolved after every
    tree mutation: a surviving anchor keeps its place, a removed one falls back to
    the nearest sibling by its last index, and an empty pane hands focus to its
    parent pane.
    """

    def __init__(self, tree: EntityTree, viewport_height: int = 20) -> None:
        self.tree = tree
        self.viewport_height = max(1, viewport_height)
        self.mode = Mode.GAMES
        self.origin: Optional[Mode] = None
        self.pending: Optional[Pending] = None
        self.cursors: Dict[Mode, Cursor] = {pane: Cursor() for pane in PANES}
        tree.subscribe(self._on_change)
        self.resolve()

    # ------------------------------------------------------------------ panes

    @property
    def focus(self) -> Mode:
        """The list pane that has focus (the origin pane while INPUT/CONFIRM is open)."""
        if self.mode in PANES:
            return self.mode
        assert self.origin is not None
        return self.origin

    def items(self, pane: Mode) -> List[EntityRef]:
        if pane is Mode.GAMES:
            return [g.ref for g in self.tree.games()]
        game = self.tree.active_game
        if game is None:
            return []
        if pane is Mode.PROFILES:
            return [p.ref for p in self.tree.profiles(game.ref)]
        profile = self.tree.active_profile(game.ref)
        if profile is None:
            return []
        return [s.ref for s in self.tree.saves(profile.ref)]

    def selected(self, pane: Optional[Mode] = None) -> Optional[EntityRef]:
        return self.cursors[pane or self.focus].ref

    def visible(self, pane: Mode) -> List[EntityRef]:
        cursor = self.cursors[pane]
        return self.items(pane)[cursor.offset : cursor.offset + self.viewport_height]

    # ------------------------------------------------------------------ state machine

    def transition(self, target: Mode) -> None:
        current = self.mode
        if current in PANES and target in PANES:
            self.mode = target
        elif current in PANES and target in (Mode.INPUT, Mode.CONFIRM):
            self.origin = current
            self.mode = target
        elif current in (Mode.INPUT, Mode.CONFIRM) and target is self.origin:
            self.mode = target
            self.origin = None
            self.pending = None
        else:
            raise InvalidTransition(f"Cannot go from {current.value} to {target.value}")
        logger.debug("Selection mode %s -> %s", current.value, target.value)

    def begin_input(self, action: str, target: Optional[EntityRef] = None, **data: Any) -> None:
        self.transition(Mode.INPUT)
        self.pending = Pending(action, target, data)

    def begin_confirm(self, action: str, target: Optional[EntityRef] = None, **data: Any) -> None:
        self.transition(Mode.CONFIRM)
        self.pending = Pending(action, target, data)

    def submit(self) -> Pending:
        """Leave INPUT/CONFIRM for the originating pane, returning the pending request."""
        if self.mode not in (Mode.INPUT, Mode.CONFIRM) or self.pending is None:
            raise InvalidTransition(f"Nothing to submit in {self.mode.value}")
        pending = self.pending
        assert self.origin is not None
        self.transition(self.origin)
        return pending

    def cancel(self) -> None:
        if self.mode not in (Mode.INPUT, Mode.CONFIRM):
            raise InvalidTransition(f"Nothing to cancel in {self.mode.value}")
        assert self.origin is not None
        self.transition(self.origin)

    # ------------------------------------------------------------------ cursor movement

    def move_cursor(self, delta: int, pane: Optional[Mode] = None) -> Optional[EntityRef]:
        pane = pane or self.focus
        items = self.items(pane)
        if not items:
            return None
        cursor = self.cursors[pane]
        index = max(0, min(len(items) - 1, cursor.index + delta))
        self._place(pane, items, index)
        return cursor.ref

    def select(self, ref: EntityRef) -> bool:
        """Point the matching pane's cursor at ``ref`` and focus it when it is visible there."""
        pane = PANE_OF_KIND[ref.kind]
        items = self.items(pane)
        if ref not in items:
            logger.debug("Not selecting %s: not shown in the %s pane", ref, pane.value)
            return False
        self._place(pane, items, items.index(ref))
        if self.mode in PANES:
            self.mode = pane
        else:
            self.origin = pane
        return True

    def _place(self, pane: Mode, items: List[EntityRef], index: int) -> None:
        cursor = self.cursors[pane]
        cursor.index = index
        cursor.ref = items[index]
        self._scroll(cursor, len(items))

    def _scroll(self, cursor: Cursor, count: int) -> None:
        h = self.viewport_height
        if cursor.index < cursor.offset:
            cursor.offset = cursor.index
        elif cursor.index >= cursor.offset + h:
            cursor.offset = cursor.index - h + 1
        cursor.offset = max(0, min(cursor.offset, max(0, count - h)))

    # ------------------------------------------------------------------ re-anchoring

    def _on_change(self, change: TreeChange) -> None:
        self.resolve()

    def resolve(self) -> None:
        for pane in PANES:
            items = self.items(pane)
            cursor = self.cursors[pane]
            if cursor.ref is not None and cursor.ref in items:
                self._place(pane, items, items.index(cursor.ref))
            elif not items:
                cursor.ref = None
                cursor.index = 0
                cursor.offset = 0
            else:
                self._place(pane, items, min(cursor.index, len(items) - 1))
        self._fix_focus()

    def _fix_focus(self) -> None:
        if self.pending is not None and self.pending.target is not None and not self.tree.exists(self.pending.target):
            logger.debug("Pending %s target %s vanished", self.pending.action, self.pending.target)
            self.cancel()
        pane = self.focus
        while pane is not Mode.GAMES and self.cursors[pane].ref is None:
            pane = PARENT_PANE[pane]
        if self.mode in PANES:
            self.mode = pane
        else:
            self.origin = pane
