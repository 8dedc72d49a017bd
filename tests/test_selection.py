from __future__ import annotations

from pathlib import Path

import pytest

from savekeeper.errors import InvalidTransition
from savekeeper.selection import Mode, Selection
from savekeeper.tree import EntityTree

LIB = Path("/lib")


@pytest.fixture()
def tree():
    t = EntityTree()
    g = t.insert_game("Sekiro", LIB / "Sekiro")
    p = t.insert_profile(g, "main")
    for i in range(6):
        t.insert_save(p, f"s{i}.sl2")
    t.insert_profile(g, "alt")
    t.set_active_game(g)
    t.set_active_profile(g, p)
    return t


def refs(tree, names):
    g = tree.find_game("Sekiro").ref
    p = tree.find_profile(g, "main").ref
    return [tree.find_save(p, n).ref for n in names]


def test_pane_transitions():
    sel = Selection(EntityTree())
    assert sel.mode is Mode.GAMES
    sel.transition(Mode.SAVES)
    sel.begin_input("rename")
    assert sel.mode is Mode.INPUT and sel.focus is Mode.SAVES
    with pytest.raises(InvalidTransition):
        sel.transition(Mode.CONFIRM)
    with pytest.raises(InvalidTransition):
        sel.transition(Mode.GAMES)
    pending = sel.submit()
    assert pending.action == "rename"
    assert sel.mode is Mode.SAVES and sel.pending is None


def test_cancel_returns_to_origin_pane():
    sel = Selection(EntityTree())
    sel.begin_confirm("delete")
    sel.cancel()
    assert sel.mode is Mode.GAMES
    with pytest.raises(InvalidTransition):
        sel.cancel()
    with pytest.raises(InvalidTransition):
        sel.submit()


def test_cursor_survives_unrelated_changes(tree):
    sel = Selection(tree, viewport_height=3)
    s3 = refs(tree, ["s3.sl2"])[0]
    assert sel.select(s3)
    assert sel.mode is Mode.SAVES
    tree.remove_save(refs(tree, ["s0.sl2"])[0])
    assert sel.selected() == s3
    assert sel.cursors[Mode.SAVES].index == 2


def test_removed_cursor_falls_back_to_neighbour(tree):
    sel = Selection(tree, viewport_height=3)
    s2, s3 = refs(tree, ["s2.sl2", "s3.sl2"])
    sel.select(s2)
    tree.remove_save(s2)
    assert sel.selected(Mode.SAVES) == s3

    last = refs(tree, ["s5.sl2"])[0]
    sel.select(last)
    tree.remove_save(last)
    assert sel.selected(Mode.SAVES) == refs(tree, ["s4.sl2"])[0]


def test_emptied_pane_hands_focus_to_parent(tree):
    sel = Selection(tree)
    sel.select(refs(tree, ["s0.sl2"])[0])
    for ref in refs(tree, [f"s{i}.sl2" for i in range(6)]):
        tree.remove_save(ref)
    assert sel.selected(Mode.SAVES) is None
    assert sel.mode is Mode.PROFILES


def test_scroll_keeps_cursor_in_viewport(tree):
    sel = Selection(tree, viewport_height=3)
    sel.transition(Mode.SAVES)
    sel.move_cursor(4)
    cursor = sel.cursors[Mode.SAVES]
    assert cursor.index == 4
    assert cursor.offset == 2
    assert sel.selected() in sel.visible(Mode.SAVES)
    sel.move_cursor(-10)
    assert (cursor.index, cursor.offset) == (0, 0)


def test_select_ignores_entities_not_shown(tree):
    sel = Selection(tree)
    other = tree.insert_game("Elden Ring", LIB / "Elden Ring")
    p = tree.insert_profile(other, "x")
    hidden = tree.insert_save(p, "y.sl2")
    assert sel.select(hidden) is False
    assert sel.selected(Mode.SAVES) != hidden


def test_confirm_for_vanished_target_is_cancelled(tree):
    sel = Selection(tree)
    target = refs(tree, ["s1.sl2"])[0]
    sel.select(target)
    sel.begin_confirm("delete", target)
    tree.remove_save(target)
    assert sel.mode is Mode.SAVES
    assert sel.pending is None
