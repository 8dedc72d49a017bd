from __future__ import annotations

from pathlib import Path

from savekeeper.sync import ClassifiedEvent, NodeKind, Op, SuppressionTable
from savekeeper.sync.suppression import WRITE_OPS

SRC = Path("/lib/G/P/a.sav")
DEST = Path("/lib/G/Q/a.sav")


def created(path):
    return ClassifiedEvent(Op.CREATED, NodeKind.SAVE, path)


def removed(path):
    return ClassifiedEvent(Op.REMOVED, NodeKind.SAVE, path)


def test_entry_is_consumed_by_first_match(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    table.register(SRC, WRITE_OPS)
    assert table.consume(created(SRC)) is True
    assert table.consume(created(SRC)) is False
    assert len(table) == 0


def test_entry_only_matches_its_ops_and_path(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    table.register(SRC, {Op.CREATED})
    assert table.consume(removed(SRC)) is False
    assert table.consume(created(DEST)) is False
    assert table.consume(created(SRC)) is True


def test_unmatched_entry_expires(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    table.register(SRC, WRITE_OPS)
    clock.advance(1.9)
    assert len(table) == 1
    clock.advance(0.2)
    assert table.consume(created(SRC)) is False
    assert len(table) == 0


def test_move_entry_matches_paired_move(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    table.register_move(SRC, DEST)
    assert table.consume(ClassifiedEvent(Op.MOVED, NodeKind.SAVE, SRC, DEST, NodeKind.SAVE)) is True
    assert len(table) == 0


def test_move_entry_matches_split_halves_independently(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    table.register_move(SRC, DEST)
    assert table.consume(created(DEST)) is True
    assert len(table) == 1
    assert table.consume(created(DEST)) is False
    assert table.consume(removed(SRC)) is True
    assert len(table) == 0


def test_discard_drops_entries(clock):
    table = SuppressionTable(timeout=2.0, clock=clock)
    keep = table.register(DEST, WRITE_OPS)
    gone = table.register(SRC, WRITE_OPS)
    table.discard([gone])
    assert table.consume(created(SRC)) is False
    assert table.consume(created(DEST)) is True
    assert keep is not gone
