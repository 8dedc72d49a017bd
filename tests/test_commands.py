from __future__ import annotations

import random
from pathlib import Path

import pytest

from conftest import LockedFileOps, write
from savekeeper.commands import CommandExecutor
from savekeeper.errors import (
    Conflict,
    EmptyProfile,
    InvalidName,
    InvalidSource,
    NotConfigured,
    NotFound,
    OutsideWatchRoot,
)
from savekeeper.selection import Mode, Selection
from savekeeper.sync import RawEvent, Reconciler, SuppressionTable
from savekeeper.tree import EntityTree


class Env:
    def __init__(self, tmp_path: Path, library: Path, clock, fileops=None) -> None:
        self.library = library
        self.slot = write(tmp_path / "steam" / "ER0000.sl2", "SLOT")
        self.game_dir = library / "Elden Ring"
        for name in ("a.sl2", "b.sl2", "c.sl2"):
            write(self.game_dir / "main" / name, name.upper())
        (self.game_dir / "alt").mkdir()
        self.fileops = fileops or LockedFileOps()
        self.tree = EntityTree()
        self.reconciler = Reconciler(
            self.tree,
            library,
            fileops=self.fileops,
            suppression=SuppressionTable(2.0, clock=clock),
        )
        self.reconciler.rescan()
        self.game = self.tree.find_game("Elden Ring").ref
        self.tree.set_savefile_path(self.game, self.slot)
        self.main = self.tree.find_profile(self.game, "main").ref
        self.alt = self.tree.find_profile(self.game, "alt").ref
        self.tree.set_active_game(self.game)
        self.tree.set_active_profile(self.game, self.main)
        self.selection = Selection(self.tree, viewport_height=10)
        self.persisted = 0
        self.executor = CommandExecutor(
            self.tree,
            self.reconciler,
            fileops=self.fileops,
            rng=random.Random(4),
            selection=self.selection,
            persist=self._persist,
        )

    def _persist(self) -> None:
        self.persisted += 1

    def save(self, name, profile=None):
        return self.tree.find_save(profile or self.main, name).ref

    def names(self, profile=None):
        return [s.name for s in self.tree.saves(profile or self.main)]


@pytest.fixture()
def env(tmp_path, library, clock):
    return Env(tmp_path, library, clock)


# ---------------------------------------------------------------------- import


def test_import_copies_slot_and_selects_entry(env):
    ref = env.executor.import_save(env.main, name="boss.sl2")
    dest = env.game_dir / "main" / "boss.sl2"
    assert dest.read_text() == "SLOT"
    assert env.tree.find_by_path(dest) == ref
    assert env.selection.selected(Mode.SAVES) == ref
    assert env.persisted == 1
    # no hidden partial file left behind
    assert [p.name for p in (env.game_dir / "main").iterdir() if p.name.startswith(".")] == []


def test_import_watcher_echo_is_suppressed(env):
    ref = env.executor.import_save(env.main, name="boss.sl2")
    dest = env.game_dir / "main" / "boss.sl2"
    seen = []
    env.tree.subscribe(seen.append)
    env.reconciler.handle(RawEvent.move(dest.with_name(".boss.sl2.x.partial"), dest))
    assert seen == []
    assert env.tree.exists(ref)


def test_import_name_conflict(env):
    env.executor.import_save(env.main, name="boss.sl2")
    with pytest.raises(Conflict):
        env.executor.import_save(env.main, name="boss.sl2")


def test_import_auto_rename_appends_dup(env):
    env.executor.import_save(env.main, name="boss.sl2")
    ref = env.executor.import_save(env.main, name="boss.sl2", auto_rename=True)
    assert env.tree.save(ref).name == "boss.sl2 (dup)"
    ref = env.executor.import_save(env.main, name="boss.sl2", auto_rename=True)
    assert env.tree.save(ref).name == "boss.sl2 (dup) (dup)"


def test_import_rejects_unreadable_source(env, tmp_path):
    with pytest.raises(InvalidSource):
        env.executor.import_save(env.main, source=tmp_path / "missing.sl2")
    assert env.names() == ["a.sl2", "b.sl2", "c.sl2"]


def test_import_without_slot_is_not_configured(env):
    env.tree.set_savefile_path(env.game, None)
    with pytest.raises(NotConfigured):
        env.executor.import_save(env.main)


def test_import_outside_watch_roots_is_rejected(env, tmp_path):
    # a game the reconciler was never told to watch
    game = env.tree.insert_game("Loose", tmp_path / "loose")
    profile = env.tree.insert_profile(game, "p")
    with pytest.raises(OutsideWatchRoot):
        env.executor.import_save(profile, source=env.slot)
    assert not (tmp_path / "loose").exists()
    assert env.fileops.copies == []


def test_background_import_commits_and_rolls_back(env):
    task = env.executor.begin_import(env.main, name="bg.sl2")
    assert env.tree.exists(task.ref)
    env.executor.run_copy(task)
    assert env.executor.finish_import(task) == task.ref
    assert (env.game_dir / "main" / "bg.sl2").read_text() == "SLOT"

    task = env.executor.begin_import(env.main, name="fail.sl2")
    task.cancel.set()
    assert env.executor.finish_import(task) is None
    assert not env.tree.exists(task.ref)
    assert env.executor.tasks == {}


# ---------------------------------------------------------------------- move / rename


def test_move_relative_to_scenario(env):
    a, b, c = env.save("a.sl2"), env.save("b.sl2"), env.save("c.sl2")
    env.executor.move(b, env.main, relative_to=c)
    assert env.names() == ["a.sl2", "c.sl2", "b.sl2"]
    # nothing moved on disk
    assert sorted(p.name for p in (env.game_dir / "main").iterdir()) == ["a.sl2", "b.sl2", "c.sl2"]
    assert env.tree.exists(a)


def test_move_across_profiles_keeps_identity(env):
    b = env.save("b.sl2")
    env.executor.move(b, env.alt)
    assert (env.game_dir / "alt" / "b.sl2").read_text() == "B.SL2"
    assert not (env.game_dir / "main" / "b.sl2").exists()
    assert env.tree.save(b).profile_uid == env.alt.uid
    # the watcher's report of our own move changes nothing
    seen = []
    env.tree.subscribe(seen.append)
    env.reconciler.handle(RawEvent.move(env.game_dir / "main" / "b.sl2", env.game_dir / "alt" / "b.sl2"))
    assert seen == []


def test_move_with_anchor_in_destination(env):
    first = env.executor.move(env.save("a.sl2"), env.alt)
    env.executor.move(env.save("b.sl2"), env.alt)
    env.executor.move(env.save("c.sl2"), env.alt, relative_to=first)
    assert env.names(env.alt) == ["a.sl2", "c.sl2", "b.sl2"]


def test_move_validation(env):
    write(env.game_dir / "alt" / "a.sl2")
    env.reconciler.rescan()
    with pytest.raises(Conflict):
        env.executor.move(env.save("a.sl2"), env.alt)
    with pytest.raises(NotFound):
        env.executor.move(env.save("b.sl2"), env.alt, relative_to=env.save("c.sl2"))
    assert (env.game_dir / "main" / "a.sl2").exists()


def test_move_outside_watch_roots_is_rejected(env, tmp_path):
    game = env.tree.insert_game("Loose", tmp_path / "loose")
    profile = env.tree.insert_profile(game, "p")
    a = env.save("a.sl2")
    with pytest.raises(OutsideWatchRoot):
        env.executor.move(a, profile)
    assert (env.game_dir / "main" / "a.sl2").exists()
    assert env.tree.save(a).profile_uid == env.main.uid
    assert not (tmp_path / "loose").exists()


def test_rename_save_and_profile(env):
    a = env.save("a.sl2")
    env.executor.rename(a, "first boss.sl2")
    assert (env.game_dir / "main" / "first boss.sl2").exists()
    assert env.tree.save(a).name == "first boss.sl2"

    env.executor.rename(env.alt, "speedrun")
    assert (env.game_dir / "speedrun").is_dir()
    assert env.tree.profile(env.alt).name == "speedrun"


@pytest.mark.parametrize("bad", ["", "  ", "a/b", "..", ".hidden"])
def test_rename_rejects_bad_names(env, bad):
    with pytest.raises(InvalidName):
        env.executor.rename(env.save("a.sl2"), bad)
    assert env.names() == ["a.sl2", "b.sl2", "c.sl2"]


def test_rename_conflict_on_disk_only(env):
    write(env.game_dir / "main" / "x" / "nested")
    with pytest.raises(Conflict):
        env.executor.rename(env.save("a.sl2"), "x")


def test_rename_game_moves_directory_and_watch_root(env):
    env.executor.rename(env.game, "ER")
    assert (env.library / "ER" / "main" / "a.sl2").exists()
    assert env.tree.game(env.game).root == env.library / "ER"
    assert env.library / "ER" in env.reconciler.roots
    assert env.library / "Elden Ring" not in env.reconciler.roots


# ---------------------------------------------------------------------- delete


def test_delete_save(env):
    a = env.save("a.sl2")
    result = env.executor.delete(a)
    assert result.ok
    assert result.removed == [env.game_dir / "main" / "a.sl2"]
    assert not env.tree.exists(a)


def test_delete_game_with_locked_file(tmp_path, library, clock):
    locked = library / "Elden Ring" / "main" / "b.sl2"
    env = Env(tmp_path, library, clock, fileops=LockedFileOps(locked=[locked]))
    a, b = env.save("a.sl2"), env.save("b.sl2")

    result = env.executor.delete(env.game)

    assert list(result.failures) == [locked]
    assert locked.exists()
    assert not (env.game_dir / "main" / "a.sl2").exists()
    assert not (env.game_dir / "alt").exists()
    # the failing entry and its ancestors stay, everything else is gone
    assert env.tree.exists(env.game) and env.tree.exists(env.main) and env.tree.exists(b)
    assert not env.tree.exists(a)
    assert not env.tree.exists(env.alt)
    assert env.names() == ["b.sl2"]


def test_delete_cancels_in_flight_copies(env):
    task = env.executor.begin_import(env.main, name="bg.sl2")
    env.executor.delete(env.main)
    assert task.cancel.is_set()
    assert env.executor.finish_import(task) is None
    assert not env.tree.exists(env.main)


# ---------------------------------------------------------------------- load / replace / mark


def test_load_copies_to_slot_and_marks_active(env):
    c = env.save("c.sl2")
    env.executor.load(c)
    assert env.slot.read_text() == "C.SL2"
    assert env.tree.active_save(env.main).ref == c


def test_load_random_on_empty_profile_writes_nothing(env):
    with pytest.raises(EmptyProfile):
        env.executor.load_random(env.alt)
    assert env.fileops.copies == []
    assert env.slot.read_text() == "SLOT"


def test_load_random_picks_from_profile(env):
    ref = env.executor.load_random(env.main)
    assert env.tree.save(ref).name in env.names()
    assert env.slot.read_text() == env.tree.save(ref).name.upper()


def test_load_active_and_mark(env):
    with pytest.raises(NotFound):
        env.executor.load_active(env.main)
    b = env.save("b.sl2")
    env.executor.mark(b)
    assert env.slot.read_text() == "SLOT"
    env.executor.load_active(env.main)
    assert env.slot.read_text() == "B.SL2"


def test_replace_overwrites_save_with_slot(env):
    a = env.save("a.sl2")
    env.executor.replace(a)
    assert (env.game_dir / "main" / "a.sl2").read_text() == "SLOT"
    assert env.tree.save(a).size == len("SLOT")


def test_load_without_slot(env):
    env.executor.set_savefile_path(env.game, None)
    with pytest.raises(NotConfigured):
        env.executor.load(env.save("a.sl2"))


# ---------------------------------------------------------------------- creation


def test_create_game_and_profile(env):
    game = env.executor.create_game("Sekiro", savefile_path=env.slot)
    assert (env.library / "Sekiro").is_dir()
    assert env.library / "Sekiro" in env.reconciler.roots
    assert env.selection.selected(Mode.GAMES) == game

    profile = env.executor.create_profile(game, "any%")
    assert (env.library / "Sekiro" / "any%").is_dir()
    assert env.selection.selected(Mode.PROFILES) == profile

    with pytest.raises(Conflict):
        env.executor.create_game("Sekiro")
    with pytest.raises(Conflict):
        env.executor.create_profile(game, "any%")


def test_create_game_echo_is_suppressed(env):
    env.executor.create_game("Sekiro")
    seen = []
    env.tree.subscribe(seen.append)
    env.reconciler.handle(RawEvent.create(env.library / "Sekiro", is_directory=True))
    assert seen == []


def test_create_profile_in_other_game_switches_to_it(env):
    game = env.executor.create_game("Sekiro")
    assert env.tree.active_game.ref == env.game
    profile = env.executor.create_profile(game, "glitchless")
    assert env.tree.active_game.ref == game
    assert env.selection.selected(Mode.PROFILES) == profile
