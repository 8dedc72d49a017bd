from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import write
from savekeeper.errors import StateError
from savekeeper.persistence import (
    AppState,
    GameState,
    ProfileState,
    StateStore,
    apply_state,
    seed_tree,
    snapshot_state,
)
from savekeeper.tree import EntityTree


def test_missing_file_gives_defaults(tmp_path: Path):
    state = StateStore(tmp_path / "state.json").load()
    assert state == AppState()


def test_round_trip_and_backup(tmp_path: Path):
    store = StateStore(tmp_path / "state.json")
    first = AppState(active_game="Sekiro", games={"Sekiro": GameState(active_profile="main")})
    store.save(first)
    assert not store.backup_path.exists()

    second = first.model_copy(update={"active_game": None})
    store.save(second)
    assert store.load() == second
    assert json.loads(store.backup_path.read_text(encoding="utf-8"))["active_game"] == "Sekiro"
    # no temp files left next to the state file
    assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json", "state.json.bak"]


def test_corrupt_file_falls_back_to_backup(tmp_path: Path):
    store = StateStore(tmp_path / "state.json")
    store.save(AppState(active_game="Sekiro"))
    store.save(AppState(active_game="Elden Ring"))
    store.path.write_text("{not json", encoding="utf-8")
    assert store.load().active_game == "Sekiro"


def test_corrupt_file_without_backup_gives_defaults(tmp_path: Path):
    path = tmp_path / "state.json"
    path.write_text('{"games": {"x": {"profiles": 3}}}', encoding="utf-8")
    assert StateStore(path).load() == AppState()


def test_newer_schema_is_not_trusted(tmp_path: Path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"schema_version": 99}), encoding="utf-8")
    assert StateStore(path).load() == AppState()


def test_unwritable_location_raises_state_error(tmp_path: Path):
    blocker = write(tmp_path / "file")
    with pytest.raises(StateError):
        StateStore(blocker / "state.json").save(AppState())


def test_snapshot_seed_and_apply_restore_tree(tmp_path: Path):
    library = tmp_path / "games"
    custom = tmp_path / "elsewhere" / "DS3"
    (library / "Sekiro").mkdir(parents=True)

    tree = EntityTree()
    sekiro = tree.insert_game("Sekiro", library / "Sekiro", savefile_path=tmp_path / "S0000.sl2", preset=True)
    ds3 = tree.insert_game("DS3", custom)
    main = tree.insert_profile(sekiro, "main")
    a, b, c = (tree.insert_save(main, n) for n in ("a.sl2", "b.sl2", "c.sl2"))
    tree.place_after(a, c)
    tree.set_active_save(main, b)
    tree.set_active_profile(sekiro, main)
    tree.set_active_game(ds3)

    state = snapshot_state(tree, library)
    assert state.games["Sekiro"].root is None
    assert state.games["DS3"].root == custom
    assert state.games["Sekiro"].profiles["main"] == ProfileState(order=["b.sl2", "c.sl2", "a.sl2"], active_save="b.sl2")

    restored = EntityTree()
    seed_tree(restored, state, library)
    assert [g.name for g in restored.games()] == ["DS3", "Sekiro"]
    g = restored.find_game("Sekiro")
    assert g.preset and g.savefile_path == tmp_path / "S0000.sl2"

    # what a scan would discover
    p = restored.insert_profile(g.ref, "main")
    for n in ("a.sl2", "b.sl2", "c.sl2", "d.sl2"):
        restored.insert_save(p, n)
    apply_state(restored, state)

    assert [s.name for s in restored.saves(p)] == ["b.sl2", "c.sl2", "a.sl2", "d.sl2"]
    assert restored.active_save(p).name == "b.sl2"
    assert restored.active_profile(g.ref).name == "main"
    assert restored.active_game.name == "DS3"


def test_seed_forgets_library_games_without_directory(tmp_path: Path):
    state = AppState(games={"Gone": GameState(), "Custom": GameState(root=tmp_path / "missing")})
    tree = EntityTree()
    seed_tree(tree, state, tmp_path / "games")
    assert [g.name for g in tree.games()] == ["Custom"]
