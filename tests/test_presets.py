from __future__ import annotations

import sys
from pathlib import Path

import pytest

from savekeeper.errors import NotFound
from savekeeper.presets import PRESETS, candidate_savefiles, get_preset, is_64_bit_steam_id, is_steam_id


@pytest.mark.parametrize(
    "name, expected",
    [
        ("76561198000000000", True),
        ("1234", True),
        ("011000010000abcd", True),
        ("7656119800000000", False),
        ("not-hex", False),
        ("", False),
    ],
)
def test_is_steam_id(name, expected):
    assert is_steam_id(name) is expected


def test_64_bit_id_must_be_decimal():
    assert is_64_bit_steam_id("76561198000000000")
    assert not is_64_bit_steam_id("7656119800000000a")


def test_get_preset_is_case_insensitive():
    assert get_preset("elden ring").file_name == "ER0000.sl2"
    with pytest.raises(NotFound):
        get_preset("Bloodborne")


def test_presets_have_unique_names():
    names = [p.name for p in PRESETS]
    assert len(names) == len(set(names)) == 6


def test_candidate_savefiles_under_proton_prefix(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    preset = get_preset("Elden Ring")
    folder = preset.save_folder(tmp_path)
    assert folder == (
        tmp_path / "Steam" / "steamapps" / "compatdata" / "1245620" / "pfx" / "drive_c"
        / "users" / "steamuser" / "AppData" / "Roaming" / "EldenRing"
    )
    for name in ("76561198000000000", "backup", "1a2b"):
        (folder / name).mkdir(parents=True)
    (folder / "76561198000000001").write_text("not a directory", encoding="utf-8")

    found = candidate_savefiles(preset, tmp_path)
    assert found == [folder / "1a2b" / "ER0000.sl2", folder / "76561198000000000" / "ER0000.sl2"]


def test_documents_presets_use_documents_folder(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    folder = get_preset("Dark Souls Remastered").save_folder(tmp_path)
    assert folder.parts[-3:] == ("Documents", "NBGI", "DARK SOULS REMASTERED")


def test_missing_folder_gives_no_candidates(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    assert candidate_savefiles(get_preset("Sekiro"), tmp_path) == []
