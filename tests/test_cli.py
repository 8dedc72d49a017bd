from __future__ import annotations

import logging
from pathlib import Path

import pytest

from conftest import write
from savekeeper.cli import build_parser, main


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("SAVEKEEPER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SAVEKEEPER_CONFIG", str(tmp_path / "config.yaml"))
    return tmp_path


def run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


def test_parser_requires_a_command(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_parser_wires_subcommands():
    args = build_parser().parse_args(["move", "a.sl2", "alt", "--after", "b.sl2"])
    assert (args.name, args.destination, args.after) == ("a.sl2", "alt", "b.sl2")


def test_game_profile_and_save_workflow(home, capsys):
    slot = write(home / "slot" / "S0000.sl2", "SLOT")
    assert run(capsys, "game", "create", "Sekiro", "--savefile", str(slot))[0] == 0
    assert run(capsys, "profile", "create", "main")[0] == 0
    assert run(capsys, "import", "--name", "genichiro.sl2")[0] == 0
    assert run(capsys, "import", "--name", "owl.sl2")[0] == 0

    code, out, _ = run(capsys, "list")
    assert code == 0
    assert [line.split("\t")[0][2:] for line in out.splitlines()] == ["genichiro.sl2", "owl.sl2"]

    slot.write_text("CHANGED", encoding="utf-8")
    code, out, _ = run(capsys, "load", "genichiro.sl2")
    assert code == 0 and "loaded genichiro.sl2" in out
    assert slot.read_text(encoding="utf-8") == "SLOT"

    code, out, _ = run(capsys, "game", "list")
    assert out.startswith("* Sekiro")


def test_errors_exit_nonzero(home, capsys):
    code, _, err = run(capsys, "game", "set", "Nope")
    assert code == 1
    assert "No game named 'Nope'" in err
    code, _, err = run(capsys, "list")
    assert code == 1 and "No active game" in err


def test_invalid_config_exits_with_2(home, capsys):
    (home / "config.yaml").write_text("viewport_height: 0\n", encoding="utf-8")
    code, _, err = run(capsys, "game", "list")
    assert code == 2
    assert "Invalid config" in err
