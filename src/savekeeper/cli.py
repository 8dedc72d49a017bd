from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .app import Session, SyncLoop
from .config import load_config
from .errors import ConfigError, SaveKeeperError
from .logging_config import configure_logging
from .presets import PRESETS, candidate_savefiles
from .search import SearchScope, search
from .tree import TreeChange

logger = logging.getLogger("savekeeper.cli")

Handler = Callable[[argparse.Namespace, Session], int]


def _mark(flag: bool) -> str:
    return "*" if flag else " "


def _display(name: str, hide_extensions: bool) -> str:
    return Path(name).stem if hide_extensions else name


# ---------------------------------------------------------------------- games


def cmd_game_list(args: argparse.Namespace, session: Session) -> int:
    tree = session.tree
    active = tree.active_game
    for game in tree.games():
        slot = str(game.savefile_path) if game.savefile_path else "-"
        print(f"{_mark(active is not None and active.uid == game.uid)} {game.name}\t{slot}")
    return 0


def cmd_game_create(args: argparse.Namespace, session: Session) -> int:
    ref = session.executor.create_game(args.name, savefile_path=args.savefile, preset=args.preset, root=args.root)
    if args.activate or session.tree.active_game is None:
        session.executor.set_active_game(ref)
    print(f"created game {args.name}")
    return 0


def cmd_game_rename(args: argparse.Namespace, session: Session) -> int:
    session.executor.rename(session.resolve_game(args.old), args.new)
    return 0


def cmd_game_delete(args: argparse.Namespace, session: Session) -> int:
    return _report_delete(session.executor.delete(session.resolve_game(args.name)))


def cmd_game_set(args: argparse.Namespace, session: Session) -> int:
    session.executor.set_active_game(session.resolve_game(args.name))
    return 0


def cmd_game_set_savefile(args: argparse.Namespace, session: Session) -> int:
    session.executor.set_savefile_path(session.resolve_game(args.game), args.path)
    return 0


# ---------------------------------------------------------------------- profiles


def cmd_profile_list(args: argparse.Namespace, session: Session) -> int:
    game = session.resolve_game(args.game)
    active = session.tree.active_profile(game)
    for profile in session.tree.profiles(game):
        print(f"{_mark(active is not None and active.uid == profile.uid)} {profile.name}")
    return 0


def cmd_profile_create(args: argparse.Namespace, session: Session) -> int:
    game = session.resolve_game(args.game)
    ref = session.executor.create_profile(game, args.name)
    if session.tree.active_profile(game) is None:
        session.executor.set_active_profile(game, ref)
    print(f"created profile {args.name}")
    return 0


def cmd_profile_rename(args: argparse.Namespace, session: Session) -> int:
    session.executor.rename(session.resolve_profile(args.old, args.game), args.new)
    return 0


def cmd_profile_delete(args: argparse.Namespace, session: Session) -> int:
    return _report_delete(session.executor.delete(session.resolve_profile(args.name, args.game)))


def cmd_profile_set(args: argparse.Namespace, session: Session) -> int:
    game = session.resolve_game(args.game)
    session.executor.set_active_profile(game, session.resolve_profile(args.name, args.game))
    return 0


# ---------------------------------------------------------------------- saves


def cmd_list(args: argparse.Namespace, session: Session) -> int:
    profile = session.resolve_profile(args.profile, args.game)
    active = session.tree.active_save(profile)
    hide = session.config.hide_extensions
    for save in session.tree.saves(profile):
        stamp = save.modified.astimezone().strftime("%Y-%m-%d %H:%M")
        print(f"{_mark(active is not None and active.uid == save.uid)} {_display(save.name, hide)}\t{stamp}")
    return 0


def cmd_import(args: argparse.Namespace, session: Session) -> int:
    profile = session.resolve_profile(args.profile, args.game)
    ref = session.executor.import_save(profile, source=args.source, name=args.name, auto_rename=args.auto_rename)
    print(f"imported {session.tree.save(ref).name}")
    return 0


def cmd_load(args: argparse.Namespace, session: Session) -> int:
    executor = session.executor
    if args.random:
        ref = executor.load_random(session.resolve_profile(args.profile, args.game))
    elif args.active:
        ref = executor.load_active(session.resolve_profile(args.profile, args.game))
    elif args.name:
        ref = executor.load(session.resolve_save(args.name, args.profile, args.game))
    else:
        print("error: give a save name, --random or --active", file=sys.stderr)
        return 2
    print(f"loaded {session.tree.save(ref).name}")
    return 0


def cmd_rename(args: argparse.Namespace, session: Session) -> int:
    session.executor.rename(session.resolve_save(args.old, args.profile, args.game), args.new)
    return 0


def cmd_delete(args: argparse.Namespace, session: Session) -> int:
    return _report_delete(session.executor.delete(session.resolve_save(args.name, args.profile, args.game)))


def cmd_move(args: argparse.Namespace, session: Session) -> int:
    entry = session.resolve_save(args.name, args.profile, args.game)
    dest = session.resolve_profile(args.destination, args.game)
    anchor = session.resolve_save(args.after, args.destination, args.game) if args.after else None
    session.executor.move(entry, dest, relative_to=anchor)
    return 0


def cmd_replace(args: argparse.Namespace, session: Session) -> int:
    session.executor.replace(session.resolve_save(args.name, args.profile, args.game))
    return 0


def cmd_mark(args: argparse.Namespace, session: Session) -> int:
    session.executor.mark(session.resolve_save(args.name, args.profile, args.game))
    return 0


def cmd_search(args: argparse.Namespace, session: Session) -> int:
    if args.scope == "games":
        scope = SearchScope.games()
    elif args.scope == "profiles":
        scope = SearchScope.profiles(session.resolve_game(args.game))
    elif args.scope == "saves":
        scope = SearchScope.saves(session.resolve_profile(args.profile, args.game))
    else:
        scope = SearchScope.all_saves()
    tree = session.tree
    for ref in search(tree, args.query, scope, limit=args.limit):
        print(tree.path_of(ref) if args.scope == "all" else tree.get(ref).name)
    return 0


def cmd_presets(args: argparse.Namespace, session: Session) -> int:
    for preset in PRESETS:
        found = candidate_savefiles(preset)
        print(f"{preset.name} (app {preset.steam_app_id}): {len(found)} save file(s)")
        for path in found:
            print(f"    {path}")
    return 0


def cmd_watch(args: argparse.Namespace, session: Session) -> int:
    def log_change(change: TreeChange) -> None:
        logger.info("%s %s", change.kind.value, change.ref)

    session.tree.subscribe(log_change)
    loop = SyncLoop(session)
    try:
        loop.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


def _report_delete(result) -> int:
    for path in result.removed:
        logger.debug("removed %s", path)
    if result.ok:
        return 0
    for path, failure in result.failures.items():
        print(f"error: could not delete {path}: {failure.cause or failure}", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------- parser


def _where(p: argparse.ArgumentParser, profile: bool = True) -> None:
    p.add_argument("--game", help="Game name (default: the active game)")
    if profile:
        p.add_argument("--profile", help="Profile name (default: the active profile)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="savekeeper", description="Organize game save files by game and profile")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd")

    game = sub.add_parser("game", help="Manage games").add_subparsers(dest="game_cmd")
    p = game.add_parser("list", help="List games")
    p.set_defaults(func=cmd_game_list)
    p = game.add_parser("create", help="Create a game")
    p.add_argument("name")
    p.add_argument("--savefile", type=Path, help="Save slot the game reads")
    p.add_argument("--preset", help="Built-in preset name (see `savekeeper presets`)")
    p.add_argument("--root", type=Path, help="Store this game's profiles outside the library")
    p.add_argument("--activate", action="store_true", help="Make it the active game")
    p.set_defaults(func=cmd_game_create)
    p = game.add_parser("rename", help="Rename a game")
    p.add_argument("old")
    p.add_argument("new")
    p.set_defaults(func=cmd_game_rename)
    p = game.add_parser("delete", help="Delete a game and all its saves")
    p.add_argument("name")
    p.set_defaults(func=cmd_game_delete)
    p = game.add_parser("set", help="Set the active game")
    p.add_argument("name")
    p.set_defaults(func=cmd_game_set)
    p = game.add_parser("set-savefile", help="Set a game's save slot path")
    p.add_argument("path", type=Path)
    _where(p, profile=False)
    p.set_defaults(func=cmd_game_set_savefile)

    profile = sub.add_parser("profile", help="Manage profiles").add_subparsers(dest="profile_cmd")
    p = profile.add_parser("list", help="List profiles")
    _where(p, profile=False)
    p.set_defaults(func=cmd_profile_list)
    for name, func, helptext in (
        ("create", cmd_profile_create, "Create a profile"),
        ("delete", cmd_profile_delete, "Delete a profile and its saves"),
        ("set", cmd_profile_set, "Set the active profile"),
    ):
        p = profile.add_parser(name, help=helptext)
        p.add_argument("name")
        _where(p, profile=False)
        p.set_defaults(func=func)
    p = profile.add_parser("rename", help="Rename a profile")
    p.add_argument("old")
    p.add_argument("new")
    _where(p, profile=False)
    p.set_defaults(func=cmd_profile_rename)

    p = sub.add_parser("list", help="List saves of a profile")
    _where(p)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("import", help="Copy the save slot (or --source) into a profile")
    p.add_argument("--name", help="Name of the new save")
    p.add_argument("--source", type=Path, help="File to import instead of the save slot")
    p.add_argument("--auto-rename", action="store_true", help="Append ' (dup)' instead of failing on a clash")
    _where(p)
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("load", help="Copy a save onto the save slot")
    p.add_argument("name", nargs="?")
    which = p.add_mutually_exclusive_group()
    which.add_argument("--random", action="store_true", help="Load a random save of the profile")
    which.add_argument("--active", action="store_true", help="Reload the active save")
    _where(p)
    p.set_defaults(func=cmd_load)

    p = sub.add_parser("rename", help="Rename a save")
    p.add_argument("old")
    p.add_argument("new")
    _where(p)
    p.set_defaults(func=cmd_rename)

    for name, func, helptext in (
        ("delete", cmd_delete, "Delete a save"),
        ("replace", cmd_replace, "Overwrite a save with the current save slot"),
        ("mark", cmd_mark, "Mark a save as active without loading it"),
    ):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("name")
        _where(p)
        p.set_defaults(func=func)

    p = sub.add_parser("move", help="Move a save to another profile")
    p.add_argument("name")
    p.add_argument("destination", help="Destination profile")
    p.add_argument("--after", help="Place directly after this save of the destination")
    _where(p)
    p.set_defaults(func=cmd_move)

    p = sub.add_parser("search", help="Fuzzy-search names")
    p.add_argument("query")
    p.add_argument("--scope", choices=["games", "profiles", "saves", "all"], default="all")
    p.add_argument("--limit", type=int, default=None)
    _where(p)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("presets", help="List built-in presets and the save files found for them")
    p.set_defaults(func=cmd_presets)

    p = sub.add_parser("watch", help="Keep the library in sync and log changes until interrupted")
    p.set_defaults(func=cmd_watch)
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    try:
        session = Session.open(config)
        return args.func(args, session)
    except SaveKeeperError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
