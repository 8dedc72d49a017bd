"""Built-in game presets: where well-known games keep their save slot."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import platformdirs

from .errors import NotFound

logger = logging.getLogger(__name__)

# Added to a 32-bit account id to obtain the individual 64-bit Steam id
INDIVIDUAL_IDENTIFIER = 0x0110000100000000


@dataclass(frozen=True)
class Preset:
    name: str
    steam_app_id: str
    folder_name: str
    file_name: str
    # Saves under Documents instead of AppData/Roaming
    in_documents: bool = False

    def save_folder(self, base: Optional[Path] = None) -> Path:
        """Directory holding one sub-directory per Steam account."""
        if sys.platform.startswith("win"):
            if self.in_documents:
                root = Path(platformdirs.user_documents_dir())
            else:
                root = base or Path(platformdirs.user_data_dir(roaming=True))
            return root.joinpath(*self.folder_name.split("/"))
        # Proton prefix of the game
        base = base or Path(platformdirs.user_data_dir())
        users = base / "Steam" / "steamapps" / "compatdata" / self.steam_app_id / "pfx" / "drive_c" / "users" / "steamuser"
        sub = users / "Documents" if self.in_documents else users / "AppData" / "Roaming"
        return sub.joinpath(*self.folder_name.split("/"))

    def __str__(self) -> str:
        return self.name


PRESETS: List[Preset] = [
    Preset("Dark Souls Remastered", "570940", "NBGI/DARK SOULS REMASTERED", "DRAKS0005.sl2", in_documents=True),
    Preset("Dark Souls II", "236430", "DarkSoulsII", "DARKSII0000.sl2"),
    Preset("Dark Souls II: SotFS", "335300", "DarkSoulsII", "DS2SOFS0000.sl2"),
    Preset("Dark Souls III", "374320", "DarkSoulsIII", "DS30000.sl2"),
    Preset("Sekiro", "814380", "Sekiro", "S0000.sl2"),
    Preset("Elden Ring", "1245620", "EldenRing", "ER0000.sl2"),
]


def get_preset(name: str) -> Preset:
    """Look a preset up by name, case-insensitively."""
    wanted = name.casefold()
    for preset in PRESETS:
        if preset.name.casefold() == wanted:
            return preset
    raise NotFound(f"No preset named {name!r}")


def is_64_bit_steam_id(name: str) -> bool:
    return name.startswith("76561") and len(name) == 17 and name.isascii() and name.isdigit()


def is_steam_id(name: str) -> bool:
    """True for a 64-bit Steam id or the hex form of a 32-bit/64-bit one."""
    if is_64_bit_steam_id(name):
        return True
    try:
        value = int(name, 16)
    except ValueError:
        return False
    return is_64_bit_steam_id(str(value)) or is_64_bit_steam_id(str(value + INDIVIDUAL_IDENTIFIER))


def candidate_savefiles(preset: Preset, base: Optional[Path] = None) -> List[Path]:
    """List the save slot path for every Steam account folder found for ``preset``.

    Missing directories yield an empty list.
    """
    folder = preset.save_folder(base)
    try:
        children = sorted(folder.iterdir())
    except OSError as exc:
        logger.debug("No save folder for %s at %s: %s", preset.name, folder, exc)
        return []
    return [child / preset.file_name for child in children if child.is_dir() and is_steam_id(child.name)]
