from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

SCHEMA_VERSION = 1


class ProfileState(BaseModel):
    """What the filesystem cannot tell us about a profile."""

    order: List[str] = Field(default_factory=list, description="Manually ordered save names, in order")
    active_save: Optional[str] = Field(default=None, description="Save most recently loaded or marked")


class GameState(BaseModel):
    root: Optional[Path] = Field(default=None, description="Storage root when outside the library")
    savefile_path: Optional[Path] = None
    preset: bool = False
    active_profile: Optional[str] = None
    profiles: Dict[str, ProfileState] = Field(default_factory=dict)


class AppState(BaseModel):
    schema_version: int = SCHEMA_VERSION
    active_game: Optional[str] = None
    games: Dict[str, GameState] = Field(default_factory=dict)
