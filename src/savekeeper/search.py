from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from thefuzz import fuzz, process

from .tree import EntityKind, EntityRef, EntityTree

logger = logging.getLogger(__name__)

# (query, {ref: label}, limit) -> [(ref, score)] best first
Matcher = Callable[[str, Dict[EntityRef, str], Optional[int]], List[Tuple[EntityRef, int]]]


class ScopeKind(str, Enum):
    GAMES = "games"
    PROFILES = "profiles"
    SAVES = "saves"
    ALL_SAVES = "all_saves"


@dataclass(frozen=True)
class SearchScope:
    kind: ScopeKind
    parent: Optional[EntityRef] = None

    @classmethod
    def games(cls) -> "SearchScope":
        return cls(ScopeKind.GAMES)

    @classmethod
    def profiles(cls, game: EntityRef) -> "SearchScope":
        return cls(ScopeKind.PROFILES, game)

    @classmethod
    def saves(cls, profile: EntityRef) -> "SearchScope":
        return cls(ScopeKind.SAVES, profile)

    @classmethod
    def all_saves(cls) -> "SearchScope":
        return cls(ScopeKind.ALL_SAVES)


class FuzzMatcher:
    """Rank labels with ``thefuzz`` weighted ratio, dropping weak matches."""

    def __init__(self, score_cutoff: int = 50) -> None:
        self.score_cutoff = score_cutoff

    def __call__(self, query: str, choices: Dict[EntityRef, str], limit: Optional[int]) -> List[Tuple[EntityRef, int]]:
        results = process.extractBests(
            query,
            choices,
            scorer=fuzz.WRatio,
            score_cutoff=self.score_cutoff,
            limit=limit,
        )
        return [(key, score) for _label, score, key in results]


def candidates(tree: EntityTree, scope: SearchScope) -> Dict[EntityRef, str]:
    """Flatten the names visible in ``scope`` into ``{ref: label}`` (display order)."""
    if scope.kind is ScopeKind.GAMES:
        return {g.ref: g.name for g in tree.games()}
    if scope.kind is ScopeKind.PROFILES:
        assert scope.parent is not None and scope.parent.kind is EntityKind.GAME
        return {p.ref: p.name for p in tree.profiles(scope.parent)}
    if scope.kind is ScopeKind.SAVES:
        assert scope.parent is not None and scope.parent.kind is EntityKind.PROFILE
        return {s.ref: s.name for s in tree.saves(scope.parent)}
    out: Dict[EntityRef, str] = {}
    for g in tree.games():
        for p in tree.profiles(g.ref):
            for s in tree.saves(p.ref):
                out[s.ref] = f"{g.name}/{p.name}/{s.name}"
    return out


def search(
    tree: EntityTree,
    query: str,
    scope: SearchScope,
    matcher: Optional[Matcher] = None,
    limit: Optional[int] = None,
) -> List[EntityRef]:
    """Return the refs in ``scope`` ranked against ``query``.

    An empty query returns everything in display order.
    """
    choices = candidates(tree, scope)
    if not query.strip():
        refs = list(choices)
        return refs[:limit] if limit is not None else refs
    matcher = matcher or FuzzMatcher()
    ranked = matcher(query, choices, limit)
    logger.debug("Search %r in %s: %d of %d matched", query, scope.kind.value, len(ranked), len(choices))
    return [ref for ref, _score in ranked]
