from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Sequence

Path = tuple[str, ...]


def normalize_path(path: Sequence[str]) -> Path:
    """Endpoints stay fixed; intermediate nodes are order-insensitive.

    Two paths through the same group event (A->B->C->D vs A->C->B->D)
    normalize to the same tuple.
    """
    if len(path) <= 2:
        return tuple(path)
    return (path[0], *sorted(path[1:-1]), path[-1])


def paths_equivalent(left: Sequence[str], right: Sequence[str]) -> bool:
    if len(left) != len(right):
        return False
    return normalize_path(left) == normalize_path(right)


def parse_chain_paths(value: Any, fallback: list[list[str]] | None = None) -> list[list[str]]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return list(fallback or [])
    if not isinstance(value, list) or not all(isinstance(p, list) for p in value):
        return list(fallback or [])
    return [[str(n) for n in p] for p in value]


@dataclass
class RecipientPaths:
    recipient_id: str
    primary: Path
    primary_index: int = 0
    paths: list[Path] = field(default_factory=list)
    # Per path, the contact hit behind each hop.
    edges: list[tuple[Any, ...]] = field(default_factory=list)

    @property
    def hop_depth(self) -> int:
        return len(self.primary) - 1

    @property
    def primary_edges(self) -> tuple[Any, ...]:
        return self.edges[self.primary_index]


class PathLedger:
    """Collapses every path reaching a recipient into one entry per recipient."""

    def __init__(self) -> None:
        self._entries: dict[str, RecipientPaths] = {}

    def __contains__(self, recipient_id: str) -> bool:
        return recipient_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, recipient_id: str) -> RecipientPaths | None:
        return self._entries.get(recipient_id)

    def entries(self) -> dict[str, RecipientPaths]:
        return dict(self._entries)

    def record(self, recipient_id: str, path: Sequence[str], edges: Sequence[Any]) -> bool:
        """Record ``path``; returns False for an equivalent, already-known path."""
        path = tuple(path)
        entry = self._entries.get(recipient_id)
        if entry is None:
            self._entries[recipient_id] = RecipientPaths(
                recipient_id=recipient_id,
                primary=path,
                paths=[path],
                edges=[tuple(edges)],
            )
            return True

        if any(paths_equivalent(existing, path) for existing in entry.paths):
            return False

        entry.paths.append(path)
        entry.edges.append(tuple(edges))
        # Strictly shorter only: equal-length paths keep the first discovered.
        if len(path) < len(entry.primary):
            entry.primary = path
            entry.primary_index = len(entry.paths) - 1
        return True
