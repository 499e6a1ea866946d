"""Frozen dataclasses for the canonical rubric and label mapping."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_LABEL_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_label(label: str) -> str:
    """Canonical lookup form of a category label.

    Casefolds and collapses whitespace, ``-`` and ``_`` runs into a
    single space: ``"Code_Quality "`` -> ``"code quality"``.
    """
    return _LABEL_SEPARATORS.sub(" ", label.casefold()).strip()


@dataclass(frozen=True)
class RubricCategory:
    """One canonical scoring dimension."""

    key: str
    weight: float
    aliases: tuple[str, ...] = field(default_factory=tuple)
    # False when the weights file names a key the mapping never defines
    defined: bool = True


@dataclass(frozen=True)
class Rubric:
    """Canonical categories plus the tagged label-lookup table.

    ``alias_index`` maps a normalized label to every canonical key
    that claims it; more than one key means the label is ambiguous.
    ``source_overrides`` are consulted first and are keyed by
    ``source_id`` then normalized label.
    """

    categories: tuple[RubricCategory, ...]
    alias_index: dict[str, frozenset[str]] = field(
        default_factory=lambda: dict[str, frozenset[str]]()
    )
    source_overrides: dict[str, dict[str, str]] = field(
        default_factory=lambda: dict[str, dict[str, str]]()
    )
    assessor_weights: dict[str, float] = field(
        default_factory=lambda: dict[str, float]()
    )

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(c.key for c in self.categories)

    def category(self, key: str) -> RubricCategory | None:
        for cat in self.categories:
            if cat.key == key:
                return cat
        return None

    def resolve_label(
        self, label: str, source_id: str
    ) -> frozenset[str]:
        """Return the canonical keys a label maps to for a source.

        Empty means unmapped; more than one means ambiguous.
        """
        norm = normalize_label(label)
        override = self.source_overrides.get(source_id, {}).get(norm)
        if override is not None:
            return frozenset({override})
        return self.alias_index.get(norm, frozenset())

    def assessor_weight(self, source_id: str) -> float:
        """Per-assessor weight, 1.0 when none is configured."""
        return self.assessor_weights.get(source_id, 1.0)
