"""Load and validate the rubric mapping and weights files.

Both files may be JSON or YAML (chosen by extension). Every defect is
raised as ``ConfigError`` before any assessment is processed; an
unreadable file is ``InputUnavailableError``.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

import yaml

from concordance.constants import WEIGHT_EPSILON
from concordance.resilience.errors import (
    ConfigError,
    InputUnavailableError,
)
from concordance.rubric.schemas import (
    Rubric,
    RubricCategory,
    normalize_label,
)

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a JSON or YAML config file into a dict."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise InputUnavailableError(msg, path=str(path)) from exc

    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Malformed config file: {exc}"
        raise ConfigError(msg, path=str(path)) from exc

    if not isinstance(raw, dict):
        msg = "Config file must contain a mapping at top level"
        raise ConfigError(msg, path=str(path))
    return raw


def load_rubric(mapping_path: Path, weights_path: Path) -> Rubric:
    """Build a validated ``Rubric`` from the two config files."""
    mapping_raw = read_config_file(mapping_path)
    weights_raw = read_config_file(weights_path)
    return build_rubric(
        mapping_raw,
        weights_raw,
        mapping_label=str(mapping_path),
        weights_label=str(weights_path),
    )


def build_rubric(
    mapping_raw: dict[str, Any],
    weights_raw: dict[str, Any],
    *,
    mapping_label: str = "<mapping>",
    weights_label: str = "<weights>",
) -> Rubric:
    """Validate raw config dicts and assemble a ``Rubric``.

    Checks:
    1. every alias belongs to exactly one canonical key
    2. per-source overrides target defined canonical keys
    3. every defined category has a weight in [0, 1]
    4. weights sum to 1 within WEIGHT_EPSILON
    """
    aliases = _parse_aliases(mapping_raw, mapping_label)
    alias_index = _build_alias_index(aliases, mapping_label)
    overrides = _parse_overrides(
        mapping_raw, set(aliases), mapping_label
    )
    category_weights, assessor_weights = _parse_weights(
        weights_raw, weights_label
    )

    missing = sorted(set(aliases) - set(category_weights))
    if missing:
        msg = (
            "Canonical categories without a weight: "
            f"{', '.join(missing)}"
        )
        raise ConfigError(msg, path=weights_label)

    total = math.fsum(category_weights.values())
    if abs(total - 1.0) > WEIGHT_EPSILON:
        msg = (
            f"Category weights sum to {total:.6f}, "
            "expected 1.0"
        )
        raise ConfigError(msg, path=weights_label)

    categories = tuple(
        RubricCategory(
            key=key,
            weight=category_weights[key],
            aliases=tuple(aliases.get(key, ())),
            defined=key in aliases,
        )
        for key in sorted(category_weights)
    )
    logger.info(
        "event=rubric_loaded categories=%d aliases=%d overrides=%d",
        len(categories),
        len(alias_index),
        len(overrides),
    )
    return Rubric(
        categories=categories,
        alias_index=alias_index,
        source_overrides=overrides,
        assessor_weights=assessor_weights,
    )


def _parse_aliases(
    raw: dict[str, Any], label: str
) -> dict[str, list[str]]:
    """Canonical key -> aliases; the key itself is always an alias."""
    section = raw.get("categories", raw)
    if not isinstance(section, dict) or not section:
        msg = "Mapping must define at least one canonical category"
        raise ConfigError(msg, path=label)

    aliases: dict[str, list[str]] = {}
    for key, values in section.items():
        if key == "sources":
            continue
        if values is None:
            values = []
        if not isinstance(values, list):
            msg = f"Aliases for '{key}' must be a list"
            raise ConfigError(msg, category=str(key), path=label)
        aliases[str(key)] = [str(key), *(str(v) for v in values)]
    if not aliases:
        msg = "Mapping must define at least one canonical category"
        raise ConfigError(msg, path=label)
    return aliases


def _build_alias_index(
    aliases: dict[str, list[str]], label: str
) -> dict[str, frozenset[str]]:
    """Index normalized aliases; an exact alias under two keys is fatal.

    Distinct spellings that only collide after normalization are kept
    and surface as per-assessment ambiguity during normalization.
    """
    literal_owner: dict[str, str] = {}
    index: dict[str, set[str]] = {}
    for key in sorted(aliases):
        for alias in aliases[key]:
            owner = literal_owner.get(alias)
            if owner is not None and owner != key:
                msg = (
                    f"Ambiguous mapping: alias '{alias}' is listed "
                    f"under both '{owner}' and '{key}'"
                )
                raise ConfigError(msg, category=key, path=label)
            literal_owner[alias] = key
            index.setdefault(normalize_label(alias), set()).add(key)
    return {k: frozenset(v) for k, v in index.items()}


def _parse_overrides(
    raw: dict[str, Any],
    defined: set[str],
    label: str,
) -> dict[str, dict[str, str]]:
    section = raw.get("sources") or {}
    if not isinstance(section, dict):
        msg = "'sources' must map source ids to label tables"
        raise ConfigError(msg, path=label)

    overrides: dict[str, dict[str, str]] = {}
    for source_id, table in section.items():
        if not isinstance(table, dict):
            msg = "Per-source mapping must be a label -> key table"
            raise ConfigError(
                msg, source_id=str(source_id), path=label
            )
        resolved: dict[str, str] = {}
        for local, key in table.items():
            if str(key) not in defined:
                msg = (
                    f"Label '{local}' maps to undefined "
                    f"category '{key}'"
                )
                raise ConfigError(
                    msg,
                    source_id=str(source_id),
                    category=str(key),
                    path=label,
                )
            norm = normalize_label(str(local))
            previous = resolved.get(norm)
            if previous is not None and previous != str(key):
                msg = (
                    f"Ambiguous mapping: label '{local}' maps to "
                    f"both '{previous}' and '{key}'"
                )
                raise ConfigError(
                    msg, source_id=str(source_id), path=label
                )
            resolved[norm] = str(key)
        overrides[str(source_id)] = resolved
    return overrides


def _parse_weights(
    raw: dict[str, Any], label: str
) -> tuple[dict[str, float], dict[str, float]]:
    """Accept a flat ``{key: weight}`` table or a structured one."""
    if "categories" in raw:
        category_raw = raw.get("categories") or {}
        assessor_raw = raw.get("assessors") or {}
    else:
        category_raw = raw
        assessor_raw = {}
    if not isinstance(category_raw, dict) or not isinstance(
        assessor_raw, dict
    ):
        msg = "Weights must be key -> number tables"
        raise ConfigError(msg, path=label)

    categories: dict[str, float] = {}
    for key, value in category_raw.items():
        weight = _as_number(value, label, category=str(key))
        if not 0.0 <= weight <= 1.0:
            msg = f"Weight {weight} outside [0, 1]"
            raise ConfigError(msg, category=str(key), path=label)
        categories[str(key)] = weight

    assessors: dict[str, float] = {}
    for source_id, value in assessor_raw.items():
        weight = _as_number(value, label, source_id=str(source_id))
        if weight <= 0.0:
            msg = f"Assessor weight {weight} must be positive"
            raise ConfigError(
                msg, source_id=str(source_id), path=label
            )
        assessors[str(source_id)] = weight

    if not categories:
        msg = "Weights file defines no categories"
        raise ConfigError(msg, path=label)
    return categories, assessors


def _as_number(
    value: Any,
    label: str,
    *,
    category: str | None = None,
    source_id: str | None = None,
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"Weight must be a number, got {value!r}"
        raise ConfigError(
            msg, category=category, source_id=source_id, path=label
        )
    number = float(value)
    if not math.isfinite(number):
        msg = f"Weight must be finite, got {value!r}"
        raise ConfigError(
            msg, category=category, source_id=source_id, path=label
        )
    return number
