"""onboarding_etl.activation_tags

YAML-based activation tag configuration.

Responsibilities:
  - Load and validate config/activation_tags.yml
  - Map raw activation_type identifiers to semantic categories
  - Hash YAML content for traceability (recorded on each run)

Usage:
    from pathlib import Path
    from onboarding_etl.activation_tags import load_tag_config

    tag_config = load_tag_config(Path("config/activation_tags.yml"))
    tag_config.has_category({"ed814423-..."}, TALK_MENTORSHIP)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TALK_MENTORSHIP = "talk_mentorship"
BRAND_PRESENCE = "brand_presence"

VALID_CATEGORIES = frozenset({TALK_MENTORSHIP, BRAND_PRESENCE})

REQUIRED_YAML_KEYS = frozenset({"version", "categories"})

DEFAULT_TAG_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "activation_tags.yml"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class TagConfigValidationError(ValueError):
    """Raised when an activation tag YAML file fails schema validation."""


# ---------------------------------------------------------------------------
# ActivationTagConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivationTagConfig:
    """Parsed, validated mapping from raw tag identifier to category."""

    version: str
    yaml_hash: str
    category_by_tag: dict[str, str] = field(default_factory=dict)

    def has_category(self, tags: Iterable[str] | None, category: str) -> bool:
        """True if any tag in tags is configured under category."""
        if not tags:
            return False
        return any(self.category_by_tag.get(t) == category for t in tags)

    @classmethod
    def from_mapping(cls, categories: dict[str, list[str]], version: str = "inline") -> "ActivationTagConfig":
        """Build a config directly from ``{category: [tag, ...]}`` (tests, callers)."""
        data = {"version": version, "categories": categories}
        validate_tag_config(data)
        return cls(version=version, yaml_hash="", category_by_tag=_invert(categories))


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_tag_config(yaml_path: Path) -> ActivationTagConfig:
    """Load, validate, and return an ActivationTagConfig from a YAML file.

    Raises:
        TagConfigValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data: dict[str, Any] = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise TagConfigValidationError(f"Unparseable YAML: {exc}") from exc
    validate_tag_config(data)
    yaml_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return ActivationTagConfig(
        version=str(data["version"]),
        yaml_hash=yaml_hash,
        category_by_tag=_invert(data["categories"]),
    )


def validate_tag_config(data: dict[str, Any]) -> None:
    """Raise TagConfigValidationError if data does not match required schema.

    Validates:
      - Required top-level keys present
      - categories is a mapping of known category → list of identifiers
      - no identifier is assigned to two categories
    """
    if not isinstance(data, dict):
        raise TagConfigValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise TagConfigValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    categories = data.get("categories")
    if not isinstance(categories, dict):
        raise TagConfigValidationError("'categories' must be a mapping.")

    unknown = set(categories) - VALID_CATEGORIES
    if unknown:
        raise TagConfigValidationError(
            f"Unknown categories {sorted(unknown)}. Must be among {sorted(VALID_CATEGORIES)}."
        )

    seen: dict[str, str] = {}
    for category, tags in categories.items():
        if tags is None:
            continue
        if not isinstance(tags, list):
            raise TagConfigValidationError(f"Category '{category}' must list identifiers.")
        for tag in tags:
            tag_id = str(tag).strip()
            if not tag_id:
                raise TagConfigValidationError(f"Category '{category}' has a blank identifier.")
            if tag_id in seen and seen[tag_id] != category:
                raise TagConfigValidationError(
                    f"Identifier '{tag_id}' assigned to both '{seen[tag_id]}' and '{category}'."
                )
            seen[tag_id] = category


def _invert(categories: dict[str, list[str] | None]) -> dict[str, str]:
    return {
        str(tag).strip(): category
        for category, tags in categories.items()
        for tag in (tags or [])
    }
