"""Normalization functions for onboarding snapshot ingestion.

All functions accept str | None and return the appropriate type or None.
Presence checks treat blank strings and the literal token ``null`` as
absent, matching how the upstream portal exports empty columns.
"""

from __future__ import annotations

from typing import Iterable, Mapping

_BOM = "\ufeff"
_NULL_TOKEN = "null"
_EMPTY_ARRAY_LIKE = frozenset({"", "[]", "{}", _NULL_TOKEN})


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: null tokens
# ---------------------------------------------------------------------------

def is_null_token(value: str | None) -> bool:
    """True for the literal ``null`` token, in any case."""
    v = trim(value)
    return v is not None and v.lower() == _NULL_TOKEN


def clean_cell(value: str | None) -> str:
    """Trim a raw CSV cell; None and ``null`` become the empty string."""
    v = trim(value)
    if v is None or is_null_token(v):
        return ""
    return v


def strip_bom(value: str) -> str:
    return value[1:] if value.startswith(_BOM) else value


# ---------------------------------------------------------------------------
# Rule 3: presence
# ---------------------------------------------------------------------------

def is_filled(value: object) -> bool:
    """True when value is non-null, non-blank and not the ``null`` token."""
    if value is None:
        return False
    v = str(value).strip()
    return v != "" and v.lower() != _NULL_TOKEN


def is_empty_array_like(value: object) -> bool:
    """True for None, blank, ``[]``, ``{}`` or ``null``.

    Used for list-shaped columns (modality lists, partner contact blobs)
    that the portal exports as JSON text.
    """
    if value is None:
        return True
    return str(value).strip() in _EMPTY_ARRAY_LIKE


# ---------------------------------------------------------------------------
# Rule 4: norm / pick
# ---------------------------------------------------------------------------

def norm(value: object) -> str:
    """Strip a BOM, trim, and drop one pair of surrounding double quotes."""
    if value is None:
        return ""
    v = strip_bom(str(value)).strip()
    if v.startswith('"'):
        v = v[1:]
    if v.endswith('"'):
        v = v[:-1]
    return v


def pick(row: Mapping[str, object] | None, keys: Iterable[str]) -> str:
    """Return the first non-empty, non-``null`` value among keys, else ``""``.

    The order of keys is significant: earlier aliases win.
    """
    if not row:
        return ""
    for key in keys:
        val = norm(row.get(key))
        if val and val.lower() != _NULL_TOKEN:
            return val
    return ""

