"""onboarding_etl.profile_fields

Field-resolution tables for loosely-typed profile rows.

Each logical field maps to an ordered tuple of candidate column names;
``resolve_field`` returns the first non-empty alias.  Scorers never look
up raw column names directly.
"""

from __future__ import annotations

from typing import Mapping

from onboarding_etl.normalize import is_empty_array_like, pick

# ---------------------------------------------------------------------------
# Athlete profile columns
# ---------------------------------------------------------------------------

ATHLETE_FIELDS: dict[str, tuple[str, ...]] = {
    "profile_id":         ("id",),
    "account_id":         ("user_id",),
    "photo":              ("foto_url", "foto", "photo_url", "avatar_url"),
    "bio":                ("bio", "biografia", "about"),
    "modality":           ("modalidade", "modalities", "sports"),
    "level":              ("nivel", "level"),
    "state":              ("state_id", "estado", "uf", "state"),
    "city":               ("city_id", "cidade", "city"),
    "phone":              ("telefone", "phone", "celular", "whatsapp"),
    "instagram":          ("instagram", "insta", "instagram_url"),
    "youtube":            ("youtube", "youtube_url", "youtube_link", "youtubeChannel"),
    "tiktok":             ("tiktok", "tiktok_url", "tiktok_link"),
    "linkedin":           ("linkedin", "linkedin_url", "linkedin_link"),
    "values_description": ("valores_descricao", "values_description"),
}

# ---------------------------------------------------------------------------
# Partner profile columns
# ---------------------------------------------------------------------------

PARTNER_FIELDS: dict[str, tuple[str, ...]] = {
    "account_id":   ("user_id",),
    "logo":         ("logo_url", "logo"),
    "description":  ("descricao", "description"),
    "city":         ("cidade", "city"),
    "state":        ("estado", "state"),
    "contact":      ("contact", "contato"),
    "website":      ("website", "site"),
    "linkedin":     ("linkedin",),
    "instagram":    ("instagram",),
    "display_name": ("nome_fantasia", "display_name"),
    "username":     ("username",),
    "entity_kind":  ("tipo_entidade", "entity_kind"),
    "tax_id":       ("cnpj", "tax_id"),
    "legal_name":   ("razao_social", "legal_name"),
    "personal_id":  ("cpf", "personal_id"),
}

# ---------------------------------------------------------------------------
# Account / role / fact columns
# ---------------------------------------------------------------------------

ACCOUNT_FIELDS: dict[str, tuple[str, ...]] = {
    "account_id": ("id",),
    "email":      ("email",),
    "full_name":  ("full_name",),
    "created_at": ("created_at",),
    "updated_at": ("updated_at",),
}

ROLE_FIELDS: dict[str, tuple[str, ...]] = {
    "account_id": ("user_id",),
    "role":       ("role",),
}

FACT_FOREIGN_KEY: tuple[str, ...] = ("athlete_id",)

ACTIVATION_TYPE_ALIASES: tuple[str, ...] = (
    "activation_type_id",
    "type_id",
    "ativacao_id",
    "activation_id",
)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def resolve_field(
    row: Mapping[str, str] | None,
    table: Mapping[str, tuple[str, ...]],
    logical: str,
) -> str:
    """Return the first non-empty alias value for a logical field, or ``""``.

    Raises KeyError for a logical name the table does not define, so a
    typo in a rubric fails loudly instead of reading as "missing".
    """
    return pick(row, table[logical])


def field_present(
    row: Mapping[str, str] | None,
    table: Mapping[str, tuple[str, ...]],
    logical: str,
) -> bool:
    return resolve_field(row, table, logical) != ""


def list_field_present(
    row: Mapping[str, str] | None,
    table: Mapping[str, tuple[str, ...]],
    logical: str,
) -> bool:
    """Presence for list-shaped columns: ``[]`` and ``{}`` count as absent."""
    return not is_empty_array_like(resolve_field(row, table, logical))
