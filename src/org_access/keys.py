"""
org_access.keys — Single-table key schema.

    Organization   PK: ORG#{NAME}     SK: ENTITY        GSI1PK: ORG        GSI1SK: ORG#{NAME}
    User<->Org     PK: USER#{userId}  SK: ORG#{NAME}    GSI1PK: ORG#{NAME} GSI1SK: USER#{userId}

{NAME} is the organization name stripped and upper-cased, so lookups are
case-insensitive while the stored `name` attribute keeps the submitted casing.
"""

from __future__ import annotations

from typing import Any

from org_access.exceptions import InvalidIdentifier

ORG_PREFIX = "ORG#"
USER_PREFIX = "USER#"
ENTITY_SORT_KEY = "ENTITY"
ORG_LISTING_PARTITION = "ORG"

# Attributes making up a GSI1 LastEvaluatedKey
CURSOR_ATTRIBUTES: tuple[str, ...] = ("PK", "SK", "GSI1PK", "GSI1SK")


def _require(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidIdentifier(field, value)
    return value.strip()


def normalize_org_name(name: Any) -> str:
    return _require("name", name).upper()


def org_pk(name: str) -> str:
    return f"{ORG_PREFIX}{normalize_org_name(name)}"


def user_pk(user_id: str) -> str:
    return f"{USER_PREFIX}{_require('user_id', user_id)}"


def org_key(name: str) -> dict[str, str]:
    return {"PK": org_pk(name), "SK": ENTITY_SORT_KEY}


def membership_key(name: str, user_id: str) -> dict[str, str]:
    return {"PK": user_pk(user_id), "SK": org_pk(name)}


def org_listing_index_keys(name: str) -> dict[str, str]:
    return {"GSI1PK": ORG_LISTING_PARTITION, "GSI1SK": org_pk(name)}


def membership_index_keys(name: str, user_id: str) -> dict[str, str]:
    return {"GSI1PK": org_pk(name), "GSI1SK": user_pk(user_id)}
