"""
org_access.config — Environment-driven settings.

    ORG_TABLE_NAME            single table holding orgs and memberships
    ORG_GSI1_INDEX_NAME       secondary index over (GSI1PK, GSI1SK)
    LOGO_BUCKET_NAME          bucket holding organization logos
    LOGO_URL_EXPIRY_SECONDS   lifetime of presigned logo URLs
    AWS_REGION                region for boto3 clients
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from org_access.exceptions import InvalidInput

_TABLE_NAME_ENV = "ORG_TABLE_NAME"
_GSI1_INDEX_ENV = "ORG_GSI1_INDEX_NAME"
_LOGO_BUCKET_ENV = "LOGO_BUCKET_NAME"
_LOGO_EXPIRY_ENV = "LOGO_URL_EXPIRY_SECONDS"

DEFAULT_TABLE_NAME = "photocomp-table"
DEFAULT_GSI1_INDEX_NAME = "GSI1PK-GSI1SK-INDEX"
DEFAULT_LOGO_URL_EXPIRY_SECONDS = 3600


def _positive_int(value: str, *, field: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise InvalidInput(f"{field} must be an integer, got {value!r}") from exc
    if parsed <= 0:
        raise InvalidInput(f"{field} must be positive, got {parsed}")
    return parsed


@dataclass(frozen=True)
class OrgAccessConfig:
    table_name: str = DEFAULT_TABLE_NAME
    gsi1_index_name: str = DEFAULT_GSI1_INDEX_NAME
    logo_bucket: str | None = None
    logo_url_expiry_seconds: int = DEFAULT_LOGO_URL_EXPIRY_SECONDS
    region: str | None = None

    @classmethod
    def from_env(cls) -> OrgAccessConfig:
        expiry_raw = os.environ.get(_LOGO_EXPIRY_ENV)
        return cls(
            table_name=os.environ.get(_TABLE_NAME_ENV, DEFAULT_TABLE_NAME),
            gsi1_index_name=os.environ.get(_GSI1_INDEX_ENV, DEFAULT_GSI1_INDEX_NAME),
            logo_bucket=os.environ.get(_LOGO_BUCKET_ENV) or None,
            logo_url_expiry_seconds=(
                _positive_int(expiry_raw, field=_LOGO_EXPIRY_ENV)
                if expiry_raw
                else DEFAULT_LOGO_URL_EXPIRY_SECONDS
            ),
            region=os.environ.get("AWS_REGION") or None,
        )
