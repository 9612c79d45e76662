"""
org_access.models — Records stored in the organization table.

Both entity types live in one table (see org_access.keys for the layout).
Items carry camelCase attributes; the dataclasses below are the typed view
the store hands to callers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from org_access import keys
from org_access.exceptions import InvalidInput

ORGANIZATION_TYPE = "ORGANIZATION"
MEMBERSHIP_TYPE = "USER_ORG"

# Fixed by the public listing contract, not configurable per call.
PUBLIC_PAGE_SIZE: int = 9


def _now_utc() -> datetime:
    return datetime.now(UTC)


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def timestamp() -> str:
    """Current time as an ISO 8601 UTC string."""
    return _iso(_now_utc())


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


class MemberRole(StrEnum):
    MEMBER = "member"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> MemberRole:
        if isinstance(value, MemberRole):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidInput("role must be one of: member, admin") from exc

    def grants(self, required: MemberRole) -> bool:
        """Admin is a strict superset of member."""
        return self is MemberRole.ADMIN or required is MemberRole.MEMBER


# ---------------------------------------------------------------------------
# Organization
# PK: ORG#{NAME}  SK: ENTITY  GSI1PK: ORG  GSI1SK: ORG#{NAME}
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Organization:
    """Canonical organization record.

    Logo reference: logo_s3_key is the source of truth when set.  Older
    records only carry logo_url (a previously issued presigned URL); the
    resolver recovers the key from it and the store backfills logo_s3_key.
    """

    org_id: str
    name: str
    created_by: str
    created_at: str  # ISO 8601 UTC
    updated_at: str  # ISO 8601 UTC
    description: str | None = None
    website: str | None = None
    contact_email: str | None = None
    logo_url: str | None = None
    logo_s3_key: str | None = None

    @classmethod
    def new(
        cls,
        name: str,
        created_by: str,
        *,
        description: str | None = None,
        website: str | None = None,
        contact_email: str | None = None,
        logo_s3_key: str | None = None,
    ) -> Organization:
        keys.normalize_org_name(name)
        now = timestamp()
        return cls(
            org_id=str(uuid.uuid4()),
            name=name.strip(),
            created_by=created_by,
            created_at=now,
            updated_at=now,
            description=description,
            website=website,
            contact_email=contact_email,
            logo_s3_key=logo_s3_key,
        )

    @property
    def pk(self) -> str:
        return keys.org_pk(self.name)

    @property
    def sk(self) -> str:
        return keys.ENTITY_SORT_KEY

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            **keys.org_key(self.name),
            **keys.org_listing_index_keys(self.name),
            "type": ORGANIZATION_TYPE,
            "id": self.org_id,
            "name": self.name,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        optional = {
            "description": self.description,
            "website": self.website,
            "contactEmail": self.contact_email,
            "logoUrl": self.logo_url,
            "logoS3Key": self.logo_s3_key,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> Organization:
        return cls(
            org_id=str(item.get("id", "")),
            name=str(item.get("name", "")),
            created_by=str(item.get("createdBy", "")),
            created_at=str(item.get("createdAt", "")),
            updated_at=str(item.get("updatedAt", "")),
            description=_opt_str(item.get("description")),
            website=_opt_str(item.get("website")),
            contact_email=_opt_str(item.get("contactEmail")),
            logo_url=_opt_str(item.get("logoUrl")),
            logo_s3_key=_opt_str(item.get("logoS3Key")),
        )


@dataclass(frozen=True)
class OrganizationUpdate:
    """Partial update request.  None or blank fields are left untouched."""

    name: str
    description: str | None = None
    website: str | None = None
    contact_email: str | None = None
    logo_url: str | None = None
    logo_s3_key: str | None = None

    def attributes(self) -> dict[str, Any]:
        """Updatable item attributes keyed by their stored name."""
        return {
            "description": self.description,
            "website": self.website,
            "contactEmail": self.contact_email,
            "logoUrl": self.logo_url,
            "logoS3Key": self.logo_s3_key,
        }


@dataclass(frozen=True)
class OrganizationPage:
    organizations: list[Organization] = field(default_factory=list)
    cursor: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# User<->Org relationship
# PK: USER#{userId}  SK: ORG#{NAME}  GSI1PK: ORG#{NAME}  GSI1SK: USER#{userId}
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Membership:
    """One item per (user, org) pair.  Its existence is the membership."""

    user_id: str
    org_name: str
    role: MemberRole
    joined_at: str  # ISO 8601 UTC
    updated_at: str  # ISO 8601 UTC
    email: str | None = None

    @classmethod
    def new(
        cls,
        org_name: str,
        user_id: str,
        role: MemberRole | str = MemberRole.MEMBER,
        *,
        email: str | None = None,
    ) -> Membership:
        keys.membership_key(org_name, user_id)
        now = timestamp()
        return cls(
            user_id=user_id.strip(),
            org_name=org_name.strip(),
            role=MemberRole.parse(role),
            joined_at=now,
            updated_at=now,
            email=email,
        )

    @property
    def is_admin(self) -> bool:
        return self.role is MemberRole.ADMIN

    @property
    def pk(self) -> str:
        return keys.user_pk(self.user_id)

    @property
    def sk(self) -> str:
        return keys.org_pk(self.org_name)

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            **keys.membership_key(self.org_name, self.user_id),
            **keys.membership_index_keys(self.org_name, self.user_id),
            "type": MEMBERSHIP_TYPE,
            "userId": self.user_id,
            "orgName": self.org_name,
            "role": self.role.value,
            "joinedAt": self.joined_at,
            "updatedAt": self.updated_at,
        }
        if self.email is not None:
            item["email"] = self.email
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> Membership:
        return cls(
            user_id=str(item.get("userId", "")),
            org_name=str(item.get("orgName", "")),
            role=MemberRole.parse(item.get("role")),
            joined_at=str(item.get("joinedAt", "")),
            updated_at=str(item.get("updatedAt", "")),
            email=_opt_str(item.get("email")),
        )
