"""
org_access.store — OrganizationStore over the single organization table.

Lookups return None / [] for absent items; mutations raise the typed errors
from org_access.exceptions.  Organizations leaving the store always pass
through the LogoUrlResolver so their logo_url is freshly signed.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable
from typing import Any

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key

from org_access import keys, models
from org_access.client import SingleTableClient
from org_access.exceptions import AlreadyExists, ConditionalCheckFailed, NoFieldsProvided, NotFound
from org_access.models import (
    PUBLIC_PAGE_SIZE,
    MemberRole,
    Membership,
    Organization,
    OrganizationPage,
    OrganizationUpdate,
)
from org_access.resolver import LogoUrlResolver

logger = Logger(service="org-access")

_ITEM_EXISTS = "attribute_exists(PK) AND attribute_exists(SK)"
_ITEM_ABSENT = "attribute_not_exists(PK)"


# ---------------------------------------------------------------------------
# Cursor helpers — keyset pagination over GSI1
# ---------------------------------------------------------------------------


def usable_cursor(cursor: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return the cursor if it carries every key attribute, else None."""
    if not isinstance(cursor, dict):
        return None
    if not all(cursor.get(attr) for attr in keys.CURSOR_ATTRIBUTES):
        return None
    return {attr: cursor[attr] for attr in keys.CURSOR_ATTRIBUTES}


def encode_cursor(cursor: dict[str, Any] | None) -> str | None:
    """Opaque url-safe token for a LastEvaluatedKey."""
    if cursor is None:
        return None
    raw = json.dumps(cursor, sort_keys=True, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_cursor(token: str | None) -> dict[str, Any] | None:
    """Inverse of encode_cursor.  Malformed tokens mean "start from the beginning"."""
    if not token:
        return None
    try:
        decoded = json.loads(base64.urlsafe_b64decode(token.encode()))
    except (binascii.Error, ValueError):
        return None
    return usable_cursor(decoded)


# ---------------------------------------------------------------------------
# Partial update builder
# ---------------------------------------------------------------------------


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


class UpdateBuilder:
    """Accumulates SET clauses for fields that are defined and non-blank."""

    def __init__(self) -> None:
        self._attributes: dict[str, Any] = {}

    def add_if_present(self, field: str, value: Any) -> UpdateBuilder:
        if _present(value):
            self._attributes[field] = value
        return self

    def add(self, field: str, value: Any) -> UpdateBuilder:
        self._attributes[field] = value
        return self

    @property
    def fields(self) -> list[str]:
        return list(self._attributes)

    def __bool__(self) -> bool:
        return bool(self._attributes)

    def build(self) -> tuple[str, dict[str, str], dict[str, Any]]:
        if not self._attributes:
            raise NoFieldsProvided()
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        set_parts: list[str] = []
        for idx, (field, value) in enumerate(self._attributes.items(), start=1):
            name_key = f"#n{idx}"
            value_key = f":v{idx}"
            names[name_key] = field
            values[value_key] = value
            set_parts.append(f"{name_key} = {value_key}")
        return "SET " + ", ".join(set_parts), names, values


# ---------------------------------------------------------------------------
# OrganizationStore
# ---------------------------------------------------------------------------


class OrganizationStore:
    """
    Persistence for organizations and user<->organization relationships.

    Constructed once per process and passed to the gate and handlers.
    """

    def __init__(
        self,
        table: SingleTableClient,
        resolver: LogoUrlResolver,
        *,
        gsi1_index_name: str,
    ) -> None:
        self._table = table
        self._resolver = resolver
        self._gsi1 = gsi1_index_name

    # -- organizations -------------------------------------------------------

    def create_organization(self, org: Organization) -> Organization:
        """Insert org; AlreadyExists if an organization with that name exists."""
        try:
            self._table.put_item(
                org.to_item(),
                operation="create_organization",
                condition_expression=_ITEM_ABSENT,
            )
        except ConditionalCheckFailed as exc:
            raise AlreadyExists("Organization already exists!") from exc
        logger.info("Organization created", org_name=org.name, org_id=org.org_id)
        return org

    def get_organization_by_name(self, name: str) -> Organization | None:
        item = self._table.get_item(keys.org_key(name), operation="get_organization_by_name")
        if item is None:
            return None
        return self._resolve(Organization.from_item(item))

    def list_organizations_by_user(self, user_id: str) -> list[Organization]:
        """Organizations the user belongs to, in membership sort-key order."""
        relationships = self._table.query_all(
            Key("PK").eq(keys.user_pk(user_id)) & Key("SK").begins_with(keys.ORG_PREFIX),
            operation="list_organizations_by_user",
        )
        if not relationships:
            return []

        org_keys = [{"PK": rel["SK"], "SK": keys.ENTITY_SORT_KEY} for rel in relationships]
        items = self._table.batch_get(org_keys, operation="list_organizations_by_user")
        by_pk = {item["PK"]: item for item in items}

        orgs: list[Organization] = []
        for rel in relationships:
            item = by_pk.get(rel["SK"])
            if item is None:
                logger.warning(
                    "Membership references a missing organization",
                    user_id=user_id,
                    org_pk=rel["SK"],
                )
                continue
            orgs.append(Organization.from_item(item))
        return self._resolve_all(orgs)

    def list_public_organizations(self, cursor: dict[str, Any] | None = None) -> OrganizationPage:
        """One page (PUBLIC_PAGE_SIZE) of all organizations, ordered by name key.

        A cursor missing any of PK/SK/GSI1PK/GSI1SK starts from the beginning.
        """
        items, last_key = self._table.query(
            Key("GSI1PK").eq(keys.ORG_LISTING_PARTITION)
            & Key("GSI1SK").begins_with(keys.ORG_PREFIX),
            operation="list_public_organizations",
            index_name=self._gsi1,
            limit=PUBLIC_PAGE_SIZE,
            exclusive_start_key=usable_cursor(cursor),
        )
        orgs = self._resolve_all(Organization.from_item(item) for item in items)
        return OrganizationPage(organizations=orgs, cursor=last_key or None)

    def update_organization(self, update: OrganizationUpdate) -> Organization:
        """Merge the non-blank fields of update into the stored organization.

        Raises NoFieldsProvided (without writing) when nothing qualifies and
        NotFound when the organization does not exist.
        """
        builder = UpdateBuilder()
        for field, value in update.attributes().items():
            builder.add_if_present(field, value)
        if not builder:
            raise NoFieldsProvided()
        builder.add("updatedAt", models.timestamp())

        expression, names, values = builder.build()
        try:
            attributes = self._table.update_item(
                keys.org_key(update.name),
                expression,
                values,
                operation="update_organization",
                expression_attribute_names=names,
                condition_expression=_ITEM_EXISTS,
            )
        except ConditionalCheckFailed as exc:
            raise NotFound("Organization not found") from exc
        logger.info(
            "Organization updated",
            org_name=update.name,
            fields=builder.fields,
        )
        return self._resolve(Organization.from_item(attributes))

    def save_logo_key(self, name: str, logo_s3_key: str) -> None:
        """Backfill logoS3Key on an existing organization."""
        self._write_logo_key(self._table, name, logo_s3_key)

    def _backfill_logo_key(self, name: str, logo_s3_key: str) -> None:
        """save_logo_key for detached tasks; writes through a separate client."""
        self._write_logo_key(self._table.for_new_thread(), name, logo_s3_key)

    def _write_logo_key(self, table: SingleTableClient, name: str, logo_s3_key: str) -> None:
        try:
            table.update_item(
                keys.org_key(name),
                "SET #key = :key",
                {":key": logo_s3_key},
                operation="save_logo_key",
                expression_attribute_names={"#key": "logoS3Key"},
                condition_expression=_ITEM_EXISTS,
            )
        except ConditionalCheckFailed as exc:
            raise NotFound("Organization not found") from exc
        logger.info("Stored recovered logo key", org_name=name)

    # -- memberships ---------------------------------------------------------

    def create_membership(self, membership: Membership) -> Membership:
        """Upsert the relationship item (initial admin grant, member adds)."""
        self._table.put_item(membership.to_item(), operation="create_membership")
        logger.info(
            "Membership granted",
            org_name=membership.org_name,
            user_id=membership.user_id,
            role=membership.role.value,
        )
        return membership

    def get_membership(self, name: str, user_id: str) -> Membership | None:
        item = self._table.get_item(keys.membership_key(name, user_id), operation="get_membership")
        if item is None:
            return None
        return Membership.from_item(item)

    def list_members(self, name: str) -> list[Membership]:
        items = self._table.query_all(
            Key("GSI1PK").eq(keys.org_pk(name)) & Key("GSI1SK").begins_with(keys.USER_PREFIX),
            operation="list_members",
            index_name=self._gsi1,
        )
        return [Membership.from_item(item) for item in items]

    def remove_member(self, name: str, user_id: str) -> None:
        """Idempotent: removing a non-member is not an error."""
        self._table.delete_item(keys.membership_key(name, user_id), operation="remove_member")
        logger.info("Membership removed", org_name=name, user_id=user_id)

    def update_member_role(self, name: str, user_id: str, role: MemberRole | str) -> Membership:
        new_role = MemberRole.parse(role)
        try:
            attributes = self._table.update_item(
                keys.membership_key(name, user_id),
                "SET #role = :role, #updated = :updated",
                {":role": new_role.value, ":updated": models.timestamp()},
                operation="update_member_role",
                expression_attribute_names={"#role": "role", "#updated": "updatedAt"},
                condition_expression=_ITEM_EXISTS,
            )
        except ConditionalCheckFailed as exc:
            raise NotFound("Member not found") from exc
        logger.info(
            "Member role changed",
            org_name=name,
            user_id=user_id,
            role=new_role.value,
        )
        return Membership.from_item(attributes)

    # -- logo resolution -----------------------------------------------------

    def _resolve(self, org: Organization) -> Organization:
        return self._resolver.resolve(org, on_key_recovered=self._backfill_logo_key)

    def _resolve_all(self, orgs: Iterable[Organization]) -> list[Organization]:
        resolved: list[Organization] = []
        for org in orgs:
            try:
                resolved.append(self._resolve(org))
            except Exception:
                logger.exception(
                    "Logo resolution failed; returning record as stored",
                    org_name=org.name,
                )
                resolved.append(org)
        return resolved
