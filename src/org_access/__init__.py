"""
org_access — Organization membership and access control on a single DynamoDB table.

Build the store and gate once per process with build_org_access() and pass
them to handlers; nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from org_access.client import S3LogoSigner, SingleTableClient
from org_access.config import OrgAccessConfig
from org_access.exceptions import (
    AlreadyExists,
    DenialReason,
    Forbidden,
    InvalidIdentifier,
    InvalidInput,
    NoFieldsProvided,
    NotFound,
    OrgAccessError,
    StorageError,
)
from org_access.gate import CallerIdentity, OrgAuthorizer
from org_access.models import (
    MemberRole,
    Membership,
    Organization,
    OrganizationPage,
    OrganizationUpdate,
)
from org_access.resolver import LogoUrlResolver
from org_access.store import OrganizationStore


@dataclass(frozen=True)
class OrgAccess:
    store: OrganizationStore
    authorizer: OrgAuthorizer


def build_org_access(
    config: OrgAccessConfig | None = None,
    *,
    dynamodb_resource: Any = None,
    s3_client: Any = None,
    cloudwatch_client: Any = None,
) -> OrgAccess:
    """Wire table client, signer, resolver, store and gate from config."""
    config = config or OrgAccessConfig.from_env()
    table = SingleTableClient(
        config.table_name,
        dynamodb_resource=dynamodb_resource,
        region=config.region,
    )
    signer = S3LogoSigner(
        config.logo_bucket,
        expires_in=config.logo_url_expiry_seconds,
        s3_client=s3_client,
        region=config.region,
    )
    resolver = LogoUrlResolver(signer, bucket=config.logo_bucket)
    store = OrganizationStore(table, resolver, gsi1_index_name=config.gsi1_index_name)
    authorizer = OrgAuthorizer(store, cloudwatch_client=cloudwatch_client)
    return OrgAccess(store=store, authorizer=authorizer)


__all__ = [
    "AlreadyExists",
    "CallerIdentity",
    "DenialReason",
    "Forbidden",
    "InvalidIdentifier",
    "InvalidInput",
    "MemberRole",
    "Membership",
    "NoFieldsProvided",
    "NotFound",
    "OrgAccess",
    "OrgAccessConfig",
    "OrgAccessError",
    "OrgAuthorizer",
    "Organization",
    "OrganizationPage",
    "OrganizationStore",
    "OrganizationUpdate",
    "StorageError",
    "build_org_access",
]
