"""
org_access.gate — Per-request organization authorization.

The caller identity is trusted: it was verified upstream by the API Gateway
authoriser and arrives in requestContext.authorizer.  The gate only decides
whether that caller may act on the organization named in the route.

Route parameters use either `orgId` or `id` for the organization name
depending on the router; org_name_from_params normalizes both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NoReturn

from aws_lambda_powertools import Logger

from org_access.exceptions import DenialReason, Forbidden, InvalidInput
from org_access.models import MemberRole, Membership
from org_access.store import OrganizationStore

logger = Logger(service="org-access")

ORG_PARAM_ALIASES: tuple[str, ...] = ("orgId", "id")

_NOT_A_MEMBER_MESSAGE = "You are not a member of this organization"
_NOT_AN_ADMIN_MESSAGE = (
    "Only an Org Admin can perform this action. "
    "Please talk to your Admin for more information"
)
_MISSING_ORG_MESSAGE = "Organization ID is missing in request parameters"


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    email: str | None = None

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> CallerIdentity:
        """Read the authoriser context of a REST or HTTP API proxy event."""
        authorizer = (event.get("requestContext") or {}).get("authorizer")
        if not isinstance(authorizer, dict):
            authorizer = {}
        if isinstance(authorizer.get("lambda"), dict):
            authorizer = authorizer["lambda"]
        user_id = _str_or_none(authorizer.get("userId") or authorizer.get("sub"))
        if user_id is None:
            raise InvalidInput("Authenticated user id missing from request context")
        return cls(user_id=user_id, email=_str_or_none(authorizer.get("email")))


def org_name_from_params(params: dict[str, Any] | None) -> str | None:
    """First non-blank organization alias in the route parameters."""
    if not isinstance(params, dict):
        return None
    for alias in ORG_PARAM_ALIASES:
        name = _str_or_none(params.get(alias))
        if name is not None:
            return name
    return None


def _emit_access_denied_metric(cloudwatch_client: Any, *, reason: DenialReason) -> None:
    """Count a denial in CloudWatch.  Never raises."""
    try:
        cloudwatch_client.put_metric_data(
            Namespace="photocomp/security",
            MetricData=[
                {
                    "MetricName": "OrgAccessDenied",
                    "Value": 1,
                    "Unit": "Count",
                    "Dimensions": [{"Name": "reason", "Value": reason.value}],
                }
            ],
        )
    except Exception:
        logger.exception("Failed to emit OrgAccessDenied metric", reason=reason.value)


class OrgAuthorizer:
    """
    Member / admin checks for organization-scoped routes.

    Both checks are read-only.  StorageError from the store propagates
    unchanged; it is never reported as a denial.
    """

    def __init__(self, store: OrganizationStore, *, cloudwatch_client: Any = None) -> None:
        self._store = store
        self._cloudwatch = cloudwatch_client

    def require_member(self, params: dict[str, Any] | None, caller: CallerIdentity) -> Membership:
        return self._require(params, caller, MemberRole.MEMBER)

    def require_admin(self, params: dict[str, Any] | None, caller: CallerIdentity) -> Membership:
        return self._require(params, caller, MemberRole.ADMIN)

    def _require(
        self,
        params: dict[str, Any] | None,
        caller: CallerIdentity,
        required: MemberRole,
    ) -> Membership:
        org_name = org_name_from_params(params)
        if org_name is None:
            raise InvalidInput(_MISSING_ORG_MESSAGE)

        membership = self._store.get_membership(org_name, caller.user_id)
        if membership is None:
            self._deny(org_name, caller, DenialReason.NOT_A_MEMBER, _NOT_A_MEMBER_MESSAGE)
        elif not membership.role.grants(required):
            self._deny(org_name, caller, DenialReason.NOT_AN_ADMIN, _NOT_AN_ADMIN_MESSAGE)
        return membership

    def _deny(
        self,
        org_name: str,
        caller: CallerIdentity,
        reason: DenialReason,
        message: str,
    ) -> NoReturn:
        """Log, count, then raise Forbidden.  Never returns."""
        logger.warning(
            "Organization access denied",
            org_name=org_name,
            user_id=caller.user_id,
            reason=reason.value,
        )
        if self._cloudwatch is not None:
            _emit_access_denied_metric(self._cloudwatch, reason=reason)
        raise Forbidden(message, reason=reason, org_name=org_name, user_id=caller.user_id)
