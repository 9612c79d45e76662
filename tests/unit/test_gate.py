import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from org_access import gate as gate_module
from org_access.exceptions import DenialReason, Forbidden, InvalidInput, StorageError
from org_access.gate import CallerIdentity, OrgAuthorizer, org_name_from_params
from org_access.models import MemberRole, Membership, Organization
from org_access.store import OrganizationStore

CALLER = CallerIdentity(user_id="u-1", email="u1@acme.example")


class FakeStore:
    def __init__(self) -> None:
        self.memberships: dict[tuple[str, str], Membership] = {}
        self.lookups: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def grant(self, org_name: str, user_id: str, role: MemberRole) -> None:
        self.memberships[(org_name.upper(), user_id)] = Membership.new(org_name, user_id, role)

    def get_membership(self, name: str, user_id: str) -> Membership | None:
        self.lookups.append((name, user_id))
        if self.error is not None:
            raise self.error
        return self.memberships.get((name.upper(), user_id))


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def mock_cw() -> MagicMock:
    return MagicMock()


@pytest.fixture
def gate(fake_store: FakeStore, mock_cw: MagicMock) -> OrgAuthorizer:
    return OrgAuthorizer(fake_store, cloudwatch_client=mock_cw)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Route parameter aliases
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "params, expected",
    [
        ({"orgId": "Acme"}, "Acme"),
        ({"id": "Acme"}, "Acme"),
        ({"orgId": "Acme", "id": "Other"}, "Acme"),
        ({"orgId": "  ", "id": "Acme"}, "Acme"),
        ({"orgId": " Acme "}, "Acme"),
        ({}, None),
        ({"userId": "u-1"}, None),
        (None, None),
    ],
)
def test_org_name_from_params(params, expected):
    assert org_name_from_params(params) == expected


# ---------------------------------------------------------------------------
# Member check
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("alias", ["orgId", "id"])
def test_member_allowed_under_either_alias(gate, fake_store, alias):
    fake_store.grant("Acme", "u-1", MemberRole.MEMBER)
    membership = gate.require_member({alias: "acme"}, CALLER)
    assert membership.role is MemberRole.MEMBER
    assert fake_store.lookups == [("acme", "u-1")]


def test_admin_passes_member_check(gate, fake_store):
    fake_store.grant("Acme", "u-1", MemberRole.ADMIN)
    assert gate.require_member({"orgId": "Acme"}, CALLER).is_admin


def test_non_member_forbidden(gate, mock_cw):
    with pytest.raises(Forbidden) as exc_info:
        gate.require_member({"orgId": "Acme"}, CALLER)
    exc = exc_info.value
    assert exc.reason is DenialReason.NOT_A_MEMBER
    assert exc.code == "NOT_ORG_MEMBER"
    assert exc.status_code == 403
    assert exc.org_name == "Acme"
    assert exc.user_id == "u-1"
    mock_cw.put_metric_data.assert_called_once()


def test_member_check_missing_org_is_bad_request(gate, fake_store):
    with pytest.raises(InvalidInput) as exc_info:
        gate.require_member({}, CALLER)
    assert exc_info.value.status_code == 400
    assert fake_store.lookups == []


# ---------------------------------------------------------------------------
# Admin check
# ---------------------------------------------------------------------------


def test_admin_allowed(gate, fake_store, mock_cw):
    fake_store.grant("Acme", "u-1", MemberRole.ADMIN)
    assert gate.require_admin({"id": "Acme"}, CALLER).is_admin
    mock_cw.put_metric_data.assert_not_called()


def test_member_without_admin_role_forbidden(gate, fake_store):
    fake_store.grant("Acme", "u-1", MemberRole.MEMBER)
    with pytest.raises(Forbidden) as exc_info:
        gate.require_admin({"orgId": "Acme"}, CALLER)
    assert exc_info.value.reason is DenialReason.NOT_AN_ADMIN
    assert exc_info.value.code == "NOT_ORG_ADMIN"
    assert "Only an Org Admin" in str(exc_info.value)


def test_admin_check_non_member_distinct_from_wrong_role(gate, fake_store):
    with pytest.raises(Forbidden) as no_relationship:
        gate.require_admin({"orgId": "Acme"}, CALLER)
    fake_store.grant("Acme", "u-1", MemberRole.MEMBER)
    with pytest.raises(Forbidden) as wrong_role:
        gate.require_admin({"orgId": "Acme"}, CALLER)
    assert no_relationship.value.reason is DenialReason.NOT_A_MEMBER
    assert wrong_role.value.reason is DenialReason.NOT_AN_ADMIN
    assert str(no_relationship.value) != str(wrong_role.value)


def test_admin_check_missing_org_is_bad_request(gate, fake_store):
    with pytest.raises(InvalidInput) as exc_info:
        gate.require_admin({"orgId": "", "eventId": "e-1"}, CALLER)
    assert "missing" in str(exc_info.value)
    assert not isinstance(exc_info.value, Forbidden)
    assert fake_store.lookups == []


def test_membership_in_other_org_does_not_count(gate, fake_store):
    fake_store.grant("Other", "u-1", MemberRole.ADMIN)
    with pytest.raises(Forbidden):
        gate.require_admin({"orgId": "Acme"}, CALLER)


# ---------------------------------------------------------------------------
# Storage errors propagate unchanged
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("check", ["require_member", "require_admin"])
def test_storage_error_not_masked(gate, fake_store, mock_cw, check):
    error = StorageError("get_membership", "throttled")
    fake_store.error = error
    with pytest.raises(StorageError) as exc_info:
        getattr(gate, check)({"orgId": "Acme"}, CALLER)
    assert exc_info.value is error
    mock_cw.put_metric_data.assert_not_called()


# ---------------------------------------------------------------------------
# Denial metric
# ---------------------------------------------------------------------------


def test_denial_metric_carries_reason(gate, fake_store, mock_cw):
    fake_store.grant("Acme", "u-1", MemberRole.MEMBER)
    with pytest.raises(Forbidden):
        gate.require_admin({"orgId": "Acme"}, CALLER)
    kwargs = mock_cw.put_metric_data.call_args.kwargs
    assert kwargs["Namespace"] == "photocomp/security"
    metric = kwargs["MetricData"][0]
    assert metric["MetricName"] == "OrgAccessDenied"
    assert metric["Dimensions"] == [{"Name": "reason", "Value": "not_admin"}]


def test_metric_failure_does_not_mask_forbidden(gate, mock_cw):
    mock_cw.put_metric_data.side_effect = Exception("CW unavailable")
    with pytest.raises(Forbidden):
        gate.require_member({"orgId": "Acme"}, CALLER)


def test_no_cloudwatch_client_still_denies(fake_store):
    gate = OrgAuthorizer(fake_store)  # type: ignore[arg-type]
    with pytest.raises(Forbidden):
        gate.require_member({"orgId": "Acme"}, CALLER)


def test_denial_logged_with_structured_fields(gate, fake_store, monkeypatch):
    logger = MagicMock()
    monkeypatch.setattr(gate_module, "logger", logger)
    fake_store.grant("Acme", "u-1", MemberRole.MEMBER)
    with pytest.raises(Forbidden):
        gate.require_admin({"orgId": "Acme"}, CALLER)
    logger.warning.assert_called_once_with(
        "Organization access denied",
        org_name="Acme",
        user_id="u-1",
        reason="not_admin",
    )


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------


def test_forbidden_response_shape(gate):
    with pytest.raises(Forbidden) as exc_info:
        gate.require_member({"orgId": "Acme"}, CALLER)
    response = exc_info.value.to_response()
    assert response["statusCode"] == 403
    body = json.loads(response["body"])
    assert body["error"]["code"] == "NOT_ORG_MEMBER"
    assert body["error"]["message"] == "You are not a member of this organization"


# ---------------------------------------------------------------------------
# CallerIdentity
# ---------------------------------------------------------------------------


def _event(authorizer: Any) -> dict[str, Any]:
    return {"requestContext": {"authorizer": authorizer}}


def test_caller_from_rest_authorizer():
    caller = CallerIdentity.from_event(_event({"sub": "u-1", "email": "u1@acme.example"}))
    assert caller == CALLER


def test_caller_from_http_api_lambda_authorizer():
    caller = CallerIdentity.from_event(_event({"lambda": {"userId": "u-2"}}))
    assert caller.user_id == "u-2"
    assert caller.email is None


def test_user_id_preferred_over_sub():
    caller = CallerIdentity.from_event(_event({"userId": "u-3", "sub": "cognito-sub"}))
    assert caller.user_id == "u-3"


@pytest.mark.parametrize("event", [{}, _event(None), _event({"email": "x@y.z"}), _event("bad")])
def test_caller_missing_identity(event):
    with pytest.raises(InvalidInput):
        CallerIdentity.from_event(event)


# ---------------------------------------------------------------------------
# Against the real store
# ---------------------------------------------------------------------------


def test_gate_over_moto_store(store: OrganizationStore):
    gate = OrgAuthorizer(store)
    store.create_organization(Organization.new("Acme", "U1"))
    store.create_membership(Membership.new("Acme", "U1", MemberRole.ADMIN))
    store.create_membership(Membership.new("Acme", "U2", MemberRole.MEMBER))

    assert gate.require_admin({"id": "ACME"}, CallerIdentity("U1")).is_admin
    assert gate.require_member({"orgId": "acme"}, CallerIdentity("U2")).role is MemberRole.MEMBER
    with pytest.raises(Forbidden):
        gate.require_admin({"orgId": "Acme"}, CallerIdentity("U2"))

    store.remove_member("Acme", "U2")
    with pytest.raises(Forbidden) as exc_info:
        gate.require_member({"orgId": "Acme"}, CallerIdentity("U2"))
    assert exc_info.value.reason is DenialReason.NOT_A_MEMBER
