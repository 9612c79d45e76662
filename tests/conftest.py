from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import boto3
import pytest
from moto import mock_aws

from org_access.client import SingleTableClient
from org_access.exceptions import SigningError
from org_access.resolver import LogoUrlResolver
from org_access.store import OrganizationStore

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REGION = "eu-west-2"
TABLE_NAME = "photocomp-table"
GSI1_INDEX = "GSI1PK-GSI1SK-INDEX"
BUCKET = "photocomp-logos"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSigner:
    """Deterministic stand-in for S3LogoSigner."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail = False

    def presign(self, key: str) -> str:
        self.calls.append(key)
        if self.fail:
            raise SigningError(key, "credentials unavailable")
        base = f"https://{BUCKET}.s3.{REGION}.amazonaws.com/{key}"
        return f"{base}?X-Amz-Expires=3600&sig={len(self.calls)}"


class InlineRunner:
    """Runs detached tasks immediately so tests can observe their effects."""

    def __init__(self) -> None:
        self.tasks: list[Callable[[], None]] = []

    def __call__(self, task: Callable[[], None]) -> None:
        self.tasks.append(task)
        task()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set minimal AWS env vars required by the library and moto."""
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")


def create_org_table(dynamodb: Any) -> Any:
    return dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
            {"AttributeName": "GSI1PK", "AttributeType": "S"},
            {"AttributeName": "GSI1SK", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": GSI1_INDEX,
                "KeySchema": [
                    {"AttributeName": "GSI1PK", "KeyType": "HASH"},
                    {"AttributeName": "GSI1SK", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def dynamodb() -> Iterator[Any]:
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name=REGION)
        create_org_table(resource)
        yield resource


@pytest.fixture
def raw_table(dynamodb: Any) -> Any:
    return dynamodb.Table(TABLE_NAME)


@pytest.fixture
def table_client(dynamodb: Any) -> SingleTableClient:
    return SingleTableClient(TABLE_NAME, dynamodb_resource=dynamodb)


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def runner() -> InlineRunner:
    return InlineRunner()


@pytest.fixture
def resolver(signer: FakeSigner, runner: InlineRunner) -> LogoUrlResolver:
    return LogoUrlResolver(signer, bucket=BUCKET, run_detached=runner)


@pytest.fixture
def store(table_client: SingleTableClient, resolver: LogoUrlResolver) -> OrganizationStore:
    return OrganizationStore(table_client, resolver, gsi1_index_name=GSI1_INDEX)
