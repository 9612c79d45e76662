"""
org_access.client — SingleTableClient and S3LogoSigner.

Thin wrappers over the boto3 DynamoDB Table resource and S3 client.  These
are the only places that touch boto3 errors:

  - DynamoDB: ConditionalCheckFailedException becomes ConditionalCheckFailed;
    any other ClientError/BotoCoreError becomes StorageError(operation, ...).
  - S3: presigning failures become SigningError (soft, handled by the resolver).
"""

from __future__ import annotations

import os
import random
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import ConditionBase
from botocore.exceptions import BotoCoreError, ClientError

from org_access.exceptions import ConditionalCheckFailed, SigningError, StorageError

logger = Logger(service="org-access")

_CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
_BATCH_GET_MAX_KEYS = 100
_BATCH_GET_MAX_ATTEMPTS = 5
_BATCH_GET_BASE_DELAY_SECONDS = 0.05
_BATCH_GET_MAX_DELAY_SECONDS = 2.0


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate boto errors raised inside the block into StorageError."""
    try:
        yield
    except ClientError as exc:
        error = exc.response.get("Error", {})
        code = error.get("Code", "Unknown")
        if code == _CONDITIONAL_CHECK_FAILED:
            raise ConditionalCheckFailed(operation, error.get("Message", code)) from exc
        logger.error(
            "DynamoDB call failed",
            operation=operation,
            error_code=code,
        )
        raise StorageError(operation, f"{code}: {error.get('Message', '')}") from exc
    except BotoCoreError as exc:
        logger.error("DynamoDB call failed", operation=operation, error=str(exc))
        raise StorageError(operation, str(exc)) from exc


def _backoff_delay(attempt: int) -> float:
    """Exponential backoff with full jitter: uniform over [0, base * 2**attempt], capped."""
    ceiling = min(_BATCH_GET_MAX_DELAY_SECONDS, _BATCH_GET_BASE_DELAY_SECONDS * (2**attempt))
    return random.uniform(0, ceiling)


# ---------------------------------------------------------------------------
# SingleTableClient
# ---------------------------------------------------------------------------


class SingleTableClient:
    """
    DynamoDB access to the organization table and its GSI.

    Every method takes an `operation` label used in StorageError so the
    caller can tell which store call failed.
    """

    def __init__(
        self,
        table_name: str,
        *,
        dynamodb_resource: Any = None,
        region: str | None = None,
    ) -> None:
        self._table_name = table_name
        self._dynamodb: Any = dynamodb_resource or boto3.resource(
            "dynamodb", region_name=region or os.environ["AWS_REGION"]
        )
        self._table: Any = self._dynamodb.Table(table_name)

    @property
    def table_name(self) -> str:
        return self._table_name

    def for_new_thread(self) -> SingleTableClient:
        """A client on its own boto3 session, for use from a background thread.

        boto3 resources are not thread-safe; a detached task must not share
        the request thread's Table.
        """
        region = self._dynamodb.meta.client.meta.region_name
        session = boto3.session.Session()
        return SingleTableClient(
            self._table_name,
            dynamodb_resource=session.resource("dynamodb",
            region_name=region),
        )

    def get_item(self, key: dict[str, Any], *, operation: str) -> dict[str, Any] | None:
        """Returns the item dict, or None if the item does not exist."""
        with _storage_errors(operation):
            response = self._table.get_item(Key=key)
        return response.get("Item")

    def put_item(
        self,
        item: dict[str, Any],
        *,
        operation: str,
        condition_expression: str | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {"Item": item}
        if condition_expression is not None:
            kwargs["ConditionExpression"] = condition_expression
        with _storage_errors(operation):
            self._table.put_item(**kwargs)

    def update_item(
        self,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        *,
        operation: str,
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        """Update an item and return its attributes after the update (ALL_NEW)."""
        kwargs: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names is not None:
            kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression is not None:
            kwargs["ConditionExpression"] = condition_expression
        with _storage_errors(operation):
            response = self._table.update_item(**kwargs)
        return response.get("Attributes", {})

    def delete_item(self, key: dict[str, Any], *, operation: str) -> None:
        with _storage_errors(operation):
            self._table.delete_item(Key=key)

    def query(
        self,
        key_condition: ConditionBase,
        *,
        operation: str,
        index_name: str | None = None,
        limit: int | None = None,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
        """Run one query page.

        Returns (items, last_evaluated_key); last_evaluated_key is None when
        the query is exhausted.
        """
        kwargs: dict[str, Any] = {"KeyConditionExpression": key_condition}
        if index_name is not None:
            kwargs["IndexName"] = index_name
        if limit is not None:
            kwargs["Limit"] = limit
        if exclusive_start_key is not None:
            kwargs["ExclusiveStartKey"] = exclusive_start_key
        with _storage_errors(operation):
            response = self._table.query(**kwargs)
        return response.get("Items", []), response.get("LastEvaluatedKey")

    def query_all(
        self,
        key_condition: ConditionBase,
        *,
        operation: str,
        index_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Follow LastEvaluatedKey until the query is exhausted."""
        items: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            page, start_key = self.query(
                key_condition,
                operation=operation,
                index_name=index_name,
                exclusive_start_key=start_key,
            )
            items.extend(page)
            if start_key is None:
                return items

    def batch_get(self, keys: list[dict[str, Any]], *, operation: str) -> list[dict[str, Any]]:
        """Fetch many items by primary key.  Missing items are simply absent.

        Result order is not guaranteed; callers re-order by key.
        """
        items: list[dict[str, Any]] = []
        for start in range(0, len(keys), _BATCH_GET_MAX_KEYS):
            pending: dict[str, Any] = {
                self._table_name: {"Keys": keys[start : start + _BATCH_GET_MAX_KEYS]}
            }
            attempt = 0
            while pending:
                with _storage_errors(operation):
                    response = self._dynamodb.batch_get_item(RequestItems=pending)
                items.extend(response.get("Responses", {}).get(self._table_name, []))
                pending = response.get("UnprocessedKeys") or {}
                if not pending:
                    break
                attempt += 1
                if attempt >= _BATCH_GET_MAX_ATTEMPTS:
                    raise StorageError(operation, "unprocessed keys remained after retries")
                delay = _backoff_delay(attempt)
                logger.warning(
                    "Retrying unprocessed keys",
                    operation=operation,
                    attempt=attempt,
                    backoff=delay,
                )
                time.sleep(delay)
        return items


# ---------------------------------------------------------------------------
# S3LogoSigner
# ---------------------------------------------------------------------------


class S3LogoSigner:
    """
    Produces time-limited GET URLs for objects in the logo bucket.

    Presigning is local to the SDK but can still fail (missing credentials,
    invalid parameters, bucket not configured); every such failure is raised
    as SigningError.
    """

    def __init__(
        self,
        bucket: str | None,
        *,
        expires_in: int = 3600,
        s3_client: Any = None,
        region: str | None = None,
    ) -> None:
        self._bucket = bucket
        self._expires_in = expires_in
        self._s3: Any = s3_client or boto3.client(
            "s3", region_name=region or os.environ["AWS_REGION"]
        )

    @property
    def bucket(self) -> str | None:
        return self._bucket

    @property
    def expires_in(self) -> int:
        return self._expires_in

    def presign(self, key: str) -> str:
        if not self._bucket:
            raise SigningError(key, "logo bucket is not configured")
        if not key:
            raise SigningError(key, "object key is empty")
        try:
            return self._s3.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise SigningError(key, str(exc)) from exc
