"""
org_access.resolver — Fresh presigned logo URLs for organization records.

Resolution order:
  1. logo_s3_key set      -> presign the key.
  2. only logo_url set    -> recover the object key from the URL path, presign
                             it, and backfill logo_s3_key in the background.
  3. neither              -> record returned unchanged.

Every failure here is soft: it is logged and the previous logo_url is kept.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from typing import Protocol
from urllib.parse import unquote, urlparse

from aws_lambda_powertools import Logger

from org_access.models import Organization

logger = Logger(service="org-access")

KeyRecoveredCallback = Callable[[str, str], None]


class UrlSigner(Protocol):
    def presign(self, key: str) -> str: ...


def _run_on_daemon_thread(task: Callable[[], None]) -> None:
    thread = threading.Thread(target=task, daemon=True, name="org-logo-key-backfill")
    thread.start()


def extract_object_key(url: str | None, *, bucket: str | None = None) -> str | None:
    """Recover an S3 object key from a previously issued URL.

    Handles virtual-hosted URLs (bucket in the host) and path-style URLs
    (bucket as the first path segment).  Returns None when nothing usable
    can be recovered.
    """
    if not url or not url.strip():
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    key = unquote(parsed.path.lstrip("/"))
    if bucket and not parsed.netloc.startswith(f"{bucket}.") and key.startswith(f"{bucket}/"):
        key = key[len(bucket) + 1 :]
    return key or None


class LogoUrlResolver:
    """Regenerates time-limited logo URLs.  resolve() never raises."""

    def __init__(
        self,
        signer: UrlSigner,
        *,
        bucket: str | None = None,
        run_detached: Callable[[Callable[[], None]], None] = _run_on_daemon_thread,
    ) -> None:
        self._signer = signer
        self._bucket = bucket
        self._run_detached = run_detached

    def resolve(
        self,
        org: Organization,
        *,
        on_key_recovered: KeyRecoveredCallback | None = None,
    ) -> Organization:
        if org.logo_s3_key:
            return self._refresh_from_key(org)
        if org.logo_url:
            return self._recover_from_url(org, on_key_recovered)
        return org

    def _refresh_from_key(self, org: Organization) -> Organization:
        key = org.logo_s3_key or ""
        try:
            url = self._signer.presign(key)
        except Exception:
            logger.warning(
                "Logo URL refresh failed; keeping stored URL",
                org_name=org.name,
                logo_s3_key=key,
                exc_info=True,
            )
            return org
        logger.debug("Refreshed logo URL", org_name=org.name)
        return dataclasses.replace(org, logo_url=url)

    def _recover_from_url(
        self,
        org: Organization,
        on_key_recovered: KeyRecoveredCallback | None,
    ) -> Organization:
        key = extract_object_key(org.logo_url, bucket=self._bucket)
        if key is None:
            logger.warning(
                "Could not recover logo key from stored URL; keeping it",
                org_name=org.name,
            )
            return org

        try:
            url = self._signer.presign(key)
        except Exception:
            logger.warning(
                "Logo URL refresh from recovered key failed; keeping legacy URL",
                org_name=org.name,
                logo_s3_key=key,
                exc_info=True,
            )
            return org

        if on_key_recovered is not None:
            self._persist_detached(org.name, key, on_key_recovered)
        logger.info("Recovered logo key from legacy URL", org_name=org.name)
        return dataclasses.replace(org, logo_url=url, logo_s3_key=key)

    def _persist_detached(self, name: str, key: str, callback: KeyRecoveredCallback) -> None:
        def _persist() -> None:
            try:
                callback(name, key)
            except Exception:
                logger.exception(
                    "Failed to persist recovered logo key",
                    org_name=name,
                    logo_s3_key=key,
                )

        try:
            self._run_detached(_persist)
        except Exception:
            logger.exception("Could not schedule logo key backfill", org_name=name)
