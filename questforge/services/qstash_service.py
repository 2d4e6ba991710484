"""
questforge/services/qstash_service.py
-------------------------------------
Thin wrapper around the Upstash QStash publish API.

QStash POSTs the JSON body to the destination URL at least once. Publishing
twice with the same deduplication id inside QStash's dedup window is a no-op.

Import
------
    from questforge.services.qstash_service import QStashService

    svc = QStashService()
    svc.publish_json(url, {"jobId": job_id}, deduplication_id=job_id)
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx

from questforge.services.errors import QueuePublishError

logger = logging.getLogger(__name__)

QSTASH_DEFAULT_URL = "https://qstash.upstash.io"


class QueuePublisher(Protocol):
    def publish_json(
        self, url: str, body: Dict[str, Any], deduplication_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ...


class QStashService:
    """Publishes JSON messages to QStash."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.token = token or os.environ.get("QSTASH_TOKEN", "")
        self.base_url = (base_url or os.environ.get("QSTASH_URL") or QSTASH_DEFAULT_URL).rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    def publish_json(
        self,
        url: str,
        body: Dict[str, Any],
        deduplication_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.is_configured:
            raise QueuePublishError("QSTASH_TOKEN is not set")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        if deduplication_id:
            headers["Upstash-Deduplication-Id"] = deduplication_id

        endpoint = f"{self.base_url}/v2/publish/{quote(url, safe='')}"
        try:
            resp = httpx.post(endpoint, headers=headers, json=body, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise QueuePublishError(f"QStash publish failed: {e}") from e

        if resp.status_code >= 400:
            raise QueuePublishError(f"QStash publish failed ({resp.status_code}): {resp.text}")

        try:
            return resp.json()
        except ValueError:
            return {}
