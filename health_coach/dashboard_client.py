from __future__ import annotations

import logging
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """The dashboard webhook could not be reached or rejected the payload."""


class DashboardClient:
    """Posts KPI payloads to a dashboard webhook as merge variables."""

    def __init__(self, webhook_url: str, timeout: int = 15) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    def publish(self, merge_variables: Dict[str, Any], dry_run: bool = False) -> Dict[str, Any]:
        body = {"merge_variables": merge_variables}
        if dry_run:
            return {"dry_run": True, "payload": body}

        logger.info("Publishing KPI payload to %s", self.webhook_url)
        try:
            response = requests.post(self.webhook_url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Dashboard publish failed: %s", exc)
            raise PublishError(f"Dashboard webhook failed: {exc}") from exc

        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return {"status_code": response.status_code, "body": response.text}
