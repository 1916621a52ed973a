"""Cloudflare R2 usage and access-key endpoints."""

import logging
from typing import Any

from quota.errors import AccessControllerFailure, ProviderUnavailable
from quota.extractor import extract_usage
from quota.metrics import ENABLED, normalize_toggle_state
from utils.http_client import HttpResult, ResilientHttpClient

logger = logging.getLogger(__name__)


def _failure_detail(result: HttpResult, *, with_text: bool = False) -> str:
    if not result.status:
        return result.error
    parts = [str(result.status), result.reason]
    if with_text:
        parts.append(result.text)
    if 200 <= result.status < 300:
        # Decode failures on a 2xx carry their cause only in `error`.
        parts.append(result.error)
    return " ".join(part for part in parts if part).strip()


class R2Api:
    """Metrics provider and access controller for one account and access key."""

    def __init__(
        self,
        *,
        api_base: str,
        account_id: str,
        api_token: str,
        access_key_id: str,
        timeout_seconds: float = 15.0,
        http: ResilientHttpClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.account_id = account_id
        self.access_key_id = access_key_id
        self._http = http or ResilientHttpClient(
            timeout_seconds=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    @property
    def usage_url(self) -> str:
        return f"{self.api_base}/accounts/{self.account_id}/r2/usage"

    @property
    def access_key_url(self) -> str:
        return f"{self.api_base}/accounts/{self.account_id}/r2/access_keys/{self.access_key_id}"

    async def fetch_usage_payload(self) -> Any:
        result = await self._http.get_json(self.usage_url, source="r2_usage")
        if not result.ok:
            detail = _failure_detail(result)
            raise ProviderUnavailable(f"Failed to retrieve R2 usage: {detail}")
        return result.data

    async def fetch_usage(self) -> dict[str, float | None]:
        payload = await self.fetch_usage_payload()
        return extract_usage(payload)

    async def get_status(self) -> str:
        result = await self._http.get_json(self.access_key_url, source="r2_access_key")
        if not result.ok:
            detail = _failure_detail(result)
            raise AccessControllerFailure(f"Failed to retrieve access key: {detail}")
        data = result.data if isinstance(result.data, dict) else {}
        inner = data.get("result") if isinstance(data.get("result"), dict) else {}
        status = normalize_toggle_state(inner.get("status"))
        if status is None:
            logger.debug("ACCESS_KEY_STATUS missing in response; assuming %s", ENABLED)
            return ENABLED
        return status

    async def set_status(self, status: str) -> None:
        result = await self._http.patch_json(self.access_key_url, {"status": status}, source="r2_access_key")
        if not result.ok:
            detail = _failure_detail(result, with_text=True)
            raise AccessControllerFailure(f"Failed to update access key status: {detail}")
        logger.info("ACCESS_KEY_UPDATE key=%s status=%s", self.access_key_id, status)
