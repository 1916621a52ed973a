"""Shared HTTP client with retry/backoff and per-source stats."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)

_RETRYABLE_METHODS = {"GET", "HEAD"}


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""
    reason: str = ""
    text: str = ""


@dataclass
class HttpSourceStats:
    ok: int = 0
    fail: int = 0
    rate_limited: int = 0
    retries: int = 0
    latency_total_ms: float = 0.0
    latency_max_ms: float = 0.0
    latency_count: int = 0

    def observe_latency(self, started: float) -> None:
        elapsed_ms = max(0.0, (time.perf_counter() - started) * 1000.0)
        self.latency_total_ms += elapsed_ms
        self.latency_count += 1
        self.latency_max_ms = max(self.latency_max_ms, elapsed_ms)


class ResilientHttpClient:
    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._session: aiohttp.ClientSession | None = None
        self._stats: dict[str, HttpSourceStats] = {}

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and not session.closed:
            await session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector_limit = max(1, int(getattr(config, "HTTP_CONNECTOR_LIMIT", 10) or 10))
            connector = aiohttp.TCPConnector(limit=connector_limit)
            self._session = aiohttp.ClientSession(timeout=self._timeout, connector=connector)
        return self._session

    @staticmethod
    def _source_key(source: str) -> str:
        return str(source or "default").strip().lower() or "default"

    def _stats_row(self, source: str) -> HttpSourceStats:
        key = self._source_key(source)
        row = self._stats.get(key)
        if row is None:
            row = HttpSourceStats()
            self._stats[key] = row
        return row

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out: dict[str, dict[str, int | float]] = {}
        for source, row in self._stats.items():
            total = int(row.ok + row.fail)
            err_pct = (float(row.fail) / total * 100.0) if total > 0 else 0.0
            out[source] = {
                "ok": int(row.ok),
                "fail": int(row.fail),
                "total": total,
                "rate_limited": int(row.rate_limited),
                "retries": int(row.retries),
                "error_percent": round(err_pct, 2),
                "latency_avg_ms": round((row.latency_total_ms / row.latency_count), 2) if row.latency_count > 0 else 0.0,
                "latency_max_ms": round(float(row.latency_max_ms), 2),
            }
        if reset:
            self._stats = {}
        return out

    @staticmethod
    def _compute_delay(attempt: int, status: int, retry_after: float = 0.0) -> float:
        base = max(0.05, float(getattr(config, "HTTP_BACKOFF_BASE_SECONDS", 0.5) or 0.5))
        cap = max(base, float(getattr(config, "HTTP_BACKOFF_MAX_SECONDS", 8.0) or 8.0))
        jitter = max(0.0, float(getattr(config, "HTTP_JITTER_SECONDS", 0.25) or 0.0))
        rate_limit_bias = max(0.0, float(getattr(config, "HTTP_RATE_LIMIT_DELAY_SECONDS", 2.0) or 0.0))

        exp = min(cap, base * (2 ** max(0, attempt - 1)))
        if status == 429:
            exp = min(cap, max(exp + rate_limit_bias, retry_after))
        return max(0.01, exp + random.uniform(0.0, jitter))

    @staticmethod
    def _retry_after_seconds(response: aiohttp.ClientResponse) -> float:
        raw = (response.headers or {}).get("Retry-After", "")
        try:
            return max(0.0, float(raw)) if raw else 0.0
        except ValueError:
            return 0.0

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        source: str = "default",
        json_body: Any | None = None,
    ) -> HttpResult:
        """Issue a request and decode a JSON body.

        Only idempotent methods are retried on 429/5xx and transport errors;
        anything else gets a single attempt.
        """
        verb = str(method or "GET").strip().upper()
        attempts = max(1, int(getattr(config, "HTTP_RETRY_ATTEMPTS", 3) or 3))
        if verb not in _RETRYABLE_METHODS:
            attempts = 1

        source_key = self._source_key(source)
        stats = self._stats_row(source_key)
        for attempt in range(1, attempts + 1):
            status = 0
            retry_after = 0.0
            started = time.perf_counter()
            try:
                session = await self._get_session()
                async with session.request(verb, url, headers=self._headers, json=json_body) as response:
                    stats.observe_latency(started)
                    status = int(response.status or 0)
                    if 200 <= status < 300:
                        payload = await response.json(content_type=None)
                        stats.ok += 1
                        return HttpResult(ok=True, status=status, data=payload, reason=str(response.reason or ""))

                    retryable = status == 429 or (500 <= status <= 599)
                    if status == 429:
                        stats.rate_limited += 1
                        retry_after = self._retry_after_seconds(response)
                    if not retryable or attempt >= attempts:
                        stats.fail += 1
                        text = await response.text()
                        return HttpResult(
                            ok=False,
                            status=status,
                            data=None,
                            error=f"http_status_{status}",
                            reason=str(response.reason or ""),
                            text=text,
                        )
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                stats.observe_latency(started)
                if attempt >= attempts:
                    stats.fail += 1
                    return HttpResult(ok=False, status=status, data=None, error=f"http_error:{exc}")

            stats.retries += 1
            delay = self._compute_delay(attempt=attempt, status=status, retry_after=retry_after)
            logger.debug(
                "HTTP_RETRY source=%s method=%s attempt=%s/%s status=%s delay=%.2fs url=%s",
                source_key,
                verb,
                attempt,
                attempts,
                status,
                delay,
                url,
            )
            await asyncio.sleep(delay)

        return HttpResult(ok=False, status=0, data=None, error="http_exhausted")

    async def get_json(self, url: str, *, source: str = "default") -> HttpResult:
        return await self.request_json("GET", url, source=source)

    async def patch_json(self, url: str, payload: Any, *, source: str = "default") -> HttpResult:
        return await self.request_json("PATCH", url, source=source, json_body=payload)
