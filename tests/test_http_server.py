from __future__ import annotations

import unittest

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from quota.errors import ProviderUnavailable
from quota.metrics import ENABLED, STORAGE, MetricReading
from quota.snapshot import RunResult
from service.http_server import QuotaHttpServer


class StubController:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.runs = 0

    async def run(self) -> RunResult:
        self.runs += 1
        if self.error is not None:
            raise self.error
        return RunResult(
            access_key_status=ENABLED,
            usage={"storageBytes": 10.0},
            thresholds=(MetricReading(STORAGE, usage=10.0, quota=100.0, reenable=80.0),),
            updated_at="2026-10-17T12:00:00.000Z",
            message="Keeping access key enabled. Metrics: Storage 10 B <= 80 B.",
        )


class QuotaHttpServerTests(AioHTTPTestCase):
    controller: StubController

    async def get_application(self) -> web.Application:
        self.controller = StubController()
        server = QuotaHttpServer(self.controller, host="127.0.0.1", port=0)  # type: ignore[arg-type]
        return server.build_app()

    async def test_get_returns_summary(self) -> None:
        async with self.client.request("GET", "/") as resp:
            self.assertEqual(resp.status, 200)
            self.assertEqual(resp.headers["Content-Type"].split(";")[0], "application/json")
            body = await resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["accessKeyStatus"], ENABLED)
        self.assertEqual(body["thresholds"], [{"name": STORAGE, "usage": 10.0, "quota": 100.0, "reenable": 80.0}])
        self.assertEqual(self.controller.runs, 1)

    async def test_other_methods_are_rejected(self) -> None:
        async with self.client.request("POST", "/") as resp:
            self.assertEqual(resp.status, 405)
            self.assertEqual(await resp.text(), "Method Not Allowed")
        self.assertEqual(self.controller.runs, 0)

    async def test_failure_is_structured(self) -> None:
        self.controller.error = ProviderUnavailable("Failed to retrieve R2 usage: 500 Internal Server Error")
        with self.assertLogs("service.http_server", level="ERROR"):
            async with self.client.request("GET", "/") as resp:
                self.assertEqual(resp.status, 500)
                body = await resp.json()
        self.assertEqual(body, {"success": False, "error": "Failed to retrieve R2 usage: 500 Internal Server Error"})


if __name__ == "__main__":
    unittest.main()
