from __future__ import annotations

import unittest
from unittest.mock import patch

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

import config
from utils.http_client import ResilientHttpClient


class ResilientHttpClientTests(AioHTTPTestCase):
    async def get_application(self) -> web.Application:
        self.hits: dict[str, int] = {}

        async def flaky(request: web.Request) -> web.Response:
            self.hits["flaky"] = self.hits.get("flaky", 0) + 1
            if self.hits["flaky"] == 1:
                return web.Response(status=503, text="try later")
            return web.json_response({"result": {"storageBytes": 1}})

        async def broken(request: web.Request) -> web.Response:
            self.hits[request.method] = self.hits.get(request.method, 0) + 1
            return web.Response(status=500, text="kaput")

        async def echo(request: web.Request) -> web.Response:
            body = await request.json()
            return web.json_response({"received": body, "auth": request.headers.get("Authorization", "")})

        app = web.Application()
        app.router.add_get("/flaky", flaky)
        app.router.add_route("*", "/broken", broken)
        app.router.add_patch("/echo", echo)
        return app

    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self._patches = [
            patch.object(config, "HTTP_BACKOFF_BASE_SECONDS", 0.05),
            patch.object(config, "HTTP_JITTER_SECONDS", 0.0),
            patch.object(config, "HTTP_RETRY_ATTEMPTS", 2),
        ]
        for p in self._patches:
            p.start()
        self.http = ResilientHttpClient(timeout_seconds=5, headers={"Authorization": "Bearer t"})

    async def asyncTearDown(self) -> None:
        await self.http.close()
        for p in self._patches:
            p.stop()
        await super().asyncTearDown()

    async def test_get_retries_server_errors(self) -> None:
        result = await self.http.get_json(str(self.server.make_url("/flaky")), source="r2_usage")
        self.assertTrue(result.ok)
        self.assertEqual(result.data, {"result": {"storageBytes": 1}})
        stats = self.http.snapshot_stats()["r2_usage"]
        self.assertEqual(stats["retries"], 1)
        self.assertEqual(stats["ok"], 1)

    async def test_get_gives_up_after_attempts(self) -> None:
        result = await self.http.get_json(str(self.server.make_url("/broken")))
        self.assertFalse(result.ok)
        self.assertEqual(result.status, 500)
        self.assertEqual(result.text, "kaput")
        self.assertEqual(self.hits["GET"], 2)

    async def test_patch_is_attempted_once(self) -> None:
        result = await self.http.patch_json(str(self.server.make_url("/broken")), {"status": "disabled"})
        self.assertFalse(result.ok)
        self.assertEqual(self.hits["PATCH"], 1)

    async def test_patch_sends_json_and_default_headers(self) -> None:
        result = await self.http.patch_json(str(self.server.make_url("/echo")), {"status": "enabled"})
        self.assertTrue(result.ok)
        self.assertEqual(result.data, {"received": {"status": "enabled"}, "auth": "Bearer t"})


if __name__ == "__main__":
    unittest.main()
