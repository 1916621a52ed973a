"""HTTP endpoint that runs one quota evaluation per GET request."""

import functools
import json
import logging

from aiohttp import web

from quota.controller import QuotaController
from quota.snapshot import failure_result

logger = logging.getLogger(__name__)

_json_dumps = functools.partial(json.dumps, indent=2)


class QuotaHttpServer:
    def __init__(self, controller: QuotaController, *, host: str, port: int, path: str = "/") -> None:
        self.controller = controller
        self.host = host
        self.port = port
        self.path = path or "/"
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", self.path, self._handle)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info("Quota controller listening on %s:%s%s", self.host, self.port, self.path)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()

    async def _handle(self, request: web.Request) -> web.Response:
        if request.method != "GET":
            return web.Response(status=405, text="Method Not Allowed")

        try:
            result = await self.controller.run()
        except Exception as exc:
            logger.exception("Quota evaluation failed")
            return web.json_response(failure_result(exc), status=500, dumps=_json_dumps)
        return web.json_response(result.to_dict(), dumps=_json_dumps)
