"""Entry point for the R2 quota controller."""

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL, SCAN_INTERVAL
from monitor.r2_api import R2Api
from quota.controller import QuotaController, build_controller
from quota.snapshot import failure_result
from service.http_server import QuotaHttpServer


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Request URLs and headers stay out of the logs unless explicitly debugging.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def _format_source_stats_brief(source_stats: dict[str, dict[str, int | float]]) -> str:
    if not source_stats:
        return "none"
    parts: list[str] = []
    for source in sorted(source_stats.keys()):
        row = source_stats.get(source) or {}
        parts.append(
            (
                f"{source}:ok={int(row.get('ok', 0))}"
                f"/fail={int(row.get('fail', 0))}"
                f"/retries={int(row.get('retries', 0))}"
                f"/429={int(row.get('rate_limited', 0))}"
                f"/avg={float(row.get('latency_avg_ms', 0.0)):.0f}ms"
                f"/max={float(row.get('latency_max_ms', 0.0)):.0f}ms"
            )
        )
    return "; ".join(parts)


async def scheduled_loop(controller: QuotaController, api: R2Api, interval_seconds: int) -> None:
    while True:
        try:
            await controller.run()
        except Exception:
            logger.exception("Failed to evaluate quota")
        logger.info("HTTP_STATS %s", _format_source_stats_brief(api.runtime_stats(reset=True)))
        await asyncio.sleep(interval_seconds)


async def run_once(controller: QuotaController) -> int:
    try:
        result = await controller.run()
    except Exception as exc:
        logger.exception("Failed to evaluate quota")
        print(json.dumps(failure_result(exc), indent=2))
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


async def _amain(args: argparse.Namespace) -> int:
    controller, api = build_controller(config)
    server: QuotaHttpServer | None = None
    try:
        if args.once:
            return await run_once(controller)

        if args.serve:
            server = QuotaHttpServer(
                controller,
                host=config.WEBHOOK_HOST,
                port=config.WEBHOOK_PORT,
                path=config.WEBHOOK_PATH,
            )
            await server.start()
        if args.no_schedule:
            await asyncio.Event().wait()
        else:
            await scheduled_loop(controller, api, args.interval)
        return 0
    finally:
        if server is not None:
            await server.stop()
        await api.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enforce R2 usage quotas by toggling an access key.")
    parser.add_argument("--once", action="store_true", help="Run a single evaluation, print the result and exit.")
    parser.add_argument("--serve", action="store_true", help="Expose the GET evaluation endpoint.")
    parser.add_argument("--no-schedule", action="store_true", help="With --serve, only evaluate on request.")
    parser.add_argument("--interval", type=int, default=SCAN_INTERVAL, help="Seconds between scheduled runs.")
    args = parser.parse_args(argv)
    if args.no_schedule and not args.serve:
        parser.error("--no-schedule requires --serve")
    args.interval = max(1, int(args.interval))
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()
    try:
        return asyncio.run(_amain(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
